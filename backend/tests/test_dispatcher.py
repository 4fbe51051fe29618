"""Dispatch: channel resolution, outbox rows, quiet hours, forced channels, announcements."""
from datetime import datetime, timezone

import pytest

from conftest import NOON
from homebase_notify.core.errors import InvalidInputError
from homebase_notify.core.types import Category, Channel, OutboxStatus
from homebase_notify.models.notification import Notification
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.services import preference_service
from homebase_notify.services.dispatcher import (
    NotificationEvent,
    category_for,
    dispatch_announcement,
    dispatch_notification,
    notify,
)


def _event(user_id="user-1", role="homeowner", type_="message.received", **kwargs) -> NotificationEvent:
    return NotificationEvent(type=type_, user_id=user_id, role=role, title="Hello", body="Body", **kwargs)


def _outbox_channels(db, notification_id) -> list[str]:
    rows = db.query(NotificationOutbox).filter_by(notification_id=notification_id).all()
    return sorted(r.channel for r in rows)


def test_category_for_maps_event_types():
    assert category_for("payment.succeeded") == Category.PAYMENT
    assert category_for("message.received") == Category.MESSAGE
    assert category_for("quote") == Category.QUOTE
    assert category_for("something.new") == Category.ANNOUNCEMENT


def test_message_event_uses_push_and_inapp_by_default(db, senders):
    """message: push on, email off, no quiet hours -> one push row, one in-app row, no email row."""
    result = dispatch_notification(db, _event(), now=NOON, senders=senders)

    assert _outbox_channels(db, result.notification_id) == ["inapp", "push"]
    assert result.channels == {Channel.INAPP: True, Channel.PUSH: True, Channel.EMAIL: False}
    assert len(senders[Channel.PUSH].calls) == 1
    assert senders[Channel.EMAIL].calls == []
    statuses = {r.status for r in db.query(NotificationOutbox).all()}
    assert statuses == {OutboxStatus.SENT.value}


def test_feed_row_stores_event_fields(db, senders):
    result = dispatch_notification(
        db,
        _event(type_="payment.succeeded", action_url="/payments/9", metadata={"amount": 120}),
        now=NOON,
        senders=senders,
    )
    row = db.get(Notification, result.notification_id)
    assert row.category == "payment"
    assert row.payload == {"amount": 120}
    assert row.read_at is None


def test_preferences_turn_channels_off(db, senders):
    preference_service.update(db, "user-1", "homeowner", {"message_push": False})
    result = dispatch_notification(db, _event(), now=NOON, senders=senders)
    assert _outbox_channels(db, result.notification_id) == ["inapp"]


def test_quiet_hours_suppress_push_and_email_but_not_inapp(db, senders):
    preference_service.update(
        db, "user-1", "homeowner",
        {"payment_email": True, "quiet_hours_start": "22:00", "quiet_hours_end": "08:00", "quiet_hours_timezone": "UTC"},
    )
    late = datetime(2026, 3, 4, 23, 15, tzinfo=timezone.utc)
    result = dispatch_notification(db, _event(type_="payment.succeeded"), now=late, senders=senders)

    assert _outbox_channels(db, result.notification_id) == ["inapp"]
    assert set(result.suppressed) == {Channel.PUSH, Channel.EMAIL}
    assert senders[Channel.PUSH].calls == []


def test_force_channels_bypass_preferences_and_quiet_hours(db, senders):
    preference_service.update(
        db, "user-1", "homeowner",
        {"announcement_email": False, "quiet_hours_start": "00:00", "quiet_hours_end": "23:59", "quiet_hours_timezone": "UTC"},
    )
    result = dispatch_notification(
        db,
        _event(type_="announcement", force_channels={"inapp": False, "push": "true", "email": True}),
        now=NOON,
        senders=senders,
    )
    assert _outbox_channels(db, result.notification_id) == ["email", "push"]
    assert result.suppressed == []


def test_force_channels_only_accept_true_or_string_true(db, senders):
    result = dispatch_notification(
        db,
        _event(force_channels={"inapp": 1, "push": "yes", "email": None}),
        now=NOON,
        senders=senders,
    )
    assert _outbox_channels(db, result.notification_id) == []


def test_identical_dispatches_are_not_deduplicated(db, senders):
    event = _event(force_channels={"email": True})
    first = dispatch_notification(db, event, now=NOON, senders=senders)
    second = dispatch_notification(db, event, now=NOON, senders=senders)

    assert first.notification_id != second.notification_id
    assert db.query(NotificationOutbox).filter_by(channel="email").count() == 2
    assert len(senders[Channel.EMAIL].calls) == 2


def test_failed_channel_stays_pending_with_error(db, senders):
    senders[Channel.PUSH].fail = True
    result = dispatch_notification(db, _event(), now=NOON, senders=senders)

    push = db.query(NotificationOutbox).filter_by(notification_id=result.notification_id, channel="push").one()
    assert push.status == OutboxStatus.PENDING.value
    assert push.attempt_count == 1
    assert "provider down" in push.last_error
    assert push.next_retry_at is not None
    assert result.failed == {Channel.PUSH: 1}
    assert result.sent == {Channel.INAPP: 1}


def test_email_counts_in_result(db, senders):
    senders[Channel.EMAIL].fail = True
    result = dispatch_notification(db, _event(type_="payment.succeeded"), now=NOON, senders=senders)
    out = result.to_dict()
    assert out["recipients"] == 1
    assert out["emails_sent"] == 0
    assert out["emails_failed"] == 1
    assert out["channels"] == {"inapp": True, "push": True, "email": True}


def test_notify_never_raises(db, senders):
    assert notify(db, _event(role="not-a-role"), now=NOON, senders=senders) is None
    # Session is still usable afterwards
    assert notify(db, _event(), now=NOON, senders=senders) is not None


def test_dispatch_raises_on_bad_role(db, senders):
    with pytest.raises(ValueError):
        dispatch_notification(db, _event(role="not-a-role"), now=NOON, senders=senders)


def test_announcement_targets_only_providers(db, senders, make_profile):
    providers = [make_profile("provider"), make_profile("provider")]
    homeowner = make_profile("homeowner")

    summary = dispatch_announcement(
        db, "Maintenance", "Down at 2am", target_audience="providers",
        force_channels={"inapp": True, "email": True}, now=NOON, senders=senders,
    )

    assert summary == {"recipients": 2, "dispatched": 2, "emails_sent": 2, "emails_failed": 0}
    recipients = {n.user_id for n in db.query(Notification).all()}
    assert recipients == {p.user_id for p in providers}
    assert homeowner.user_id not in recipients


def test_announcement_to_all_uses_preferences(db, senders, make_profile):
    make_profile("provider")
    make_profile("homeowner")
    summary = dispatch_announcement(db, "News", "Body", now=NOON, senders=senders)
    assert summary["recipients"] == 2
    # announcement defaults: in-app and email, no push
    assert {r.channel for r in db.query(NotificationOutbox).all()} == {"inapp", "email"}


def test_announcement_rejects_unknown_audience(db, senders):
    with pytest.raises(InvalidInputError):
        dispatch_announcement(db, "Title", "Body", target_audience="everyone", senders=senders)
    with pytest.raises(InvalidInputError):
        dispatch_announcement(db, "  ", "Body", senders=senders)
