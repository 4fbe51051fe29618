"""
Notification dispatcher: turn one application event into a feed row plus one
outbox row per enabled channel, then try each channel once right away.

Channel resolution:
  - force_channels given: used verbatim (admin test sends, announcements).
    No preference lookup, no quiet hours.
  - otherwise: the recipient's {category}_{channel} toggles, with push and
    email dropped while the recipient is inside quiet hours. In-app is never
    suppressed.

Nothing is deduplicated: dispatching the same event twice produces two feed
rows and two sets of outbox rows. Callers that must not fail because of a
notification (payments, quotes, messages) use notify(), which never raises.
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from homebase_notify.config import settings
from homebase_notify.core.constants import ANNOUNCEMENT_AUDIENCES, EVENT_CATEGORY_MAP
from homebase_notify.core.errors import InvalidInputError
from homebase_notify.core.quiet_hours import in_quiet_hours
from homebase_notify.core.types import INTERRUPTING_CHANNELS, Category, Channel, Role
from homebase_notify.db.base import utcnow
from homebase_notify.models.notification import Notification
from homebase_notify.models.profile import Profile
from homebase_notify.services import outbox_service, preference_service
from homebase_notify.services.delivery import attempt_delivery

logger = logging.getLogger(__name__)


@dataclass
class NotificationEvent:
    type: str
    user_id: str
    role: Role | str
    title: str
    body: str = ""
    profile_id: int | None = None
    action_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    force_channels: dict[str, Any] | None = None


@dataclass
class DispatchResult:
    notification_id: int
    category: Category
    channels: dict[Channel, bool]
    outbox_ids: list[int] = field(default_factory=list)
    suppressed: list[Channel] = field(default_factory=list)
    sent: dict[Channel, int] = field(default_factory=dict)
    failed: dict[Channel, int] = field(default_factory=dict)

    @property
    def emails_sent(self) -> int:
        return self.sent.get(Channel.EMAIL, 0)

    @property
    def emails_failed(self) -> int:
        return self.failed.get(Channel.EMAIL, 0)

    @property
    def pushes_sent(self) -> int:
        return self.sent.get(Channel.PUSH, 0)

    @property
    def pushes_failed(self) -> int:
        return self.failed.get(Channel.PUSH, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipients": 1,
            "notification_id": self.notification_id,
            "category": self.category.value,
            "channels": {ch.value: enabled for ch, enabled in self.channels.items()},
            "suppressed": [ch.value for ch in self.suppressed],
            "outbox_ids": self.outbox_ids,
            "emails_sent": self.emails_sent,
            "emails_failed": self.emails_failed,
            "pushes_sent": self.pushes_sent,
            "pushes_failed": self.pushes_failed,
        }


def category_for(event_type: str) -> Category:
    """'payment.succeeded' -> payment. Bare category names map to themselves; unknown -> announcement."""
    if event_type in EVENT_CATEGORY_MAP:
        return EVENT_CATEGORY_MAP[event_type]
    try:
        return Category(event_type)
    except ValueError:
        return Category.ANNOUNCEMENT


def _truthy(v: Any) -> bool:
    # Form posts and JSON from older clients send "true" as a string
    return v is True or v == "true"


def resolve_channels(
    db: Session,
    event: NotificationEvent,
    now: datetime | None = None,
) -> tuple[dict[Channel, bool], list[Channel]]:
    """Return (enabled channels, channels suppressed by quiet hours)."""
    if event.force_channels is not None:
        return {ch: _truthy(event.force_channels.get(ch.value)) for ch in Channel}, []

    pref = preference_service.get_or_create(db, event.user_id, event.role)
    enabled = preference_service.channels_for(pref, category_for(event.type))
    suppressed: list[Channel] = []
    tz_name = pref.quiet_hours_timezone or settings.default_timezone
    if in_quiet_hours(pref.quiet_hours_start, pref.quiet_hours_end, tz_name, now):
        for ch in Channel:
            if ch in INTERRUPTING_CHANNELS and enabled[ch]:
                enabled[ch] = False
                suppressed.append(ch)
    return enabled, suppressed


def dispatch_notification(
    db: Session,
    event: NotificationEvent,
    now: datetime | None = None,
    senders: Mapping[Channel, Any] | None = None,
) -> DispatchResult:
    """Feed row + outbox rows + one immediate attempt per channel. Raises only on DB/input errors."""
    now = now or utcnow()
    role = Role(event.role).value
    category = category_for(event.type)
    channels, suppressed = resolve_channels(db, event, now)
    logger.info(
        "Dispatching %s for user %s (%s): channels=%s suppressed=%s",
        event.type, event.user_id, role,
        [ch.value for ch, on in channels.items() if on], [ch.value for ch in suppressed],
    )

    notification = Notification(
        user_id=event.user_id,
        profile_id=event.profile_id,
        role=role,
        type=event.type,
        category=category.value,
        title=event.title,
        body=event.body or "",
        action_url=event.action_url,
        payload=event.metadata or {},
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)

    result = DispatchResult(
        notification_id=notification.id,
        category=category,
        channels=channels,
        suppressed=suppressed,
    )
    active = [ch for ch in Channel if channels[ch]]
    if not active:
        return result

    payload = {
        "title": event.title,
        "body": event.body or "",
        "user_id": event.user_id,
        "role": role,
        "type": event.type,
        "action_url": event.action_url,
        "metadata": event.metadata or {},
    }
    entries = outbox_service.enqueue(db, notification, active, payload, now=now)
    for entry in entries:
        result.outbox_ids.append(entry.id)
        ch = Channel(entry.channel)
        if attempt_delivery(db, entry, senders=senders, now=now):
            result.sent[ch] = result.sent.get(ch, 0) + 1
        else:
            result.failed[ch] = result.failed.get(ch, 0) + 1
    logger.info(
        "Notification %s: %s outbox row(s), sent=%s failed=%s",
        notification.id, len(entries),
        {ch.value: n for ch, n in result.sent.items()}, {ch.value: n for ch, n in result.failed.items()},
    )
    return result


def notify(
    db: Session,
    event: NotificationEvent,
    now: datetime | None = None,
    senders: Mapping[Channel, Any] | None = None,
) -> DispatchResult | None:
    """Fire-and-forget: never raises, so the triggering business action always succeeds."""
    try:
        return dispatch_notification(db, event, now=now, senders=senders)
    except Exception as e:
        logger.warning("Notification %s for user %s not dispatched: %s", event.type, event.user_id, e, exc_info=True)
        db.rollback()
        return None


def dispatch_announcement(
    db: Session,
    title: str,
    body: str,
    target_audience: str = "all",
    force_channels: dict[str, Any] | None = None,
    priority: str = "normal",
    action_url: str | None = None,
    now: datetime | None = None,
    senders: Mapping[Channel, Any] | None = None,
) -> dict[str, Any]:
    """
    Dispatch an 'announcement' event to every profile in the audience
    ('all' | 'providers' | 'homeowners'). One recipient failing does not stop the rest.
    """
    if target_audience not in ANNOUNCEMENT_AUDIENCES:
        raise InvalidInputError(
            f"Unknown target_audience {target_audience!r}. Use one of: {', '.join(ANNOUNCEMENT_AUDIENCES)}"
        )
    if not (title or "").strip():
        raise InvalidInputError("Title is required")
    q = db.query(Profile)
    role_filter = ANNOUNCEMENT_AUDIENCES[target_audience]
    if role_filter:
        q = q.filter(Profile.role == role_filter)
    profiles = q.order_by(Profile.id.asc()).all()

    summary = {"recipients": len(profiles), "dispatched": 0, "emails_sent": 0, "emails_failed": 0}
    for profile in profiles:
        result = notify(
            db,
            NotificationEvent(
                type="announcement",
                user_id=profile.user_id,
                role=profile.role,
                profile_id=profile.id,
                title=title,
                body=body,
                action_url=action_url,
                metadata={"priority": priority, "target_audience": target_audience},
                force_channels=force_channels,
            ),
            now=now,
            senders=senders,
        )
        if result is None:
            continue
        summary["dispatched"] += 1
        summary["emails_sent"] += result.emails_sent
        summary["emails_failed"] += result.emails_failed
    logger.info("Announcement sent to %s %s profile(s)", summary["recipients"], target_audience)
    return summary
