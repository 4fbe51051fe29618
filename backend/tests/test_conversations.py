"""Conversations: ordering, unread counts, read watermark, typing TTL, message notifications."""
from datetime import timedelta

import pytest

from conftest import NOON
from homebase_notify.core.errors import AuthorizationError, InvalidInputError, NotFoundError
from homebase_notify.db.base import as_utc
from homebase_notify.models.notification import Notification
from homebase_notify.services import conversation_service as cs
from homebase_notify.services.channels import registry
from homebase_notify.services.realtime import ConversationHandlers


@pytest.fixture(autouse=True)
def fake_registry(senders, monkeypatch):
    # send_message notifies through the registry; keep it offline
    for ch, sender in senders.items():
        monkeypatch.setitem(registry._senders, ch, sender)


@pytest.fixture
def pair(db, make_profile):
    homeowner = make_profile("homeowner", full_name="Hana Owner")
    provider = make_profile("provider", full_name="Pat Plumber")
    conversation = cs.get_or_create_direct_conversation(db, homeowner.id, provider.id)
    return conversation, homeowner, provider


def test_direct_conversation_is_reused(db, pair):
    conversation, homeowner, provider = pair
    again = cs.get_or_create_direct_conversation(db, provider.id, homeowner.id)
    assert again.id == conversation.id


def test_cannot_talk_to_yourself(db, make_profile):
    p = make_profile()
    with pytest.raises(InvalidInputError):
        cs.get_or_create_direct_conversation(db, p.id, p.id)


def test_messages_ordered_by_seq_even_with_equal_timestamps(db, pair, hub):
    conversation, homeowner, provider = pair
    for i, sender in enumerate([homeowner, provider, homeowner]):
        cs.send_message(db, conversation.id, sender.id, f"m{i}", now=NOON, hub=hub, notify_recipients=False)

    messages = cs.list_messages(db, conversation.id, homeowner.id)
    assert [m.seq for m in messages] == [1, 2, 3]
    assert [m.content for m in messages] == ["m0", "m1", "m2"]
    assert [m.content for m in cs.list_messages(db, conversation.id, homeowner.id, after_seq=2)] == ["m2"]


def test_unread_counts_only_other_members_messages(db, pair, hub):
    conversation, homeowner, provider = pair
    cs.send_message(db, conversation.id, provider.id, "hi", now=NOON, hub=hub, notify_recipients=False)
    cs.send_message(db, conversation.id, provider.id, "there", now=NOON + timedelta(seconds=1), hub=hub, notify_recipients=False)
    cs.send_message(db, conversation.id, homeowner.id, "hello", now=NOON + timedelta(seconds=2), hub=hub, notify_recipients=False)

    assert cs.unread_count(db, conversation.id, homeowner.id) == 2
    assert cs.unread_count(db, conversation.id, provider.id) == 1
    assert cs.unread_counts_for_profile(db, homeowner.id) == {conversation.id: 2}


def test_mark_as_read_clears_unread(db, pair, hub):
    conversation, homeowner, provider = pair
    cs.send_message(db, conversation.id, provider.id, "hi", now=NOON, hub=hub, notify_recipients=False)

    # Reader's clock is behind the message timestamp: still counts as read
    cs.mark_as_read(db, conversation.id, homeowner.id, now=NOON - timedelta(minutes=5))
    assert cs.unread_count(db, conversation.id, homeowner.id) == 0


def test_read_watermark_never_moves_backwards(db, pair, hub):
    conversation, homeowner, provider = pair
    cs.mark_as_read(db, conversation.id, homeowner.id, now=NOON)
    member = cs.mark_as_read(db, conversation.id, homeowner.id, now=NOON - timedelta(hours=1))
    assert as_utc(member.last_read_at) == NOON


def test_new_message_after_read_is_unread(db, pair, hub):
    conversation, homeowner, provider = pair
    cs.send_message(db, conversation.id, provider.id, "one", now=NOON, hub=hub, notify_recipients=False)
    cs.mark_as_read(db, conversation.id, homeowner.id, now=NOON)
    cs.send_message(db, conversation.id, provider.id, "two", now=NOON + timedelta(seconds=30), hub=hub, notify_recipients=False)
    assert cs.unread_count(db, conversation.id, homeowner.id) == 1


def test_non_member_is_rejected(db, pair, make_profile, hub):
    conversation, _, _ = pair
    outsider = make_profile()
    with pytest.raises(AuthorizationError) as exc:
        cs.send_message(db, conversation.id, outsider.id, "hi", hub=hub)
    assert exc.value.status_code == 403
    with pytest.raises(NotFoundError):
        cs.list_messages(db, 9999, outsider.id)


@pytest.mark.parametrize("content", ["", "   ", "x" * 5001])
def test_content_is_validated(db, pair, hub, content):
    conversation, homeowner, _ = pair
    with pytest.raises(InvalidInputError):
        cs.send_message(db, conversation.id, homeowner.id, content, hub=hub)


def test_send_publishes_to_subscribers(db, pair, hub):
    conversation, homeowner, provider = pair
    received = []
    hub.subscribe(conversation.id, ConversationHandlers(on_message=received.append))
    message = cs.send_message(db, conversation.id, homeowner.id, "hi", hub=hub, notify_recipients=False)
    assert [m["id"] for m in received] == [message.id]


def test_send_notifies_other_member(db, pair, hub):
    conversation, homeowner, provider = pair
    cs.send_message(db, conversation.id, homeowner.id, "Can you come Tuesday?", now=NOON, hub=hub)

    rows = db.query(Notification).all()
    assert len(rows) == 1
    assert rows[0].user_id == provider.user_id
    assert rows[0].type == "message.received"
    assert rows[0].title == "New message from Hana Owner"
    assert rows[0].body == "Can you come Tuesday?"


def test_send_first_message_creates_conversation(db, make_profile, hub):
    a, b = make_profile(), make_profile("provider")
    conversation, message = cs.send_first_message(db, a.id, b.id, "Quote please", hub=hub, notify_recipients=False)
    assert message.seq == 1
    assert {c["id"] for c in cs.list_conversations(db, b.id)} == {conversation.id}


def test_typing_expires_after_ttl(db, pair, hub):
    conversation, homeowner, provider = pair
    cs.set_typing(db, conversation.id, homeowner.id, True, now=NOON, hub=hub)

    assert cs.active_typers(db, conversation.id, now=NOON + timedelta(seconds=5), ttl_seconds=10) == [homeowner.id]
    assert cs.active_typers(db, conversation.id, now=NOON + timedelta(seconds=5), exclude_profile_id=homeowner.id) == []
    assert cs.active_typers(db, conversation.id, now=NOON + timedelta(seconds=11), ttl_seconds=10) == []


def test_typing_upsert_keeps_one_row(db, pair, hub):
    conversation, homeowner, _ = pair
    first = cs.set_typing(db, conversation.id, homeowner.id, True, now=NOON, hub=hub)
    second = cs.set_typing(db, conversation.id, homeowner.id, False, now=NOON + timedelta(seconds=1), hub=hub)
    assert first.id == second.id
    assert cs.active_typers(db, conversation.id, now=NOON + timedelta(seconds=1)) == []


def test_clear_stale_typing_publishes_stop(db, pair, hub):
    conversation, homeowner, provider = pair
    events = []
    hub.subscribe(conversation.id, ConversationHandlers(on_typing=events.append))
    cs.set_typing(db, conversation.id, homeowner.id, True, now=NOON, hub=hub)
    cs.set_typing(db, conversation.id, provider.id, True, now=NOON + timedelta(seconds=8), hub=hub)

    cleared = cs.clear_stale_typing(db, now=NOON + timedelta(seconds=12), ttl_seconds=10, hub=hub)

    assert cleared == 1
    assert events[-1] == {
        "conversation_id": conversation.id,
        "profile_id": homeowner.id,
        "is_typing": False,
        "last_typed_at": NOON.isoformat(),
    }
    assert cs.active_typers(db, conversation.id, now=NOON + timedelta(seconds=12), ttl_seconds=10) == [provider.id]


def test_stream_membership_lookup(session_factory, pair, make_profile):
    from homebase_notify.api.routes.conversations import _member_profile_id

    conversation, homeowner, _ = pair
    outsider = make_profile()
    assert _member_profile_id(session_factory(), conversation.id, homeowner.user_id) == homeowner.id
    assert _member_profile_id(session_factory(), conversation.id, outsider.user_id) is None
    assert _member_profile_id(session_factory(), conversation.id, "no-profile") is None
