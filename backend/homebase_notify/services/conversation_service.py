"""
Conversations: messages, read watermarks, unread counts and typing state.

Ordering uses a per-conversation seq (max + 1, unique per conversation) so
equal timestamps never reorder. Unread for a member = messages from anyone
else created after the member's last_read_at (all of them if never read).
last_read_at never moves backwards.

Typing rows are upserted per keystroke burst and only count while fresher than
settings.typing_ttl_seconds; clear_stale_typing() resets the rest.
"""
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from homebase_notify.config import settings
from homebase_notify.core.constants import (
    MESSAGE_MAX_LENGTH,
    MESSAGE_PREVIEW_LENGTH,
    MESSAGE_SEQ_RETRIES,
    MESSAGES_DEFAULT_LIMIT,
)
from homebase_notify.core.errors import AuthorizationError, InvalidInputError, NotFoundError
from homebase_notify.core.types import MessageType
from homebase_notify.db.base import as_utc, utcnow
from homebase_notify.models.conversation import Conversation, ConversationMember, Message
from homebase_notify.models.profile import Profile
from homebase_notify.models.typing_state import TypingState
from homebase_notify.services.dispatcher import NotificationEvent, notify
from homebase_notify.services.realtime import ConversationHub, hub as default_hub

logger = logging.getLogger(__name__)


def message_to_dict(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "seq": m.seq,
        "sender_profile_id": m.sender_profile_id,
        "content": m.content,
        "message_type": m.message_type,
        "meta": m.meta or {},
        "created_at": as_utc(m.created_at).isoformat() if m.created_at else None,
    }


def typing_to_dict(t: TypingState) -> dict[str, Any]:
    return {
        "conversation_id": t.conversation_id,
        "profile_id": t.profile_id,
        "is_typing": bool(t.is_typing),
        "last_typed_at": as_utc(t.last_typed_at).isoformat() if t.last_typed_at else None,
    }


def get_member(db: Session, conversation_id: int, profile_id: int) -> ConversationMember:
    member = (
        db.query(ConversationMember)
        .filter(ConversationMember.conversation_id == conversation_id, ConversationMember.profile_id == profile_id)
        .first()
    )
    if member is None:
        if db.get(Conversation, conversation_id) is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        raise AuthorizationError("Not a member of this conversation", status_code=403)
    return member


def get_or_create_direct_conversation(db: Session, profile_a: int, profile_b: int) -> Conversation:
    if profile_a == profile_b:
        raise InvalidInputError("A conversation needs two different profiles")
    a_ids = db.query(ConversationMember.conversation_id).filter(ConversationMember.profile_id == profile_a)
    shared = (
        db.query(ConversationMember)
        .filter(ConversationMember.profile_id == profile_b, ConversationMember.conversation_id.in_(a_ids))
        .order_by(ConversationMember.conversation_id.asc())
        .first()
    )
    if shared:
        return db.get(Conversation, shared.conversation_id)
    conversation = Conversation()
    db.add(conversation)
    db.flush()
    db.add_all([
        ConversationMember(conversation_id=conversation.id, profile_id=profile_a),
        ConversationMember(conversation_id=conversation.id, profile_id=profile_b),
    ])
    db.commit()
    db.refresh(conversation)
    logger.info("Created conversation %s between profiles %s and %s", conversation.id, profile_a, profile_b)
    return conversation


def _message_preview(message: Message) -> str:
    if message.message_type == MessageType.TEXT.value:
        return message.content[:MESSAGE_PREVIEW_LENGTH]
    if message.message_type == MessageType.IMAGE.value:
        return "Sent a photo"
    return "Sent a file"


def _notify_recipients(db: Session, message: Message) -> None:
    """Best effort 'message.received' to every other member; never fails the send."""
    try:
        others = (
            db.query(ConversationMember.profile_id)
            .filter(
                ConversationMember.conversation_id == message.conversation_id,
                ConversationMember.profile_id != message.sender_profile_id,
            )
            .all()
        )
        sender = db.get(Profile, message.sender_profile_id)
        sender_name = (sender.full_name if sender else None) or "Someone"
        recipients = db.query(Profile).filter(Profile.id.in_([pid for (pid,) in others])).all() if others else []
    except Exception as e:
        logger.warning("Could not resolve recipients for message %s: %s", message.id, e, exc_info=True)
        db.rollback()
        return
    preview = _message_preview(message)
    for profile in recipients:
        notify(
            db,
            NotificationEvent(
                type="message.received",
                user_id=profile.user_id,
                role=profile.role,
                profile_id=profile.id,
                title=f"New message from {sender_name}",
                body=preview,
                action_url=f"/{profile.role}/messages?conversation={message.conversation_id}",
                metadata={"conversation_id": message.conversation_id, "message_id": message.id},
            ),
        )


def send_message(
    db: Session,
    conversation_id: int,
    sender_profile_id: int,
    content: str,
    message_type: MessageType | str = MessageType.TEXT,
    meta: dict[str, Any] | None = None,
    now: datetime | None = None,
    hub: ConversationHub | None = None,
    notify_recipients: bool = True,
) -> Message:
    content = (content or "").strip()
    if not content:
        raise InvalidInputError("Message content is required")
    if len(content) > MESSAGE_MAX_LENGTH:
        raise InvalidInputError(f"Message too long (max {MESSAGE_MAX_LENGTH} characters)")
    try:
        message_type = MessageType(message_type).value
    except ValueError as e:
        raise InvalidInputError(f"Unknown message_type {message_type!r}") from e
    get_member(db, conversation_id, sender_profile_id)
    now = now or utcnow()

    message = None
    for attempt in range(MESSAGE_SEQ_RETRIES):
        last_seq = (
            db.query(func.max(Message.seq)).filter(Message.conversation_id == conversation_id).scalar() or 0
        )
        message = Message(
            conversation_id=conversation_id,
            seq=last_seq + 1,
            sender_profile_id=sender_profile_id,
            content=content,
            message_type=message_type,
            meta=meta or {},
            created_at=now,
        )
        db.add(message)
        conversation = db.get(Conversation, conversation_id)
        conversation.last_message_at = now
        try:
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            logger.info("seq collision in conversation %s (attempt %s); retrying", conversation_id, attempt + 1)
    else:
        raise RuntimeError(f"Could not allocate message seq in conversation {conversation_id}")
    db.refresh(message)

    (hub or default_hub).publish_message(conversation_id, message_to_dict(message))
    if notify_recipients:
        _notify_recipients(db, message)
    return message


def send_first_message(
    db: Session,
    sender_profile_id: int,
    recipient_profile_id: int,
    content: str,
    **kwargs: Any,
) -> tuple[Conversation, Message]:
    """Start (or reuse) the direct conversation between two profiles and send into it."""
    conversation = get_or_create_direct_conversation(db, sender_profile_id, recipient_profile_id)
    message = send_message(db, conversation.id, sender_profile_id, content, **kwargs)
    return conversation, message


def list_messages(
    db: Session,
    conversation_id: int,
    profile_id: int,
    after_seq: int | None = None,
    limit: int = MESSAGES_DEFAULT_LIMIT,
) -> list[Message]:
    get_member(db, conversation_id, profile_id)
    q = db.query(Message).filter(Message.conversation_id == conversation_id)
    if after_seq is not None:
        q = q.filter(Message.seq > after_seq)
    return q.order_by(Message.seq.asc()).limit(limit).all()


def mark_as_read(
    db: Session,
    conversation_id: int,
    profile_id: int,
    now: datetime | None = None,
) -> ConversationMember:
    """Advance the member's watermark to cover every message seen so far. Never moves it back."""
    member = get_member(db, conversation_id, profile_id)
    newest = db.query(func.max(Message.created_at)).filter(Message.conversation_id == conversation_id).scalar()
    candidates = [as_utc(now or utcnow()), as_utc(newest), as_utc(member.last_read_at)]
    member.last_read_at = max(c for c in candidates if c is not None)
    db.commit()
    return member


def unread_count(db: Session, conversation_id: int, profile_id: int) -> int:
    member = get_member(db, conversation_id, profile_id)
    return _unread_for_member(db, member)


def _unread_for_member(db: Session, member: ConversationMember) -> int:
    q = db.query(func.count(Message.id)).filter(
        Message.conversation_id == member.conversation_id,
        Message.sender_profile_id != member.profile_id,
    )
    if member.last_read_at is not None:
        q = q.filter(Message.created_at > member.last_read_at)
    return q.scalar() or 0


def unread_counts_for_profile(db: Session, profile_id: int) -> dict[int, int]:
    members = db.query(ConversationMember).filter(ConversationMember.profile_id == profile_id).all()
    return {m.conversation_id: _unread_for_member(db, m) for m in members}


def list_conversations(db: Session, profile_id: int) -> list[dict[str, Any]]:
    rows = (
        db.query(Conversation, ConversationMember)
        .join(ConversationMember, ConversationMember.conversation_id == Conversation.id)
        .filter(ConversationMember.profile_id == profile_id)
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        .all()
    )
    out = []
    for conversation, member in rows:
        member_ids = [
            pid for (pid,) in db.query(ConversationMember.profile_id)
            .filter(ConversationMember.conversation_id == conversation.id)
            .all()
        ]
        out.append({
            "id": conversation.id,
            "member_profile_ids": member_ids,
            "last_message_at": as_utc(conversation.last_message_at).isoformat() if conversation.last_message_at else None,
            "unread_count": _unread_for_member(db, member),
        })
    return out


def set_typing(
    db: Session,
    conversation_id: int,
    profile_id: int,
    is_typing: bool,
    now: datetime | None = None,
    hub: ConversationHub | None = None,
) -> TypingState:
    get_member(db, conversation_id, profile_id)
    now = now or utcnow()
    row = (
        db.query(TypingState)
        .filter(TypingState.conversation_id == conversation_id, TypingState.profile_id == profile_id)
        .first()
    )
    if row is None:
        row = TypingState(conversation_id=conversation_id, profile_id=profile_id)
        db.add(row)
    row.is_typing = is_typing
    row.last_typed_at = now
    try:
        db.commit()
    except IntegrityError:
        # Another request from the same client inserted first; update that row instead
        db.rollback()
        row = (
            db.query(TypingState)
            .filter(TypingState.conversation_id == conversation_id, TypingState.profile_id == profile_id)
            .one()
        )
        row.is_typing = is_typing
        row.last_typed_at = now
        db.commit()
    (hub or default_hub).publish_typing(conversation_id, typing_to_dict(row))
    return row


def active_typers(
    db: Session,
    conversation_id: int,
    now: datetime | None = None,
    exclude_profile_id: int | None = None,
    ttl_seconds: int | None = None,
) -> list[int]:
    now = now or utcnow()
    cutoff = now - timedelta(seconds=ttl_seconds or settings.typing_ttl_seconds)
    q = db.query(TypingState.profile_id).filter(
        TypingState.conversation_id == conversation_id,
        TypingState.is_typing.is_(True),
        TypingState.last_typed_at >= cutoff,
    )
    if exclude_profile_id is not None:
        q = q.filter(TypingState.profile_id != exclude_profile_id)
    return sorted(pid for (pid,) in q.all())


def clear_stale_typing(
    db: Session,
    now: datetime | None = None,
    ttl_seconds: int | None = None,
    hub: ConversationHub | None = None,
) -> int:
    """Reset typing rows older than the TTL and tell subscribers the indicator is gone."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=ttl_seconds or settings.typing_ttl_seconds)
    stale = (
        db.query(TypingState)
        .filter(TypingState.is_typing.is_(True), TypingState.last_typed_at < cutoff)
        .all()
    )
    for row in stale:
        row.is_typing = False
    if stale:
        db.commit()
        for row in stale:
            (hub or default_hub).publish_typing(row.conversation_id, typing_to_dict(row))
        logger.info("Cleared %s stale typing indicator(s)", len(stale))
    return len(stale)
