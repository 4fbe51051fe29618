"""
Conversations API: direct messages between profiles, read watermarks, typing
indicators and a WebSocket stream of message/typing events.

The caller acts as their own profile (resolved from X-User-Id).
"""
import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from homebase_notify.api.deps import current_profile
from homebase_notify.core.constants import MESSAGE_MAX_LENGTH, MESSAGES_DEFAULT_LIMIT, MESSAGES_MAX_LIMIT
from homebase_notify.core.errors import NotFoundError, NotificationError, error_to_http
from homebase_notify.core.types import MessageType
from homebase_notify.db.session import get_db
from homebase_notify.models.profile import Profile
from homebase_notify.services import conversation_service
from homebase_notify.services.realtime import ConversationHandlers, hub

router = APIRouter()
logger = logging.getLogger(__name__)


class StartConversationRequest(BaseModel):
    recipient_profile_id: int
    content: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    message_type: MessageType = MessageType.TEXT
    meta: dict[str, Any] = Field(default_factory=dict)


class TypingRequest(BaseModel):
    is_typing: bool = True


@router.get("/conversations")
def list_conversations(
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
) -> dict[str, Any]:
    return {"conversations": conversation_service.list_conversations(db, profile.id)}


@router.post("/conversations")
def start_conversation(
    body: StartConversationRequest,
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
) -> dict[str, Any]:
    """First message to a recipient; reuses the existing direct conversation if there is one."""
    if db.get(Profile, body.recipient_profile_id) is None:
        raise error_to_http(NotFoundError("Recipient not found"))
    try:
        conversation, message = conversation_service.send_first_message(
            db, profile.id, body.recipient_profile_id, body.content
        )
    except NotificationError as e:
        raise error_to_http(e)
    return {"conversation_id": conversation.id, "message": conversation_service.message_to_dict(message)}


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: int,
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
    after_seq: int | None = Query(None, ge=0),
    limit: int = Query(MESSAGES_DEFAULT_LIMIT, ge=1, le=MESSAGES_MAX_LIMIT),
) -> dict[str, Any]:
    try:
        rows = conversation_service.list_messages(db, conversation_id, profile.id, after_seq=after_seq, limit=limit)
    except NotificationError as e:
        raise error_to_http(e)
    return {"messages": [conversation_service.message_to_dict(m) for m in rows]}


@router.post("/conversations/{conversation_id}/messages")
def send_message(
    conversation_id: int,
    body: SendMessageRequest,
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
) -> dict[str, Any]:
    try:
        message = conversation_service.send_message(
            db, conversation_id, profile.id, body.content, message_type=body.message_type, meta=body.meta
        )
    except NotificationError as e:
        raise error_to_http(e)
    return conversation_service.message_to_dict(message)


@router.post("/conversations/{conversation_id}/read")
def mark_read(
    conversation_id: int,
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
) -> dict[str, Any]:
    try:
        member = conversation_service.mark_as_read(db, conversation_id, profile.id)
    except NotificationError as e:
        raise error_to_http(e)
    return {"ok": True, "last_read_at": member.last_read_at.isoformat(), "unread_count": 0}


@router.get("/conversations/{conversation_id}/unread")
def unread(
    conversation_id: int,
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
) -> dict[str, int]:
    try:
        count = conversation_service.unread_count(db, conversation_id, profile.id)
    except NotificationError as e:
        raise error_to_http(e)
    return {"unread_count": count}


@router.post("/conversations/{conversation_id}/typing")
def set_typing(
    conversation_id: int,
    body: TypingRequest,
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
) -> dict[str, Any]:
    try:
        row = conversation_service.set_typing(db, conversation_id, profile.id, body.is_typing)
    except NotificationError as e:
        raise error_to_http(e)
    return conversation_service.typing_to_dict(row)


@router.get("/conversations/{conversation_id}/typing")
def get_typing(
    conversation_id: int,
    db: Session = Depends(get_db),
    profile: Profile = Depends(current_profile),
) -> dict[str, list[int]]:
    try:
        conversation_service.get_member(db, conversation_id, profile.id)
    except NotificationError as e:
        raise error_to_http(e)
    return {"typing": conversation_service.active_typers(db, conversation_id, exclude_profile_id=profile.id)}


def _member_profile_id(db: Session, conversation_id: int, user_id: str) -> int | None:
    """Profile id of user_id if they belong to the conversation, else None. Closes the session."""
    try:
        profile = db.query(Profile).filter(Profile.user_id == user_id).first()
        if profile is None:
            return None
        conversation_service.get_member(db, conversation_id, profile.id)
        return profile.id
    except NotificationError:
        return None
    finally:
        db.close()


@router.websocket("/conversations/{conversation_id}/ws")
async def conversation_stream(websocket: WebSocket, conversation_id: int, db: Session = Depends(get_db)):
    """
    Stream {"event": "message"|"typing", "data": {...}} for one conversation.
    Membership is checked once at connect; the socket is closed with 4401/4403 otherwise.
    """
    user_id = (websocket.headers.get("x-user-id") or websocket.query_params.get("user_id") or "").strip()
    if not user_id:
        await websocket.close(code=4401)
        return
    # Blocking DB work stays off the event loop
    profile_id = await run_in_threadpool(_member_profile_id, db, conversation_id, user_id)
    if profile_id is None:
        await websocket.close(code=4403)
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Hub handlers run on whichever thread published (sync routes, scheduler)
    def enqueue(kind: str):
        return lambda data: loop.call_soon_threadsafe(queue.put_nowait, {"event": kind, "data": data})

    # Subscribe before accepting so nothing published after the handshake is missed
    subscription = hub.subscribe(
        conversation_id, ConversationHandlers(on_message=enqueue("message"), on_typing=enqueue("typing"))
    )

    async def pump():
        while True:
            await websocket.send_json(await queue.get())

    sender = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(pump())
        while True:
            # Client frames are ignored; receiving only detects disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("WebSocket closed for conversation %s profile %s", conversation_id, profile_id)
    finally:
        subscription.unsubscribe()
        if sender is not None:
            if sender.done() and not sender.cancelled() and sender.exception() is not None:
                logger.info(
                    "WebSocket send failed for conversation %s profile %s: %s",
                    conversation_id, profile_id, sender.exception(),
                )
            sender.cancel()
