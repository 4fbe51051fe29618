"""
Notifications API: dispatch boundary for application events, plus the caller's in-app feed.

Dispatch is server-to-server (service-role bearer or admin). The feed routes
identify the caller by X-User-Id (or ?user_id=) as set by the gateway.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from homebase_notify.api.deps import Caller, current_caller, require_admin
from homebase_notify.core.constants import FEED_DEFAULT_LIMIT, FEED_MAX_LIMIT
from homebase_notify.core.errors import NotificationError, error_to_http
from homebase_notify.core.types import Role
from homebase_notify.db.session import get_db
from homebase_notify.services import notification_feed_service
from homebase_notify.services.dispatcher import NotificationEvent, dispatch_notification

router = APIRouter()
logger = logging.getLogger(__name__)


class ForceChannels(BaseModel):
    inapp: bool | None = None
    push: bool | None = None
    email: bool | None = None


class DispatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., min_length=1, max_length=64, description="Event type, e.g. payment.succeeded")
    user_id: str = Field(..., alias="userId", min_length=1, max_length=64)
    role: Role
    title: str = Field(..., min_length=1, max_length=256)
    body: str = ""
    profile_id: int | None = Field(None, alias="profileId")
    action_url: str | None = Field(None, alias="actionUrl", max_length=512)
    metadata: dict[str, Any] = Field(default_factory=dict)
    force_channels: ForceChannels | None = Field(None, alias="forceChannels")


def event_from_request(body: DispatchRequest) -> NotificationEvent:
    force = body.force_channels.model_dump() if body.force_channels is not None else None
    return NotificationEvent(
        type=body.type,
        user_id=body.user_id,
        role=body.role,
        title=body.title,
        body=body.body,
        profile_id=body.profile_id,
        action_url=body.action_url,
        metadata=body.metadata,
        force_channels=force,
    )


# --- Dispatch ---


@router.post("/notifications/dispatch", dependencies=[Depends(require_admin)])
def dispatch(body: DispatchRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    """
    Dispatch one event to one user. Returns the channels used and per-channel
    results; failed push/email stay pending in the outbox for the retry worker.
    """
    try:
        result = dispatch_notification(db, event_from_request(body))
    except NotificationError as e:
        raise error_to_http(e)
    except Exception as e:
        logger.exception("Dispatch notification failed: %s", e)
        db.rollback()
        raise error_to_http(e)
    return result.to_dict()


# --- Feed ---


@router.get("/notifications")
def list_notifications(
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
    limit: int = Query(FEED_DEFAULT_LIMIT, ge=1, le=FEED_MAX_LIMIT),
    unread_only: bool = Query(False),
) -> dict[str, Any]:
    """Caller's notifications, newest first. unread_only=true for the badge/filtered view."""
    rows = notification_feed_service.list_notifications(db, caller.user_id, limit=limit, unread_only=unread_only)
    return {
        "notifications": [notification_feed_service.to_dict(r) for r in rows],
        "unread_count": notification_feed_service.unread_count(db, caller.user_id),
    }


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
) -> dict[str, Any]:
    try:
        row = notification_feed_service.mark_read(db, caller.user_id, notification_id)
    except NotificationError as e:
        raise error_to_http(e)
    return {"ok": True, "id": notification_id, "read_at": row.read_at.isoformat()}


@router.post("/notifications/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
) -> dict[str, Any]:
    updated = notification_feed_service.mark_all_read(db, caller.user_id)
    if updated:
        logger.info("Marked %s notifications read for user %s", updated, caller.user_id)
    return {"ok": True, "marked_count": updated}


@router.get("/notifications/unread-count")
def unread_count(
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
) -> dict[str, int]:
    return {"unread_count": notification_feed_service.unread_count(db, caller.user_id)}
