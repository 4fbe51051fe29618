"""
Admin notification tooling: health dashboard, outbox browser, manual retry,
force-channel test sends and announcements. Every route requires admin.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from homebase_notify.api.deps import require_admin
from homebase_notify.api.routes.notifications import ForceChannels
from homebase_notify.core.errors import NotificationError, error_to_http
from homebase_notify.core.types import Channel, OutboxStatus, Role
from homebase_notify.db.session import get_db
from homebase_notify.services import outbox_service
from homebase_notify.services.dispatcher import (
    NotificationEvent,
    dispatch_announcement,
    dispatch_notification,
)
from homebase_notify.services.health_service import notifications_health
from homebase_notify.services.retry_worker import run_retry_sweep

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


@router.get("/notifications/health")
def health(db: Session = Depends(get_db)) -> dict[str, Any]:
    return notifications_health(db)


@router.get("/notifications/outbox")
def list_outbox(
    db: Session = Depends(get_db),
    status: OutboxStatus | None = Query(None),
    channel: Channel | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
) -> dict[str, Any]:
    rows = outbox_service.list_entries(db, status=status, channel=channel, limit=limit)
    return {"entries": [outbox_service.to_dict(r) for r in rows], "count": len(rows)}


class RetryRequest(BaseModel):
    notification_id: int | None = None


@router.post("/notifications/retry")
def retry(body: RetryRequest | None = None, db: Session = Depends(get_db)) -> dict[str, int]:
    """Run the retry sweep now (optionally for one notification)."""
    return run_retry_sweep(db, notification_id=body.notification_id if body else None)


@router.post("/notifications/outbox/{entry_id}/requeue")
def requeue(entry_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
    try:
        entry = outbox_service.requeue(db, entry_id)
    except NotificationError as e:
        raise error_to_http(e)
    return outbox_service.to_dict(entry)


class TestSendRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    role: Role
    title: str = Field("Test notification", max_length=256)
    body: str = "This is a test notification"
    channels: ForceChannels = Field(default_factory=lambda: ForceChannels(inapp=True, push=True, email=True))


@router.post("/notifications/test")
def test_send(body: TestSendRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Send to one user on exactly the chosen channels, ignoring preferences and quiet hours."""
    event = NotificationEvent(
        type="announcement",
        user_id=body.user_id,
        role=body.role,
        title=body.title,
        body=body.body,
        metadata={"test": True},
        force_channels=body.channels.model_dump(),
    )
    try:
        result = dispatch_notification(db, event)
    except NotificationError as e:
        raise error_to_http(e)
    return result.to_dict()


class AnnouncementRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    body: str = Field(..., min_length=1)
    target_audience: str = Field("all", pattern="^(all|providers|homeowners)$")
    priority: str = Field("normal", pattern="^(low|normal|high)$")
    action_url: str | None = Field(None, max_length=512)
    force_channels: ForceChannels | None = None


@router.post("/announcements")
def send_announcement(body: AnnouncementRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    force = body.force_channels.model_dump() if body.force_channels is not None else None
    try:
        return dispatch_announcement(
            db,
            title=body.title,
            body=body.body,
            target_audience=body.target_audience,
            force_channels=force,
            priority=body.priority,
            action_url=body.action_url,
        )
    except NotificationError as e:
        raise error_to_http(e)
