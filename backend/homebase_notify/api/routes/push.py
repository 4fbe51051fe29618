"""Web Push registration: browser subscriptions (endpoint + keys) for the caller."""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from homebase_notify.api.deps import Caller, current_caller
from homebase_notify.config import settings
from homebase_notify.core.errors import NotificationError, error_to_http
from homebase_notify.db.session import get_db
from homebase_notify.services import push_subscription_service

router = APIRouter()
logger = logging.getLogger(__name__)


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1, max_length=256)
    auth: str = Field(..., min_length=1, max_length=128)


class PushSubscriptionBody(BaseModel):
    """Standard PushSubscription.toJSON() shape from the browser."""

    endpoint: str = Field(..., min_length=1, max_length=1024)
    keys: SubscriptionKeys


class UnsubscribeBody(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=1024)


@router.get("/push/vapid-public-key")
def vapid_public_key() -> dict:
    """Public key the browser passes to pushManager.subscribe(applicationServerKey=...)."""
    return {"publicKey": settings.vapid_public_key or None}


@router.post("/push/subscribe")
def subscribe(
    body: PushSubscriptionBody,
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
):
    """
    Register this browser for push. Idempotent: the same endpoint is upserted
    (keys refreshed, rebound to the caller).
    """
    try:
        row, created = push_subscription_service.register(
            db, caller.user_id, body.endpoint, body.keys.p256dh, body.keys.auth
        )
    except NotificationError as e:
        raise error_to_http(e)
    return {"ok": True, "id": row.id, "message": "Subscription registered" if created else "Subscription already registered"}


@router.post("/push/unsubscribe")
def unsubscribe(
    body: UnsubscribeBody,
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
):
    removed = push_subscription_service.unregister(db, caller.user_id, body.endpoint)
    return {"ok": True, "removed": removed}
