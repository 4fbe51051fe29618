"""
Browser push subscriptions. Register is idempotent per endpoint: the same
endpoint is upserted (keys refreshed, rebound to the latest user).
"""
import logging

from sqlalchemy.orm import Session

from homebase_notify.core.errors import InvalidInputError
from homebase_notify.db.base import utcnow
from homebase_notify.models.push_subscription import PushSubscription

logger = logging.getLogger(__name__)


def register(db: Session, user_id: str, endpoint: str, p256dh: str, auth: str) -> tuple[PushSubscription, bool]:
    """Returns (row, created)."""
    endpoint = (endpoint or "").strip()
    if not endpoint.startswith("https://"):
        raise InvalidInputError("Push endpoint must be an https URL")
    existing = db.query(PushSubscription).filter(PushSubscription.endpoint == endpoint).first()
    if existing:
        existing.user_id = user_id
        existing.p256dh = p256dh
        existing.auth = auth
        existing.updated_at = utcnow()
        db.commit()
        return existing, False
    row = PushSubscription(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Registered push subscription %s for user %s", row.id, user_id)
    return row, True


def unregister(db: Session, user_id: str, endpoint: str) -> bool:
    deleted = (
        db.query(PushSubscription)
        .filter(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint.strip())
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted > 0

