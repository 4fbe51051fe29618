"""In-app feed reads and read-state updates for the caller's own notifications."""
from typing import Any

from sqlalchemy.orm import Session

from homebase_notify.core.errors import NotFoundError
from homebase_notify.db.base import utcnow
from homebase_notify.models.notification import Notification


def to_dict(r: Notification) -> dict[str, Any]:
    return {
        "id": r.id,
        "type": r.type,
        "category": r.category,
        "title": r.title,
        "body": r.body,
        "action_url": r.action_url,
        "read": r.read_at is not None,
        "read_at": r.read_at.isoformat() if r.read_at else None,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "metadata": r.payload or {},
    }


def unread_count(db: Session, user_id: str) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read_at.is_(None))
        .count()
    )


def list_notifications(db: Session, user_id: str, limit: int = 50, unread_only: bool = False) -> list[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read_at.is_(None))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(db: Session, user_id: str, notification_id: int) -> Notification:
    row = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not row:
        raise NotFoundError(f"Notification {notification_id} not found")
    if row.read_at is None:
        row.read_at = utcnow()
        db.commit()
    return row


def mark_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read_at.is_(None))
        .update({Notification.read_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated
