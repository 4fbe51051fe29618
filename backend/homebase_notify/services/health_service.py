"""
Notification system health for the admin dashboard: outbox backlog, subscriptions,
preference adoption, last-24h delivery and provider configuration.
"""
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from homebase_notify.config import Settings, settings as default_settings
from homebase_notify.core.constants import (
    HEALTH_HIGH_ATTEMPTS_WARNING,
    HEALTH_PENDING_WARNING,
    preference_column,
)
from homebase_notify.core.types import Category, Channel, OutboxStatus
from homebase_notify.db.base import utcnow
from homebase_notify.models.notification import Notification
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.models.notification_preference import NotificationPreference
from homebase_notify.models.push_subscription import PushSubscription
from homebase_notify.services import outbox_service
from homebase_notify.services.channels import list_channels


def _preference_summary(db: Session) -> dict[str, int]:
    def any_enabled(channel: Channel):
        return or_(*(getattr(NotificationPreference, preference_column(cat, channel)).is_(True) for cat in Category))

    return {
        "total": db.query(func.count(NotificationPreference.id)).scalar() or 0,
        "pushEnabled": db.query(func.count(NotificationPreference.id)).filter(any_enabled(Channel.PUSH)).scalar() or 0,
        "emailEnabled": db.query(func.count(NotificationPreference.id)).filter(any_enabled(Channel.EMAIL)).scalar() or 0,
    }


def _recent_activity(db: Session, since: datetime) -> dict[str, Any]:
    last24h = db.query(func.count(Notification.id)).filter(Notification.created_at >= since).scalar() or 0
    rows = (
        db.query(NotificationOutbox.channel, func.count(NotificationOutbox.id))
        .join(Notification, Notification.id == NotificationOutbox.notification_id)
        .filter(Notification.created_at >= since, NotificationOutbox.status == OutboxStatus.SENT.value)
        .group_by(NotificationOutbox.channel)
        .all()
    )
    delivered = {ch.value: 0 for ch in Channel}
    delivered.update({channel: count for channel, count in rows})
    return {"last24h": last24h, "deliveryRates": delivered}


def notifications_health(
    db: Session,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    now = now or utcnow()
    settings = settings or default_settings
    outbox = outbox_service.summary(db)
    vapid = {
        "publicKey": bool(settings.vapid_public_key),
        "privateKey": bool(settings.vapid_private_key),
        "subject": bool(settings.vapid_subject),
    }
    email = {
        "resend": bool(settings.resend_api_key),
        "smtp": bool(settings.smtp_user and settings.smtp_password),
    }
    health: dict[str, Any] = {
        "status": "healthy",
        "timestamp": now.isoformat(),
        "outbox": outbox,
        "pushSubscriptions": {"total": db.query(func.count(PushSubscription.id)).scalar() or 0},
        "preferences": _preference_summary(db),
        "recentActivity": _recent_activity(db, now - timedelta(hours=24)),
        "configuration": {"vapid": vapid, "email": email, "channels": list_channels()},
        "warnings": [],
    }
    warnings: list[str] = health["warnings"]
    if outbox[OutboxStatus.PENDING.value] > HEALTH_PENDING_WARNING:
        warnings.append(f"High number of pending notifications: {outbox[OutboxStatus.PENDING.value]}")
    if outbox["highAttempts"] > HEALTH_HIGH_ATTEMPTS_WARNING:
        warnings.append(f"{outbox['highAttempts']} notifications with 3+ failed attempts")
    if not vapid["publicKey"] or not vapid["privateKey"]:
        warnings.append("VAPID keys not fully configured")
        health["status"] = "degraded"
    if not (email["resend"] or email["smtp"]):
        warnings.append("Email provider not configured")
        health["status"] = "degraded"
    return health
