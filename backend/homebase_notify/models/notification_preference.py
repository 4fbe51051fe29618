"""Per-user, per-role channel toggles for each event category, plus quiet hours.

One row per (user_id, role); created lazily with defaults on first read and
never deleted. Columns are named {category}_{channel}; use
preference_service.channels_for() rather than composing names by hand.
quiet_hours_start/end: 'HH:MM' local time, NULL = disabled.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint

from homebase_notify.db.base import Base, utcnow


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_notification_preferences_user_role"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(16), nullable=False)

    announcement_inapp = Column(Boolean, nullable=False, default=True)
    announcement_push = Column(Boolean, nullable=False, default=False)
    announcement_email = Column(Boolean, nullable=False, default=True)
    message_inapp = Column(Boolean, nullable=False, default=True)
    message_push = Column(Boolean, nullable=False, default=True)
    message_email = Column(Boolean, nullable=False, default=False)
    payment_inapp = Column(Boolean, nullable=False, default=True)
    payment_push = Column(Boolean, nullable=False, default=True)
    payment_email = Column(Boolean, nullable=False, default=True)
    payout_inapp = Column(Boolean, nullable=False, default=True)
    payout_push = Column(Boolean, nullable=False, default=True)
    payout_email = Column(Boolean, nullable=False, default=True)
    job_inapp = Column(Boolean, nullable=False, default=True)
    job_push = Column(Boolean, nullable=False, default=False)
    job_email = Column(Boolean, nullable=False, default=True)
    quote_inapp = Column(Boolean, nullable=False, default=True)
    quote_push = Column(Boolean, nullable=False, default=True)
    quote_email = Column(Boolean, nullable=False, default=True)
    review_inapp = Column(Boolean, nullable=False, default=True)
    review_push = Column(Boolean, nullable=False, default=True)
    review_email = Column(Boolean, nullable=False, default=False)
    booking_inapp = Column(Boolean, nullable=False, default=True)
    booking_push = Column(Boolean, nullable=False, default=True)
    booking_email = Column(Boolean, nullable=False, default=True)

    weekly_digest_enabled = Column(Boolean, nullable=False, default=False)
    quiet_hours_start = Column(String(5), nullable=True)
    quiet_hours_end = Column(String(5), nullable=True)
    quiet_hours_timezone = Column(String(64), nullable=True)  # NULL = settings.default_timezone

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
