"""Outbox ledger: one row per (notification, channel) delivery.

status: pending -> sent (terminal) | pending (retry scheduled) | failed (terminal after max attempts).
attempt_count only ever increases. Rows are never deleted (admin health page reads them).
payload: snapshot of title/body/user_id/role/action_url/metadata at dispatch time.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from homebase_notify.db.base import Base, JSONType, utcnow


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"
    __table_args__ = (
        Index("ix_notification_outbox_status_next_retry", "status", "next_retry_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(Integer, ForeignKey("notifications.id"), nullable=False, index=True)
    channel = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
