"""In-app notification feed row. One per dispatched event.

type: event type as sent by the caller ('payment.succeeded', ...).
category: preference category the type maps to.
read_at: NULL = unread; set when the user marks it read.
metadata: JSONB for type-specific payload (ids, amounts, announcement priority, ...).
"""
from sqlalchemy import Column, DateTime, Integer, String, Text

from homebase_notify.db.base import Base, JSONType, utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    profile_id = Column(Integer, nullable=True)
    role = Column(String(16), nullable=False)
    type = Column(String(64), nullable=False, index=True)
    category = Column(String(32), nullable=False)
    title = Column(String(256), nullable=False)
    body = Column(Text, nullable=False, default="")
    action_url = Column(String(512), nullable=True)
    payload = Column("metadata", JSONType, nullable=False, default=dict)  # column name 'metadata' in DB
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
