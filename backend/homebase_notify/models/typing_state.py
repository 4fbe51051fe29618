"""Ephemeral typing indicator, upserted per (conversation, profile).

A row counts as typing only while last_typed_at is within settings.typing_ttl_seconds;
the cleanup job clears rows left behind by clients that disconnected mid-type.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, UniqueConstraint

from homebase_notify.db.base import Base, utcnow


class TypingState(Base):
    __tablename__ = "typing_states"
    __table_args__ = (
        UniqueConstraint("conversation_id", "profile_id", name="uq_typing_states_conversation_profile"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, nullable=False, index=True)
    profile_id = Column(Integer, nullable=False)
    is_typing = Column(Boolean, nullable=False, default=False)
    last_typed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
