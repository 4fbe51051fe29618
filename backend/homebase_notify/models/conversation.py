"""Conversations between marketplace profiles, their members and messages.

Messages are ordered by seq (monotonic per conversation), not by created_at,
so equal timestamps never reorder. last_read_at on a member only moves forward.
"""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from homebase_notify.db.base import Base, JSONType, utcnow


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_message_at = Column(DateTime(timezone=True), nullable=True)


class ConversationMember(Base):
    __tablename__ = "conversation_members"
    __table_args__ = (
        UniqueConstraint("conversation_id", "profile_id", name="uq_conversation_members_conversation_profile"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    profile_id = Column(Integer, nullable=False, index=True)
    last_read_at = Column(DateTime(timezone=True), nullable=True)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "seq", name="uq_messages_conversation_seq"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    sender_profile_id = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(16), nullable=False, default="text")
    meta = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
