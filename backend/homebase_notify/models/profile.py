"""Marketplace user profile: the role and contact details the dispatcher needs.

user_id: auth user id issued by the hosted auth service.
role: 'admin' | 'provider' | 'homeowner' (announcement targeting, preference key).
"""
from sqlalchemy import Column, DateTime, Integer, String

from homebase_notify.db.base import Base, utcnow


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True, index=True)
    role = Column(String(16), nullable=False, index=True)
    email = Column(String(320), nullable=True)
    full_name = Column(String(256), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
