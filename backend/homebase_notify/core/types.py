"""Enums shared by models, services and routes."""
from enum import Enum


class Channel(str, Enum):
    INAPP = "inapp"
    PUSH = "push"
    EMAIL = "email"


class Category(str, Enum):
    ANNOUNCEMENT = "announcement"
    MESSAGE = "message"
    PAYMENT = "payment"
    PAYOUT = "payout"
    JOB = "job"
    QUOTE = "quote"
    REVIEW = "review"
    BOOKING = "booking"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Role(str, Enum):
    ADMIN = "admin"
    PROVIDER = "provider"
    HOMEOWNER = "homeowner"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


# Channels that honour quiet hours. In-app is passive (pulled by the client) and never suppressed.
INTERRUPTING_CHANNELS = frozenset({Channel.PUSH, Channel.EMAIL})
