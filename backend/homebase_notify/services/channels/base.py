"""Protocol for channel senders. Every channel takes an outbox row and either returns or raises."""
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.orm import Session

from homebase_notify.core.types import Channel
from homebase_notify.models.notification_outbox import NotificationOutbox


@dataclass
class SendResult:
    """What a successful send reports back (provider id, per-device counts, ...)."""

    provider_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)


class ChannelSender(Protocol):
    """Interface for in-app, push and email delivery. Same contract; only transport differs."""

    @property
    def channel(self) -> Channel:
        ...

    def send(self, db: Session, entry: NotificationOutbox) -> SendResult:
        """
        Deliver one outbox row. Raise DeliveryError on failure; the caller
        records it on the row and the retry worker tries again later.
        """
        ...
