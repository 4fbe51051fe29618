"""In-app channel: the notifications feed row is the delivery; clients poll or subscribe to it."""
from sqlalchemy.orm import Session

from homebase_notify.core.types import Channel
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.services.channels.base import SendResult


class InAppSender:
    channel = Channel.INAPP

    def send(self, db: Session, entry: NotificationOutbox) -> SendResult:
        return SendResult(detail={"notification_id": entry.notification_id})
