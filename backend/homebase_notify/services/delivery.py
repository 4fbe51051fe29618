"""One delivery attempt for one outbox row: pick the sender, call it, record the outcome."""
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from homebase_notify.core.errors import DeliveryError
from homebase_notify.core.types import Channel
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.services import outbox_service
from homebase_notify.services.channels import get_sender

logger = logging.getLogger(__name__)


def attempt_delivery(
    db: Session,
    entry: NotificationOutbox,
    senders: Mapping[Channel, Any] | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Returns True if the row ended up sent. Any failure is recorded on the row
    (attempt_count, last_error, next_retry_at) and never raised.
    """
    channel = Channel(entry.channel)
    sender = senders.get(channel) if senders else None
    if sender is None:
        sender = get_sender(channel)
    try:
        sender.send(db, entry)
    except DeliveryError as e:
        outbox_service.record_failure(db, entry, e, now=now)
        return False
    except Exception as e:
        # Unexpected sender bug or DB error: keep the row retryable rather than losing it
        logger.warning("Unexpected %s sender error for outbox %s: %s", channel.value, entry.id, e, exc_info=True)
        db.rollback()
        outbox_service.record_failure(db, entry, e, now=now)
        return False
    outbox_service.record_success(db, entry, now=now)
    return True
