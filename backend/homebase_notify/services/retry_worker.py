"""
Retry sweep over the outbox: re-send every pending row whose backoff has elapsed.

Run by the scheduler every RETRY_INTERVAL_SECONDS and on demand from the admin
health page (optionally narrowed to one notification). Rows are processed
oldest first, but nothing guarantees delivery order across rows.
"""
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from homebase_notify.core.types import Channel
from homebase_notify.db.base import utcnow
from homebase_notify.services import outbox_service
from homebase_notify.services.delivery import attempt_delivery

logger = logging.getLogger(__name__)


def run_retry_sweep(
    db: Session,
    now: datetime | None = None,
    notification_id: int | None = None,
    senders: Mapping[Channel, Any] | None = None,
    limit: int | None = None,
) -> dict[str, int]:
    now = now or utcnow()
    entries = outbox_service.due_entries(db, now=now, notification_id=notification_id, limit=limit)
    if not entries:
        logger.debug("Retry sweep: no pending outbox rows due")
        return {"processed": 0, "succeeded": 0, "failed": 0}

    processed = succeeded = failed = 0
    for entry in entries:
        if not outbox_service.claim(db, entry, now=now):
            logger.info("Outbox %s (%s) already taken by another worker; skipping", entry.id, entry.channel)
            continue
        processed += 1
        logger.info(
            "Retrying %s for notification %s (attempt %s)",
            entry.channel, entry.notification_id, (entry.attempt_count or 0) + 1,
        )
        if attempt_delivery(db, entry, senders=senders, now=now):
            succeeded += 1
        else:
            failed += 1
    logger.info("Retry sweep: %s processed, %s succeeded, %s failed", processed, succeeded, failed)
    return {"processed": processed, "succeeded": succeeded, "failed": failed}
