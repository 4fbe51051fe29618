"""
Outbox ledger: bookkeeping for every (notification, channel) delivery attempt.

Policy: each attempt bumps attempt_count. A failure below max attempts stays
'pending' with next_retry_at = now + base * 2^(attempt_count - 1) minutes
(5, 10, 20, 40 with the default base). Reaching max attempts makes the row
'failed' (terminal until an admin requeues it). 'sent' is terminal.
A pending row is held by whoever set its next_retry_at into the future: the
dispatcher for a fresh row, a sweep for a claimed one.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from homebase_notify.config import settings
from homebase_notify.core.constants import HIGH_ATTEMPTS_THRESHOLD, LAST_ERROR_MAX_LENGTH
from homebase_notify.core.errors import NotFoundError
from homebase_notify.core.types import Channel, OutboxStatus
from homebase_notify.db.base import utcnow
from homebase_notify.models.notification import Notification
from homebase_notify.models.notification_outbox import NotificationOutbox

logger = logging.getLogger(__name__)


def enqueue(
    db: Session,
    notification: Notification,
    channels: Iterable[Channel],
    payload: dict[str, Any],
    now: datetime | None = None,
) -> list[NotificationOutbox]:
    """
    One pending row per channel, attempt_count 0. Commits.

    Rows start claimed by the caller (next_retry_at = now + claim window) so a
    concurrent sweep leaves them alone while the first attempt is in flight.
    """
    now = now or utcnow()
    claimed_until = now + claim_window()
    rows = [
        NotificationOutbox(
            notification_id=notification.id,
            channel=Channel(ch).value,
            status=OutboxStatus.PENDING.value,
            attempt_count=0,
            next_retry_at=claimed_until,
            payload=payload,
        )
        for ch in channels
    ]
    db.add_all(rows)
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows


def claim_window() -> timedelta:
    return timedelta(seconds=settings.outbox_claim_seconds)


def claim(db: Session, entry: NotificationOutbox, now: datetime | None = None) -> bool:
    """
    Take a due pending row for this caller before sending it.

    Conditional UPDATE on (status, next_retry_at): only one of several racing
    sweeps matches, the others get False and must skip the row. The winner's
    row is hidden for the claim window; record_success/record_failure then
    overwrite next_retry_at.
    """
    now = now or utcnow()
    taken = (
        db.query(NotificationOutbox)
        .filter(
            NotificationOutbox.id == entry.id,
            NotificationOutbox.status == OutboxStatus.PENDING.value,
            or_(NotificationOutbox.next_retry_at.is_(None), NotificationOutbox.next_retry_at <= now),
        )
        .update({NotificationOutbox.next_retry_at: now + claim_window()}, synchronize_session=False)
    )
    db.commit()
    db.refresh(entry)
    return taken == 1


def backoff_delay(attempt_count: int, base_minutes: int | None = None) -> timedelta:
    base = settings.outbox_backoff_base_minutes if base_minutes is None else base_minutes
    return timedelta(minutes=base * (2 ** max(attempt_count - 1, 0)))


def record_success(db: Session, entry: NotificationOutbox, now: datetime | None = None) -> NotificationOutbox:
    now = now or utcnow()
    entry.attempt_count = (entry.attempt_count or 0) + 1
    entry.status = OutboxStatus.SENT.value
    entry.last_attempt_at = now
    entry.next_retry_at = None
    db.commit()
    return entry


def record_failure(
    db: Session,
    entry: NotificationOutbox,
    error: str | BaseException,
    now: datetime | None = None,
    max_attempts: int | None = None,
) -> NotificationOutbox:
    now = now or utcnow()
    max_attempts = max_attempts or settings.outbox_max_attempts
    message = str(error) or error.__class__.__name__
    entry.attempt_count = (entry.attempt_count or 0) + 1
    entry.last_error = message[:LAST_ERROR_MAX_LENGTH]
    entry.last_attempt_at = now
    if entry.attempt_count >= max_attempts:
        entry.status = OutboxStatus.FAILED.value
        entry.next_retry_at = None
        logger.warning(
            "Outbox %s (%s) failed permanently after %s attempts: %s",
            entry.id, entry.channel, entry.attempt_count, entry.last_error,
        )
    else:
        entry.status = OutboxStatus.PENDING.value
        entry.next_retry_at = now + backoff_delay(entry.attempt_count)
        logger.info(
            "Outbox %s (%s) attempt %s/%s failed; next retry at %s",
            entry.id, entry.channel, entry.attempt_count, max_attempts, entry.next_retry_at.isoformat(),
        )
    db.commit()
    return entry


def requeue(db: Session, entry_id: int) -> NotificationOutbox:
    """Admin: move a failed row back to pending, due now. attempt_count is kept."""
    entry = db.get(NotificationOutbox, entry_id)
    if entry is None:
        raise NotFoundError(f"Outbox entry {entry_id} not found")
    if entry.status == OutboxStatus.SENT.value:
        return entry
    entry.status = OutboxStatus.PENDING.value
    entry.next_retry_at = None
    db.commit()
    logger.info("Requeued outbox %s (%s) at attempt %s", entry.id, entry.channel, entry.attempt_count)
    return entry


def due_entries(
    db: Session,
    now: datetime | None = None,
    notification_id: int | None = None,
    limit: int | None = None,
) -> list[NotificationOutbox]:
    """Pending rows whose retry time has come, oldest first."""
    now = now or utcnow()
    q = db.query(NotificationOutbox).filter(
        NotificationOutbox.status == OutboxStatus.PENDING.value,
        or_(NotificationOutbox.next_retry_at.is_(None), NotificationOutbox.next_retry_at <= now),
    )
    if notification_id is not None:
        q = q.filter(NotificationOutbox.notification_id == notification_id)
    return q.order_by(NotificationOutbox.created_at.asc(), NotificationOutbox.id.asc()).limit(
        limit or settings.outbox_batch_size
    ).all()


def list_entries(
    db: Session,
    status: OutboxStatus | str | None = None,
    channel: Channel | str | None = None,
    limit: int = 100,
) -> list[NotificationOutbox]:
    q = db.query(NotificationOutbox)
    if status:
        q = q.filter(NotificationOutbox.status == OutboxStatus(status).value)
    if channel:
        q = q.filter(NotificationOutbox.channel == Channel(channel).value)
    return q.order_by(NotificationOutbox.created_at.desc(), NotificationOutbox.id.desc()).limit(limit).all()


def to_dict(entry: NotificationOutbox) -> dict[str, Any]:
    return {
        "id": entry.id,
        "notification_id": entry.notification_id,
        "channel": entry.channel,
        "status": entry.status,
        "attempt_count": entry.attempt_count,
        "last_error": entry.last_error,
        "next_retry_at": entry.next_retry_at.isoformat() if entry.next_retry_at else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def summary(db: Session) -> dict[str, Any]:
    """Counts by status and by (channel, status), plus rows with many attempts."""
    out: dict[str, Any] = {s.value: 0 for s in OutboxStatus}
    by_channel: dict[str, dict[str, int]] = {
        ch.value: {s.value: 0 for s in OutboxStatus} for ch in Channel
    }
    rows = (
        db.query(NotificationOutbox.channel, NotificationOutbox.status, func.count(NotificationOutbox.id))
        .group_by(NotificationOutbox.channel, NotificationOutbox.status)
        .all()
    )
    for channel, status, count in rows:
        out[status] = out.get(status, 0) + count
        by_channel.setdefault(channel, {}).setdefault(status, 0)
        by_channel[channel][status] += count
    out["byChannel"] = by_channel
    out["highAttempts"] = (
        db.query(func.count(NotificationOutbox.id))
        .filter(
            NotificationOutbox.attempt_count >= HIGH_ATTEMPTS_THRESHOLD,
            NotificationOutbox.status != OutboxStatus.SENT.value,
        )
        .scalar()
        or 0
    )
    return out
