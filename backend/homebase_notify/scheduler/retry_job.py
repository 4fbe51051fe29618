"""Runs every RETRY_INTERVAL_SECONDS: re-send pending outbox rows whose backoff has elapsed."""
import logging

from homebase_notify.db.session import SessionLocal
from homebase_notify.services.retry_worker import run_retry_sweep

logger = logging.getLogger(__name__)


def run_notification_retry_job() -> None:
    db = SessionLocal()
    try:
        run_retry_sweep(db)
    except Exception as e:
        logger.exception("Notification retry job failed: %s", e)
        db.rollback()
    finally:
        db.close()
