"""Runs every TYPING_TTL_SECONDS: clear typing indicators left by clients that went away mid-type."""
import logging

from homebase_notify.db.session import SessionLocal
from homebase_notify.services.conversation_service import clear_stale_typing

logger = logging.getLogger(__name__)


def run_typing_cleanup_job() -> None:
    db = SessionLocal()
    try:
        clear_stale_typing(db)
    except Exception as e:
        logger.exception("Typing cleanup job failed: %s", e)
        db.rollback()
    finally:
        db.close()
