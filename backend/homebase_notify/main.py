"""
FastAPI app entrypoint.

Notification dispatch (in-app / push / email with an outbox and retries),
per-role preferences, and realtime conversations.
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from homebase_notify.api.routes import admin, conversations, notifications, preferences, push
from homebase_notify.config import settings
from homebase_notify.core.constants import RETRY_JOB_ID, TYPING_CLEANUP_JOB_ID
from homebase_notify.scheduler.retry_job import run_notification_retry_job
from homebase_notify.scheduler.typing_cleanup_job import run_typing_cleanup_job

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    _scheduler.add_job(
        run_notification_retry_job,
        "interval",
        seconds=settings.retry_interval_seconds,
        id=RETRY_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        run_typing_cleanup_job,
        "interval",
        seconds=settings.typing_ttl_seconds,
        id=TYPING_CLEANUP_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    app.state.scheduler = _scheduler
    if not settings.vapid_configured:
        logger.warning("VAPID keys not set; push deliveries will fail and stay in the outbox")
    if not settings.email_configured:
        logger.warning("Neither RESEND_API_KEY nor SMTP credentials set; email deliveries will fail")
    logger.info(
        "Backend ready; retry sweep every %ss, typing cleanup every %ss",
        settings.retry_interval_seconds,
        settings.typing_ttl_seconds,
    )
    yield
    _scheduler.shutdown(wait=False)


app = FastAPI(title="HomeBase Notifications", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS (comma-separated) for the production frontend
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
if settings.cors_origins:
    _cors_origins.extend(o.strip() for o in settings.cors_origins.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications.router, tags=["notifications"])
app.include_router(preferences.router, prefix="/notifications", tags=["preferences"])
app.include_router(push.router, tags=["push"])
app.include_router(conversations.router, tags=["conversations"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


@app.get("/", include_in_schema=False)
def root():
    """Root: point to API docs and health."""
    return {"message": "HomeBase Notifications API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
