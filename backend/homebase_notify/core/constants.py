"""
Centralized constants for dispatch, scheduler and preferences (Encapsulate What Changes).

Change job IDs, defaults or event mappings here instead of scattering literals
across services and routes.
"""
from homebase_notify.core.types import Category, Channel

# Scheduler job IDs (must match ids used in main.py add_job)
RETRY_JOB_ID = "notification_retry"
TYPING_CLEANUP_JOB_ID = "typing_cleanup"

# Outbox
LAST_ERROR_MAX_LENGTH = 500
HIGH_ATTEMPTS_THRESHOLD = 3

# Health warnings
HEALTH_PENDING_WARNING = 100
HEALTH_HIGH_ATTEMPTS_WARNING = 10

# Feed / conversations: hard caps so responses stay bounded
FEED_DEFAULT_LIMIT = 50
FEED_MAX_LIMIT = 200
MESSAGES_DEFAULT_LIMIT = 100
MESSAGES_MAX_LIMIT = 500
MESSAGE_MAX_LENGTH = 5000
MESSAGE_PREVIEW_LENGTH = 100
# Retries when two senders race for the same per-conversation seq
MESSAGE_SEQ_RETRIES = 3

# Event type -> preference category. Unknown types fall back to announcement.
EVENT_CATEGORY_MAP: dict[str, Category] = {
    "announcement": Category.ANNOUNCEMENT,
    "message.received": Category.MESSAGE,
    "payment.succeeded": Category.PAYMENT,
    "payment.failed": Category.PAYMENT,
    "invoice.generated": Category.PAYMENT,
    "invoice.paid": Category.PAYMENT,
    "payout.initiated": Category.PAYOUT,
    "payout.paid": Category.PAYOUT,
    "payout.failed": Category.PAYOUT,
    "payout.updated": Category.PAYOUT,
    "job.requested": Category.JOB,
    "job.status.updated": Category.JOB,
    "quote.ready": Category.QUOTE,
    "quote.approved": Category.QUOTE,
    "review.received": Category.REVIEW,
    "booking.confirmed": Category.BOOKING,
    "booking.rescheduled": Category.BOOKING,
    "booking.canceled": Category.BOOKING,
}

# Defaults written on first preference read. Changing these only affects rows
# created afterwards; existing rows need a data migration.
DEFAULT_CHANNEL_MATRIX: dict[Category, dict[Channel, bool]] = {
    Category.ANNOUNCEMENT: {Channel.INAPP: True, Channel.PUSH: False, Channel.EMAIL: True},
    Category.MESSAGE: {Channel.INAPP: True, Channel.PUSH: True, Channel.EMAIL: False},
    Category.PAYMENT: {Channel.INAPP: True, Channel.PUSH: True, Channel.EMAIL: True},
    Category.PAYOUT: {Channel.INAPP: True, Channel.PUSH: True, Channel.EMAIL: True},
    Category.JOB: {Channel.INAPP: True, Channel.PUSH: False, Channel.EMAIL: True},
    Category.QUOTE: {Channel.INAPP: True, Channel.PUSH: True, Channel.EMAIL: True},
    Category.REVIEW: {Channel.INAPP: True, Channel.PUSH: True, Channel.EMAIL: False},
    Category.BOOKING: {Channel.INAPP: True, Channel.PUSH: True, Channel.EMAIL: True},
}
DEFAULT_WEEKLY_DIGEST_ENABLED = False

# Announcement audiences -> profile role filter (None = everyone)
ANNOUNCEMENT_AUDIENCES = {
    "all": None,
    "providers": "provider",
    "homeowners": "homeowner",
}


def preference_column(category: Category, channel: Channel) -> str:
    """Column name for one cell of the matrix, e.g. message_push."""
    return f"{category.value}_{channel.value}"
