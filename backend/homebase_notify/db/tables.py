"""
Single source of truth for database tables created by the migrations.

Use these names when writing raw SQL (e.g. TRUNCATE in a local reset).
"""
# All tables that exist in the DB. Must match models and migration 001.
ALL_TABLE_NAMES = (
    "profiles",
    "notification_preferences",
    "notifications",
    "notification_outbox",
    "push_subscriptions",
    "conversations",
    "conversation_members",
    "messages",
    "typing_states",
)

