"""Notification dispatch, outbox retry, channel delivery and conversation services."""
