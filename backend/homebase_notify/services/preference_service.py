"""
Notification preferences: lazily-created per (user_id, role) channel matrix plus quiet hours.

Updates are last-write-wins: the client sends the full object it loaded and
whatever arrives last is stored. There is no version column, so two open tabs
editing at once overwrite each other.
"""
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from homebase_notify.core.constants import (
    DEFAULT_CHANNEL_MATRIX,
    DEFAULT_WEEKLY_DIGEST_ENABLED,
    preference_column,
)
from homebase_notify.core.errors import PreferenceValidationError
from homebase_notify.core.quiet_hours import parse_hhmm, resolve_zone
from homebase_notify.core.types import Category, Channel, Role
from homebase_notify.models.notification_preference import NotificationPreference

logger = logging.getLogger(__name__)

MATRIX_FIELDS = tuple(preference_column(cat, ch) for cat in Category for ch in Channel)
QUIET_HOURS_FIELDS = ("quiet_hours_start", "quiet_hours_end")
UPDATABLE_FIELDS = frozenset(MATRIX_FIELDS + QUIET_HOURS_FIELDS + ("weekly_digest_enabled", "quiet_hours_timezone"))


def _default_values() -> dict[str, Any]:
    values: dict[str, Any] = {
        preference_column(cat, ch): enabled
        for cat, channels in DEFAULT_CHANNEL_MATRIX.items()
        for ch, enabled in channels.items()
    }
    values["weekly_digest_enabled"] = DEFAULT_WEEKLY_DIGEST_ENABLED
    values["quiet_hours_start"] = None
    values["quiet_hours_end"] = None
    values["quiet_hours_timezone"] = None
    return values


def _role_value(role: Role | str) -> str:
    try:
        return Role(role).value
    except ValueError as e:
        raise PreferenceValidationError(f"Unknown role {role!r}") from e


def get(db: Session, user_id: str, role: Role | str) -> NotificationPreference | None:
    return (
        db.query(NotificationPreference)
        .filter(NotificationPreference.user_id == user_id, NotificationPreference.role == _role_value(role))
        .first()
    )


def get_or_create(db: Session, user_id: str, role: Role | str) -> NotificationPreference:
    """
    Return the preference row, inserting defaults on first read.
    A concurrent insert of the same (user_id, role) loses to the unique
    constraint; we roll back and return the row the other writer created.
    """
    role_value = _role_value(role)
    row = get(db, user_id, role_value)
    if row:
        return row
    row = NotificationPreference(user_id=user_id, role=role_value, **_default_values())
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Preferences for user=%s role=%s created concurrently; reloading", user_id, role_value)
        row = get(db, user_id, role_value)
        if row is None:
            raise
        return row
    db.refresh(row)
    logger.info("Created default notification preferences for user=%s role=%s", user_id, role_value)
    return row


def _validate(partial: dict[str, Any]) -> dict[str, Any]:
    unknown = set(partial) - UPDATABLE_FIELDS
    if unknown:
        raise PreferenceValidationError(f"Unknown preference fields: {', '.join(sorted(unknown))}")
    cleaned: dict[str, Any] = {}
    for key, value in partial.items():
        if key in QUIET_HOURS_FIELDS or key == "quiet_hours_timezone":
            if value is not None and not isinstance(value, str):
                raise PreferenceValidationError(f"{key} must be a string or null")
        if key in QUIET_HOURS_FIELDS:
            t = parse_hhmm(value)
            cleaned[key] = t.strftime("%H:%M") if t else None
        elif key == "quiet_hours_timezone":
            if value:
                resolve_zone(value)
            cleaned[key] = value or None
        else:
            if not isinstance(value, bool):
                raise PreferenceValidationError(f"{key} must be a boolean")
            cleaned[key] = value
    return cleaned


def update(db: Session, user_id: str, role: Role | str, partial: dict[str, Any]) -> NotificationPreference:
    """Overwrite exactly the provided fields (last write wins). Creates the row first if missing."""
    cleaned = _validate(partial)
    row = get_or_create(db, user_id, role)
    for key, value in cleaned.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    logger.info("Updated %s preference fields for user=%s role=%s", len(cleaned), user_id, row.role)
    return row


def channels_for(pref: NotificationPreference | None, category: Category) -> dict[Channel, bool]:
    """Channel toggles for one category. No row means the defaults."""
    if pref is None:
        return dict(DEFAULT_CHANNEL_MATRIX[category])
    return {ch: bool(getattr(pref, preference_column(category, ch))) for ch in Channel}


def channel_matrix(pref: NotificationPreference | None) -> dict[Category, dict[Channel, bool]]:
    return {cat: channels_for(pref, cat) for cat in Category}


def to_dict(pref: NotificationPreference) -> dict[str, Any]:
    """Row-shaped external form: {category}_{channel} booleans plus digest and quiet hours."""
    out: dict[str, Any] = {"user_id": pref.user_id, "role": pref.role}
    for field in MATRIX_FIELDS:
        out[field] = bool(getattr(pref, field))
    out["weekly_digest_enabled"] = bool(pref.weekly_digest_enabled)
    out["quiet_hours_start"] = pref.quiet_hours_start
    out["quiet_hours_end"] = pref.quiet_hours_end
    out["quiet_hours_timezone"] = pref.quiet_hours_timezone
    out["updated_at"] = pref.updated_at.isoformat() if pref.updated_at else None
    return out
