"""Notification preferences for the caller's (user_id, role). Missing row = defaults, created on read."""
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from homebase_notify.api.deps import Caller, current_caller
from homebase_notify.core.errors import NotificationError, error_to_http
from homebase_notify.db.session import get_db
from homebase_notify.services import preference_service

router = APIRouter()
logger = logging.getLogger(__name__)

# Echoed back by clients that PUT the whole object they loaded; not writable
_READ_ONLY_FIELDS = ("user_id", "role", "id", "created_at", "updated_at")


@router.get("/preferences")
def get_preferences(
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
) -> dict[str, Any]:
    pref = preference_service.get_or_create(db, caller.user_id, caller.role)
    return preference_service.to_dict(pref)


@router.put("/preferences")
def update_preferences(
    body: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    caller: Caller = Depends(current_caller),
) -> dict[str, Any]:
    """
    Overwrite the provided fields. Last write wins: two tabs saving different
    edits keep whichever arrives second.
    """
    partial = {k: v for k, v in body.items() if k not in _READ_ONLY_FIELDS}
    if not partial:
        raise HTTPException(status_code=422, detail="No preference fields provided")
    try:
        pref = preference_service.update(db, caller.user_id, caller.role, partial)
    except NotificationError as e:
        raise error_to_http(e)
    return preference_service.to_dict(pref)
