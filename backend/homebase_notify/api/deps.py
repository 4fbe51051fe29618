"""
Caller identity for routes.

The gateway in front of this service verifies the session and forwards
X-User-Id / X-User-Role. Admin routes also accept the service-role key as a
bearer token for server-to-server calls (business events, cron, tests).
"""
import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from homebase_notify.config import settings
from homebase_notify.core.types import Role
from homebase_notify.db.session import get_db
from homebase_notify.models.profile import Profile


@dataclass
class Caller:
    user_id: str
    role: str


def current_caller(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
    user_id: str | None = Query(None),
) -> Caller:
    uid = (x_user_id or user_id or "").strip()
    if not uid:
        raise HTTPException(status_code=401, detail="Missing user identity")
    role = (x_user_role or "").strip() or Role.HOMEOWNER.value
    try:
        role = Role(role).value
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Invalid role {role!r}")
    return Caller(user_id=uid, role=role)


def _is_service_role(authorization: str | None) -> bool:
    if not authorization or not settings.service_role_key:
        return False
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return hmac.compare_digest(token, settings.service_role_key)


def require_admin(
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
) -> None:
    if _is_service_role(authorization):
        return
    if not x_user_id and not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if x_user_id and (x_user_role or "").strip() == Role.ADMIN.value:
        return
    raise HTTPException(status_code=403, detail="Forbidden")


def current_profile(caller: Caller = Depends(current_caller), db: Session = Depends(get_db)) -> Profile:
    profile = db.query(Profile).filter(Profile.user_id == caller.user_id).first()
    if profile is None:
        raise HTTPException(status_code=403, detail="No profile for this user")
    return profile
