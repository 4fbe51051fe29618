"""
Send Web Push notifications to every browser subscription a user has registered.

Requires VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY (raw 32-byte base64url or PEM) in env.
The push carries no payload: it is a signed wake-up, and the service worker
fetches the newest feed entry itself.

An outbox row counts as sent when at least one device accepts the push.
Endpoints that answer 404/410 are expired and their subscription row is deleted.
"""
import base64
import logging
import time
from urllib.parse import urlsplit

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.orm import Session

from homebase_notify.config import settings
from homebase_notify.core.errors import DeliveryError
from homebase_notify.core.types import Channel
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.models.push_subscription import PushSubscription
from homebase_notify.services.channels.base import SendResult

logger = logging.getLogger(__name__)

PUSH_TTL_SECONDS = 86400
_JWT_LIFETIME_SECONDS = 12 * 60 * 60
_JWT_REFRESH_SECONDS = 11 * 60 * 60  # reuse a token for a bit less than its lifetime
_EXPIRED_STATUSES = (404, 410)
_OK_STATUSES = (200, 201, 202)


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def load_vapid_private_key(value: str):
    """PEM string, or base64url of a raw 32-byte P-256 scalar / DER PKCS#8 key."""
    value = (value or "").strip()
    if not value:
        raise DeliveryError("VAPID keys not configured")
    if value.startswith("-----BEGIN"):
        try:
            return serialization.load_pem_private_key(value.encode("utf-8"), password=None)
        except ValueError as e:
            raise DeliveryError(f"Invalid VAPID private key: {e}") from e
    try:
        raw = _b64url_decode(value)
    except ValueError as e:
        raise DeliveryError(f"Invalid VAPID private key: {e}") from e
    if len(raw) == 32:
        return ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256R1())
    try:
        return serialization.load_der_private_key(raw, password=None)
    except ValueError as e:
        raise DeliveryError("Invalid VAPID private key. Expected 32-byte raw key or PKCS#8") from e


class PushSender:
    channel = Channel.PUSH

    def __init__(
        self,
        public_key: str | None = None,
        private_key: str | None = None,
        subject: str | None = None,
        client: httpx.Client | None = None,
    ):
        self._public_key = settings.vapid_public_key if public_key is None else public_key
        self._private_key_raw = settings.vapid_private_key if private_key is None else private_key
        self._subject = subject or settings.vapid_subject
        self._client = client
        self._private_key = None
        # audience -> (token, reuse_until_epoch)
        self._jwt_cache: dict[str, tuple[str, float]] = {}

    def _signing_key(self):
        if self._private_key is None:
            self._private_key = load_vapid_private_key(self._private_key_raw)
        return self._private_key

    def vapid_authorization(self, endpoint: str) -> str:
        """'vapid t=<jwt>, k=<public key>' for the endpoint's origin. Tokens are cached per origin."""
        parts = urlsplit(endpoint)
        audience = f"{parts.scheme}://{parts.netloc}"
        now = time.time()
        cached = self._jwt_cache.get(audience)
        if cached and cached[1] > now:
            token = cached[0]
        else:
            token = jwt.encode(
                {"aud": audience, "exp": int(now) + _JWT_LIFETIME_SECONDS, "sub": self._subject},
                self._signing_key(),
                algorithm="ES256",
                headers={"typ": "JWT", "alg": "ES256"},
            )
            self._jwt_cache[audience] = (token, now + _JWT_REFRESH_SECONDS)
        return f"vapid t={token}, k={self._public_key}"

    def _post(self, client: httpx.Client, sub: PushSubscription) -> int | None:
        """Status code from the push service, or None when the request itself failed."""
        headers = {
            "Authorization": self.vapid_authorization(sub.endpoint),
            "TTL": str(PUSH_TTL_SECONDS),
            "Content-Length": "0",
        }
        try:
            resp = client.post(sub.endpoint, content=b"", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Push request failed for subscription %s: %s", sub.id, e)
            return None
        if resp.status_code not in _OK_STATUSES and resp.status_code not in _EXPIRED_STATUSES:
            logger.warning("Push service returned %s for subscription %s: %s", resp.status_code, sub.id, resp.text[:200])
        return resp.status_code

    def send(self, db: Session, entry: NotificationOutbox) -> SendResult:
        if not self._public_key or not self._private_key_raw:
            raise DeliveryError("VAPID keys not configured")
        user_id = (entry.payload or {}).get("user_id", "")
        subs = db.query(PushSubscription).filter(PushSubscription.user_id == user_id).all()
        if not subs:
            raise DeliveryError(f"No push subscriptions for user {user_id}")
        sent = failed = 0
        expired: list[PushSubscription] = []
        if self._client is not None:
            statuses = [(sub, self._post(self._client, sub)) for sub in subs]
        else:
            with httpx.Client(timeout=10.0) as client:
                statuses = [(sub, self._post(client, sub)) for sub in subs]
        for sub, status in statuses:
            if status in _OK_STATUSES:
                sent += 1
            else:
                failed += 1
                if status in _EXPIRED_STATUSES:
                    expired.append(sub)
        for sub in expired:
            db.delete(sub)
        if expired:
            db.commit()
            logger.info("Removed %s expired push subscription(s) for user %s", len(expired), user_id)
        logger.info("Push for notification %s: sent=%s failed=%s", entry.notification_id, sent, failed)
        if sent == 0:
            raise DeliveryError(f"All push notification attempts failed ({failed} device(s))")
        return SendResult(detail={"sent": sent, "failed": failed, "removed": len(expired)})
