"""
Send notification emails via the Resend API, falling back to SMTP (Gmail or other).

Set RESEND_API_KEY, or SMTP_USER and SMTP_PASSWORD, in .env. Neither set means
every email attempt fails with DeliveryError and stays retryable.
No idempotency key: a retry after a lost success response sends the email again.
"""
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import httpx
from sqlalchemy.orm import Session

from homebase_notify.config import settings
from homebase_notify.core.errors import DeliveryError
from homebase_notify.core.types import Channel
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.models.profile import Profile
from homebase_notify.services.channels.base import SendResult

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
DEFAULT_ACTION_PATH = "/notifications"

_SHELL = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
  </head>
  <body style="margin:0;padding:0;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,Arial,sans-serif;background-color:#f3f4f6;">
    <table role="presentation" style="width:100%;border-collapse:collapse;background-color:#f3f4f6;">
      <tr><td style="padding:40px 20px;">
        <table role="presentation" style="max-width:600px;margin:0 auto;background:linear-gradient(135deg,#667eea 0%,#764ba2 100%);border-radius:16px 16px 0 0;">
          <tr><td style="padding:40px 32px;text-align:center;">
            <h1 style="margin:0;color:#ffffff;font-size:24px;font-weight:700;">{title}</h1>
          </td></tr>
        </table>
        <table role="presentation" style="max-width:600px;margin:0 auto;background-color:#ffffff;border-radius:0 0 16px 16px;">
          <tr><td style="padding:40px 32px;">
            <p style="margin:0 0 24px 0;color:#4b5563;font-size:16px;line-height:1.6;white-space:pre-wrap;">{body}</p>
            <a href="{action_url}" style="display:inline-block;padding:14px 32px;border-radius:8px;background:#667eea;color:#ffffff;text-decoration:none;font-weight:600;">View Details</a>
          </td></tr>
          <tr><td style="padding:24px 32px;border-top:1px solid #e5e7eb;background-color:#f9fafb;text-align:center;">
            <p style="margin:0 0 8px 0;color:#6b7280;font-size:14px;">Powered by <strong style="color:#667eea;">HomeBase</strong></p>
            <p style="margin:0;color:#9ca3af;font-size:12px;">You're receiving this because you're a HomeBase user.</p>
          </td></tr>
        </table>
      </td></tr>
    </table>
  </body>
</html>
"""


def build_action_url(action_url: str | None, app_url: str | None = None) -> str:
    base = (app_url or settings.app_url).rstrip("/")
    path = action_url or DEFAULT_ACTION_PATH
    if path.startswith("http://") or path.startswith("https://"):
        return path
    if not path.startswith("/"):
        path = "/" + path
    return f"{base}{path}"


def render_email_html(title: str, body: str, action_url: str) -> str:
    """Shared shell: header with title, body text, CTA button, footer."""
    return _SHELL.format(
        title=html.escape(title),
        body=html.escape(body),
        action_url=html.escape(action_url, quote=True),
    )


class EmailSender:
    channel = Channel.EMAIL

    def __init__(
        self,
        api_key: str | None = None,
        from_address: str | None = None,
        app_url: str | None = None,
        client: httpx.Client | None = None,
    ):
        self._api_key = settings.resend_api_key if api_key is None else api_key
        self._from = from_address or settings.email_from
        self._app_url = app_url or settings.app_url
        self._client = client

    def _recipient_email(self, db: Session, user_id: str) -> str:
        profile = db.query(Profile).filter(Profile.user_id == user_id).first()
        email = (profile.email or "").strip() if profile else ""
        if not email:
            raise DeliveryError(f"No email found for user {user_id}")
        return email

    def send(self, db: Session, entry: NotificationOutbox) -> SendResult:
        payload: dict[str, Any] = entry.payload or {}
        to_email = self._recipient_email(db, payload.get("user_id", ""))
        title = payload.get("title") or "HomeBase notification"
        body = payload.get("body") or ""
        action_url = build_action_url(payload.get("action_url"), self._app_url)
        html_content = render_email_html(title, body, action_url)
        if self._api_key:
            message_id = self._send_resend(to_email, title, html_content)
        elif settings.smtp_user and settings.smtp_password:
            message_id = self._send_smtp(to_email, title, body, html_content)
        else:
            raise DeliveryError("Email provider not configured (RESEND_API_KEY or SMTP_USER/SMTP_PASSWORD)")
        logger.info("Email sent to %s for notification %s (id=%s)", to_email, entry.notification_id, message_id)
        return SendResult(provider_id=message_id, detail={"to": to_email})

    def _send_resend(self, to_email: str, subject: str, html_content: str) -> str | None:
        request = {"from": self._from, "to": [to_email], "subject": subject, "html": html_content}
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            if self._client is not None:
                resp = self._client.post(RESEND_URL, json=request, headers=headers)
            else:
                with httpx.Client(timeout=10.0) as client:
                    resp = client.post(RESEND_URL, json=request, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Resend request failed: {e}") from e
        if resp.status_code >= 400:
            detail = resp.text
            try:
                detail = resp.json().get("message") or detail
            except ValueError:
                pass
            raise DeliveryError(f"Resend API error ({resp.status_code}): {detail}")
        try:
            return resp.json().get("id")
        except ValueError:
            return None

    def _send_smtp(self, to_email: str, subject: str, body: str, html_content: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._from
        msg["To"] = to_email
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html_content, "html"))
        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(settings.smtp_user, settings.smtp_password)
                server.sendmail(settings.smtp_user, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP send failed: {e}") from e
        return None
