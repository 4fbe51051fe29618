"""Email sender: Resend request shape, recipient lookup, failures surface as DeliveryError."""
import json

import httpx
import pytest

from homebase_notify.core.errors import DeliveryError
from homebase_notify.models.notification_outbox import NotificationOutbox
from homebase_notify.services.channels.email import (
    RESEND_URL,
    EmailSender,
    build_action_url,
    render_email_html,
)


def _entry(db, user_id, **payload) -> NotificationOutbox:
    entry = NotificationOutbox(
        notification_id=1,
        channel="email",
        status="pending",
        payload={"user_id": user_id, "title": "Payment received", "body": "You got $120", **payload},
    )
    db.add(entry)
    db.commit()
    return entry


def _sender(handler) -> tuple[EmailSender, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request):
        requests.append(request)
        return handler(request)

    client = httpx.Client(transport=httpx.MockTransport(record))
    sender = EmailSender(
        api_key="re_test",
        from_address="HomeBase <n@example.com>",
        app_url="https://app.example.com",
        client=client,
    )
    return sender, requests


def test_sends_through_resend(db, make_profile):
    profile = make_profile(email="owner@example.com")
    sender, requests = _sender(lambda r: httpx.Response(200, json={"id": "email_123"}))

    result = sender.send(db, _entry(db, profile.user_id, action_url="/payments/9"))

    assert result.provider_id == "email_123"
    assert str(requests[0].url) == RESEND_URL
    assert requests[0].headers["Authorization"] == "Bearer re_test"
    body = json.loads(requests[0].content)
    assert body["to"] == ["owner@example.com"]
    assert body["subject"] == "Payment received"
    assert "https://app.example.com/payments/9" in body["html"]


def test_provider_error_raises_delivery_error(db, make_profile):
    profile = make_profile()
    sender, _ = _sender(lambda r: httpx.Response(422, json={"message": "Invalid from address"}))
    with pytest.raises(DeliveryError, match="Invalid from address"):
        sender.send(db, _entry(db, profile.user_id))


def test_missing_recipient_email_raises(db, make_profile):
    profile = make_profile(email="")
    sender, requests = _sender(lambda r: httpx.Response(200, json={"id": "x"}))
    with pytest.raises(DeliveryError, match="No email"):
        sender.send(db, _entry(db, profile.user_id))
    assert requests == []


def test_unconfigured_provider_raises(db, make_profile, monkeypatch):
    from homebase_notify.services.channels import email as email_module

    monkeypatch.setattr(email_module.settings, "smtp_user", "")
    monkeypatch.setattr(email_module.settings, "smtp_password", "")
    profile = make_profile()
    sender = EmailSender(api_key="")
    with pytest.raises(DeliveryError, match="not configured"):
        sender.send(db, _entry(db, profile.user_id))


def test_action_url_building():
    assert build_action_url("/jobs/3", "https://app.example.com/") == "https://app.example.com/jobs/3"
    assert build_action_url("jobs/3", "https://app.example.com") == "https://app.example.com/jobs/3"
    assert build_action_url("https://elsewhere.test/x", "https://app.example.com") == "https://elsewhere.test/x"
    assert build_action_url(None, "https://app.example.com") == "https://app.example.com/notifications"


def test_html_escapes_user_content():
    html = render_email_html("<b>Hi</b>", "a & b", "https://x.test/?a=1&b=2")
    assert "&lt;b&gt;Hi&lt;/b&gt;" in html
    assert "a &amp; b" in html
