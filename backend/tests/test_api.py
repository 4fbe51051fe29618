"""HTTP surface: identity, admin auth, preferences, dispatch, feed, push registration, conversations."""
import pytest
from fastapi import WebSocketDisconnect

from homebase_notify.models.notification_outbox import NotificationOutbox

ADMIN = {"Authorization": "Bearer test-service-key"}


def _as(user_id, role="homeowner"):
    return {"X-User-Id": user_id, "X-User-Role": role}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_identity_is_401(client):
    assert client.get("/notifications").status_code == 401
    assert client.get("/notifications", headers={"X-User-Id": "u1", "X-User-Role": "wizard"}).status_code == 401


def test_user_id_query_fallback(client):
    response = client.get("/notifications/unread-count", params={"user_id": "u1"})
    assert response.status_code == 200
    assert response.json() == {"unread_count": 0}


def test_preferences_get_creates_defaults(client):
    response = client.get("/notifications/preferences", headers=_as("u1", "provider"))
    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "provider"
    assert body["message_push"] is True
    assert body["quiet_hours_start"] is None


def test_preferences_put_ignores_read_only_fields(client):
    current = client.get("/notifications/preferences", headers=_as("u1")).json()
    current.update({"payment_email": False, "quiet_hours_start": "22:00", "quiet_hours_end": "07:00"})
    response = client.put("/notifications/preferences", headers=_as("u1"), json=current)
    assert response.status_code == 200
    assert response.json()["payment_email"] is False
    assert response.json()["quiet_hours_end"] == "07:00"


def test_preferences_put_validation(client):
    assert client.put("/notifications/preferences", headers=_as("u1"), json={"quiet_hours_start": "late"}).status_code == 422
    assert client.put("/notifications/preferences", headers=_as("u1"), json={"quiet_hours_start": 2200}).status_code == 422
    assert client.put("/notifications/preferences", headers=_as("u1"), json={"quiet_hours_timezone": 5}).status_code == 422
    assert client.put("/notifications/preferences", headers=_as("u1"), json={"user_id": "someone-else"}).status_code == 422


def test_dispatch_requires_admin(client):
    body = {"type": "payment.succeeded", "userId": "u1", "role": "homeowner", "title": "Paid"}
    assert client.post("/notifications/dispatch", json=body).status_code == 401
    assert client.post("/notifications/dispatch", json=body, headers=_as("u1")).status_code == 403
    assert client.post("/notifications/dispatch", json=body, headers={"Authorization": "Bearer wrong"}).status_code == 403
    assert client.post("/notifications/dispatch", json=body, headers=_as("a1", "admin")).status_code == 200


def test_dispatch_and_feed_round_trip(client, senders):
    body = {
        "type": "quote.ready",
        "userId": "u1",
        "role": "homeowner",
        "title": "New quote",
        "body": "Pat sent a quote",
        "actionUrl": "/quotes/3",
        "metadata": {"quote_id": 3},
    }
    dispatched = client.post("/notifications/dispatch", json=body, headers=ADMIN)
    assert dispatched.status_code == 200
    result = dispatched.json()
    assert result["recipients"] == 1
    assert result["channels"] == {"inapp": True, "push": True, "email": True}
    assert result["emails_sent"] == 1

    feed = client.get("/notifications", headers=_as("u1")).json()
    assert feed["unread_count"] == 1
    item = feed["notifications"][0]
    assert (item["title"], item["metadata"], item["read"]) == ("New quote", {"quote_id": 3}, False)

    read = client.patch(f"/notifications/{item['id']}/read", headers=_as("u1"))
    assert read.status_code == 200
    assert client.get("/notifications/unread-count", headers=_as("u1")).json() == {"unread_count": 0}
    # Someone else's notification is not visible
    assert client.patch(f"/notifications/{item['id']}/read", headers=_as("u2")).status_code == 404


def test_mark_all_read(client):
    for _ in range(3):
        client.post(
            "/notifications/dispatch",
            json={"type": "job", "userId": "u1", "role": "provider", "title": "Job", "forceChannels": {"inapp": True}},
            headers=ADMIN,
        )
    response = client.post("/notifications/mark-all-read", headers=_as("u1", "provider"))
    assert response.json() == {"ok": True, "marked_count": 3}


def test_push_subscribe_and_unsubscribe(client):
    body = {"endpoint": "https://push.example.com/abc", "keys": {"p256dh": "key", "auth": "secret"}}
    first = client.post("/push/subscribe", json=body, headers=_as("u1"))
    second = client.post("/push/subscribe", json=body, headers=_as("u1"))
    assert first.status_code == second.status_code == 200
    assert first.json()["id"] == second.json()["id"]

    bad = client.post("/push/subscribe", json={**body, "endpoint": "http://insecure.example.com"}, headers=_as("u1"))
    assert bad.status_code == 422

    removed = client.post("/push/unsubscribe", json={"endpoint": body["endpoint"]}, headers=_as("u1"))
    assert removed.json() == {"ok": True, "removed": True}


def test_vapid_public_key_is_public(client):
    assert "publicKey" in client.get("/push/vapid-public-key").json()


def test_admin_outbox_retry_and_requeue(client, session_factory, senders):
    from homebase_notify.core.types import Channel

    senders[Channel.EMAIL].fail = True
    client.post(
        "/notifications/dispatch",
        json={"type": "payout", "userId": "u1", "role": "provider", "title": "Payout", "forceChannels": {"email": True}},
        headers=ADMIN,
    )
    entries = client.get("/admin/notifications/outbox", params={"status": "pending"}, headers=ADMIN).json()["entries"]
    assert len(entries) == 1
    assert entries[0]["attempt_count"] == 1

    # Backoff not elapsed yet
    assert client.post("/admin/notifications/retry", headers=ADMIN).json()["processed"] == 0

    db = session_factory()
    try:
        row = db.get(NotificationOutbox, entries[0]["id"])
        row.status, row.next_retry_at = "failed", None
        db.commit()
    finally:
        db.close()

    senders[Channel.EMAIL].fail = False
    requeued = client.post(f"/admin/notifications/outbox/{entries[0]['id']}/requeue", headers=ADMIN).json()
    assert requeued["status"] == "pending"
    assert client.post("/admin/notifications/retry", json={}, headers=ADMIN).json() == {
        "processed": 1,
        "succeeded": 1,
        "failed": 0,
    }
    assert client.post("/admin/notifications/outbox/999/requeue", headers=ADMIN).status_code == 404


def test_admin_health(client):
    response = client.get("/admin/notifications/health", headers=_as("a1", "admin"))
    assert response.status_code == 200
    body = response.json()
    assert body["status"] in ("healthy", "degraded")
    assert set(body) >= {"outbox", "pushSubscriptions", "preferences", "recentActivity", "configuration", "warnings"}
    assert body["configuration"]["channels"] == ["inapp", "push", "email"]
    assert client.get("/admin/notifications/health", headers=_as("u1")).status_code == 403


def test_admin_test_send_and_announcement(client, db, make_profile):
    make_profile("provider")
    make_profile("homeowner")
    test_send = client.post(
        "/admin/notifications/test",
        json={"user_id": "x1", "role": "homeowner", "channels": {"inapp": True}},
        headers=ADMIN,
    )
    assert test_send.status_code == 200
    assert test_send.json()["channels"] == {"inapp": True, "push": False, "email": False}

    announced = client.post(
        "/admin/announcements",
        json={"title": "Hi", "body": "Welcome", "target_audience": "homeowners"},
        headers=ADMIN,
    )
    assert announced.status_code == 200
    assert announced.json()["recipients"] == 1
    assert client.post(
        "/admin/announcements", json={"title": "Hi", "body": "x", "target_audience": "aliens"}, headers=ADMIN
    ).status_code == 422


def test_conversation_endpoints(client, make_profile):
    owner = make_profile("homeowner")
    pro = make_profile("provider")

    started = client.post(
        "/conversations",
        json={"recipient_profile_id": pro.id, "content": "Hi, are you free Tuesday?"},
        headers=_as(owner.user_id),
    )
    assert started.status_code == 200
    conversation_id = started.json()["conversation_id"]

    reply = client.post(
        f"/conversations/{conversation_id}/messages", json={"content": "Yes"}, headers=_as(pro.user_id, "provider")
    )
    assert reply.json()["seq"] == 2
    assert client.get(f"/conversations/{conversation_id}/unread", headers=_as(owner.user_id)).json() == {
        "unread_count": 1
    }
    client.post(f"/conversations/{conversation_id}/read", headers=_as(owner.user_id))
    assert client.get(f"/conversations/{conversation_id}/unread", headers=_as(owner.user_id)).json() == {
        "unread_count": 0
    }

    messages = client.get(f"/conversations/{conversation_id}/messages", headers=_as(owner.user_id)).json()["messages"]
    assert [m["seq"] for m in messages] == [1, 2]

    client.post(f"/conversations/{conversation_id}/typing", json={"is_typing": True}, headers=_as(pro.user_id, "provider"))
    assert client.get(f"/conversations/{conversation_id}/typing", headers=_as(owner.user_id)).json() == {
        "typing": [pro.id]
    }

    outsider = make_profile()
    assert client.get(f"/conversations/{conversation_id}/messages", headers=_as(outsider.user_id)).status_code == 403
    assert client.get("/conversations", headers=_as("no-profile")).status_code == 403


def test_websocket_streams_messages(client, make_profile):
    owner = make_profile("homeowner")
    pro = make_profile("provider")
    conversation_id = client.post(
        "/conversations", json={"recipient_profile_id": pro.id, "content": "Hello"}, headers=_as(owner.user_id)
    ).json()["conversation_id"]

    with client.websocket_connect(f"/conversations/{conversation_id}/ws?user_id={owner.user_id}") as ws:
        client.post(
            f"/conversations/{conversation_id}/messages", json={"content": "On my way"}, headers=_as(pro.user_id, "provider")
        )
        event = ws.receive_json()
        assert event["event"] == "message"
        assert event["data"]["content"] == "On my way"


def test_websocket_rejects_non_members(client, make_profile):
    owner, pro, outsider = make_profile("homeowner"), make_profile("provider"), make_profile()
    conversation_id = client.post(
        "/conversations", json={"recipient_profile_id": pro.id, "content": "Hello"}, headers=_as(owner.user_id)
    ).json()["conversation_id"]

    for query, code in ((f"user_id={outsider.user_id}", 4403), ("user_id=no-profile", 4403), ("", 4401)):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/conversations/{conversation_id}/ws?{query}"):
                pass
        assert exc.value.code == code
