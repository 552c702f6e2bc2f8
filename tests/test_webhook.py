import asyncio

import pytest
from fastapi.testclient import TestClient

import main
from app.bot.message_handler import MessageHandler
from app.types.contracts import (
    ConversationState,
    DeliveryHistoryRecord,
    InboundMessage,
    ReminderDefinition,
    ReminderKind,
    ReminderType,
    SendResult,
)
from config import settings


@pytest.fixture
def handler(store, machine):
    return MessageHandler(store, machine)


@pytest.fixture
def client(handler, store, messenger, monkeypatch):
    monkeypatch.setattr(settings, "TELNYX_PUBLIC_KEY", None)
    main.app.dependency_overrides[main.get_message_handler] = lambda: handler
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_messenger] = lambda: messenger
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _event(event_type, payload):
    return {"data": {"event_type": event_type, "id": "evt-1", "payload": payload}}


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_inbound_message_starts_conversation(client, store, transport):
    payload = {
        "from": {"phone_number": "050-123-4567"},
        "to": [{"phone_number": "+15550001111"}],
        "text": "hi",
        "type": "SMS",
        "received_at": "2025-06-10T07:00:00.000+00:00",
    }

    resp = client.post("/v1/sms/telnyx", json=_event("message.received", payload))

    assert resp.status_code == 200
    assert resp.text == "OK"
    (user,) = store.users.values()
    assert user.phone_number == "+972501234567"
    assert user.current_state is ConversationState.SELECTING_REMINDER_TYPE
    assert transport.sent[0][0] == "+972501234567"


def test_message_without_sender_is_ignored(client, store):
    resp = client.post("/v1/sms/telnyx", json=_event("message.received", {"text": "hi"}))

    assert resp.text == "IGNORED"
    assert not store.users


def test_unsigned_garbage_is_rejected(client):
    resp = client.post("/v1/sms/telnyx", content=b"not json")

    assert resp.status_code == 400


def test_delivery_status_updates_history(client, store):
    record = DeliveryHistoryRecord(
        user_id="u1", reminder_type=ReminderType.SUNSET, status="sent", provider_message_id="msg-9"
    )
    store.history[record.id] = record
    payload = {"id": "msg-9", "to": [{"phone_number": "+972501234567", "status": "delivered"}]}

    resp = client.post("/v1/sms/telnyx", json=_event("message.finalized", payload))

    assert resp.status_code == 200
    assert store.history[record.id].status == "delivered"


def test_failed_delivery_keeps_error_detail(client, store):
    record = DeliveryHistoryRecord(
        user_id="u1", reminder_type=ReminderType.SUNSET, status="sent", provider_message_id="msg-10"
    )
    store.history[record.id] = record
    payload = {
        "id": "msg-10",
        "to": [{"status": "delivery_failed"}],
        "errors": [{"code": "40008", "title": "Undeliverable", "detail": "Handset unreachable"}],
    }

    client.post("/v1/sms/telnyx", json=_event("message.finalized", payload))

    assert store.history[record.id].status == "failed"
    assert store.history[record.id].error_message == "Handset unreachable"


def test_admin_requires_key(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "secret")

    assert client.get("/admin/stats").status_code == 401
    assert client.get("/admin/stats", headers={"X-Admin-Key": "wrong"}).status_code == 401


def test_admin_disabled_without_key(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", None)

    assert client.get("/admin/stats", headers={"X-Admin-Key": "anything"}).status_code == 403


def test_admin_stats_and_history(client, store, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "secret")
    for status in ("sent", "delivered", "failed"):
        record = DeliveryHistoryRecord(user_id="u1", reminder_type=ReminderType.CUSTOM, status=status)
        store.history[record.id] = record
    headers = {"X-Admin-Key": "secret"}

    stats = client.get("/admin/stats", headers=headers).json()
    history = client.get("/admin/users/u1/history", headers=headers).json()

    assert stats == {"total": 3, "pending": 0, "sent": 1, "delivered": 1, "failed": 1}
    assert {r["status"] for r in history} == {"sent", "delivered", "failed"}


def test_admin_store_outage_is_503(client, store, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "secret")
    store.fail = True

    resp = client.get("/admin/stats", headers={"X-Admin-Key": "secret"})

    assert resp.status_code == 503


@pytest.fixture
def admin(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "secret")
    return {"X-Admin-Key": "secret"}


async def _user_with_reminders(store, phone="+972501234567"):
    user = await store.create_user(phone)
    await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.CUSTOM, kind=ReminderKind.FIXED, time="08:00")
    )
    await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.SUNSET, kind=ReminderKind.EVENT, location="Haifa")
    )
    return user


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/admin/users"),
        ("get", "/admin/users/u1"),
        ("get", "/admin/stats/reminders"),
        ("get", "/admin/deliveries/failed"),
        ("post", "/admin/messages/send"),
    ],
)
def test_admin_endpoints_require_key(client, monkeypatch, method, path):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "secret")

    assert getattr(client, method)(path).status_code == 401


@pytest.mark.asyncio
async def test_admin_reminder_stats_counts_enabled_by_type(client, store, admin):
    await _user_with_reminders(store)
    other = await _user_with_reminders(store, "+972527654321")
    await store.disable_all_for_user(other.id)
    await store.upsert_definition(
        ReminderDefinition(user_id=other.id, reminder_type=ReminderType.CUSTOM, kind=ReminderKind.FIXED, time="09:00")
    )

    stats = client.get("/admin/stats/reminders", headers=admin).json()

    assert stats["total"] == 3
    assert stats["by_type"] == {"tefillin": 0, "sunset": 1, "candle": 0, "prayer": 0, "custom": 2}


@pytest.mark.asyncio
async def test_admin_lists_users_with_reminder_counts(client, store, admin):
    user = await _user_with_reminders(store)
    await store.create_user("+972527654321")
    await store.disable_all_for_user(user.id)
    await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.CUSTOM, kind=ReminderKind.FIXED, time="09:00")
    )

    page = client.get("/admin/users", params={"limit": 10}, headers=admin).json()

    assert page["total"] == 2
    assert page["limit"] == 10
    assert page["offset"] == 0
    summary = next(s for s in page["users"] if s["user"]["id"] == user.id)
    assert summary["reminders"] == 2
    assert summary["enabled_reminders"] == 1


@pytest.mark.asyncio
async def test_admin_user_pagination(client, store, admin):
    await store.create_user("+972500000001")
    await store.create_user("+972500000002")
    await store.create_user("+972500000003")

    page = client.get("/admin/users", params={"limit": 2, "offset": 2}, headers=admin).json()

    assert page["total"] == 3
    assert len(page["users"]) == 1


@pytest.mark.asyncio
async def test_admin_user_detail(client, store, admin):
    user = await _user_with_reminders(store)
    record = DeliveryHistoryRecord(user_id=user.id, reminder_type=ReminderType.CUSTOM, status="sent")
    store.history[record.id] = record

    detail = client.get(f"/admin/users/{user.id}", headers=admin).json()

    assert detail["user"]["phone_number"] == "+972501234567"
    assert {r["reminder_type"] for r in detail["reminders"]} == {"custom", "sunset"}
    assert [r["id"] for r in detail["recent_history"]] == [record.id]


def test_admin_unknown_user_is_404(client, admin):
    assert client.get("/admin/users/nope", headers=admin).status_code == 404


def test_admin_failed_deliveries(client, store, admin):
    for status in ("sent", "failed", "delivered", "failed"):
        record = DeliveryHistoryRecord(user_id="u1", reminder_type=ReminderType.SUNSET, status=status)
        store.history[record.id] = record

    failed = client.get("/admin/deliveries/failed", headers=admin).json()

    assert len(failed) == 2
    assert {r["status"] for r in failed} == {"failed"}


@pytest.mark.asyncio
async def test_admin_send_to_user_is_logged(client, store, transport, admin):
    user = await store.create_user("+972501234567")

    resp = client.post("/admin/messages/send", json={"user_id": user.id, "message": "  Shabbat shalom  "}, headers=admin)

    assert resp.status_code == 200
    assert resp.json()["success"]
    assert transport.sent[-1][0] == "+972501234567"
    assert transport.bodies[-1] == "Shabbat shalom"
    (record,) = store.history.values()
    assert record.user_id == user.id
    assert record.reminder_type is ReminderType.CUSTOM
    assert record.status == "sent"
    assert record.provider_message_id == resp.json()["message_id"]


def test_admin_send_to_number_is_not_logged(client, store, transport, admin):
    resp = client.post("/admin/messages/send", json={"phone_number": "052-765-4321", "message": "hello"}, headers=admin)

    assert resp.status_code == 200
    assert transport.sent[-1][0] == "+972527654321"
    assert not store.history


@pytest.mark.parametrize(
    "body",
    [{"message": "hello"}, {"phone_number": "0501234567", "message": "   "}, {"phone_number": "0501234567"}],
)
def test_admin_send_validates_body(client, transport, admin, body):
    resp = client.post("/admin/messages/send", json=body, headers=admin)

    assert resp.status_code == 422
    assert not transport.sent


def test_admin_send_to_unknown_user_is_404(client, transport, admin):
    resp = client.post("/admin/messages/send", json={"user_id": "nope", "message": "hello"}, headers=admin)

    assert resp.status_code == 404
    assert not transport.sent


@pytest.mark.asyncio
async def test_admin_send_failure_is_502(client, store, transport, admin):
    user = await store.create_user("+972501234567")
    transport.results.append(SendResult(success=False, status="failed", error="invalid number"))

    resp = client.post("/admin/messages/send", json={"user_id": user.id, "message": "hello"}, headers=admin)

    assert resp.status_code == 502
    assert resp.json()["detail"] == "invalid number"
    assert not store.history


@pytest.mark.asyncio
async def test_handler_reuses_user_for_same_number(handler, store):
    await handler.handle(InboundMessage(from_="0501234567", body="hi"))
    await handler.handle(InboundMessage(from_="+972501234567", body="2"))

    (user,) = store.users.values()
    assert user.current_state is ConversationState.SELECTING_TIME


@pytest.mark.asyncio
async def test_handler_swallows_store_outage(handler, store):
    store.fail = True

    assert await handler.handle(InboundMessage(from_="0501234567", body="hi")) is None


@pytest.mark.asyncio
async def test_handler_serializes_same_number_and_drops_locks(handler, store):
    await asyncio.gather(
        handler.handle(InboundMessage(from_="0501234567", body="hi")),
        handler.handle(InboundMessage(from_="+972501234567", body="2")),
        handler.handle(InboundMessage(from_="0527654321", body="hi")),
    )

    assert len(store.users) == 2
    first = next(u for u in store.users.values() if u.phone_number == "+972501234567")
    assert first.current_state is ConversationState.SELECTING_TIME
    assert handler._locks == {}
