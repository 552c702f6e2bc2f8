import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import telnyx
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

import db
from config import settings
from app import dependencies
from app.bot.commands import normalize_phone
from app.bot.message_handler import MessageHandler
from app.errors import DependencyUnavailable
from app.services.messaging import Messenger
from app.services.ports import ReminderStore
from app.types.contracts import (
    DeliveryHistoryRecord,
    HistoryStats,
    InboundMessage,
    ManualMessage,
    ReminderStats,
    ReminderType,
    SendResult,
    UserDetail,
    UserPage,
    UserSummary,
)

logging.basicConfig(level=settings.LOG_LEVEL)
_LOGGER = logging.getLogger(__name__)

# Configure telnyx public key
if settings.TELNYX_PUBLIC_KEY:
    telnyx.public_key = settings.TELNYX_PUBLIC_KEY

app = FastAPI(title="Reminder bot")

# Telnyx per-recipient status -> delivery history status
PROVIDER_STATUSES = {
    "sent": "sent",
    "delivered": "delivered",
    "sending_failed": "failed",
    "delivery_failed": "failed",
    "delivery_unconfirmed": "sent",
}


# --------------------------------------------
# Providers (overridden in tests)
# --------------------------------------------

@lru_cache(maxsize=1)
def get_message_handler() -> MessageHandler:
    return dependencies.build_message_handler()


@lru_cache(maxsize=1)
def get_store() -> ReminderStore:
    return dependencies.build_store()


@lru_cache(maxsize=1)
def get_messenger() -> Messenger:
    return dependencies.build_messenger()


def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    if not settings.ADMIN_API_KEY:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin API disabled")
    if x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid admin key")


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


@app.exception_handler(DependencyUnavailable)
async def dependency_unavailable(request: Request, exc: DependencyUnavailable):
    _LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": "Service temporarily unavailable"}, status_code=503)


# --------------------------------------------
# Webhook helpers
# --------------------------------------------

async def _read_event(request: Request) -> dict:
    raw_body = await request.body()
    sig = request.headers.get("telnyx-signature-ed25519")
    ts = request.headers.get("telnyx-timestamp")

    try:
        if settings.TELNYX_PUBLIC_KEY:
            event = telnyx.Webhook.construct_event(raw_body.decode(), sig, ts)
            data = event.data
        else:  # dev mode: skip signature verification
            data = (await request.json())["data"]
    except Exception as exc:  # noqa: BLE001
        _LOGGER.warning("Rejected webhook: %s", exc)
        raise HTTPException(400, "Bad signature")

    # TelnyxObject -> dict if needed
    if hasattr(data, "to_dict"):
        data = data.to_dict()
    return data


def _inbound_message(payload: dict) -> Optional[InboundMessage]:
    sender = payload.get("from") or {}
    from_num = sender.get("phone_number")
    if not from_num:
        return None
    recipients = payload.get("to") or [{}]
    received_at = payload.get("received_at")
    return InboundMessage(
        from_=from_num,
        to=recipients[0].get("phone_number"),
        body=payload.get("text") or "",
        timestamp=datetime.fromisoformat(received_at.replace("Z", "+00:00")) if received_at else None,
        message_type=(payload.get("type") or "sms").lower(),
    )


async def _update_status(store: ReminderStore, payload: dict) -> None:
    message_id = payload.get("id")
    recipients = payload.get("to") or [{}]
    provider_status = recipients[0].get("status")
    mapped = PROVIDER_STATUSES.get(provider_status)
    if not message_id or not mapped:
        return
    errors = payload.get("errors") or []
    detail = "; ".join(e.get("detail") or e.get("title") or "" for e in errors) or None
    try:
        found = await store.update_history_by_message_id(message_id, mapped, detail)
    except Exception as exc:  # noqa: BLE001
        _LOGGER.error("Status update for %s failed: %s", message_id, exc)
        return
    if not found:
        _LOGGER.debug("No delivery history for message %s", message_id)


# --------------------------------------------
# Endpoints
# --------------------------------------------

@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.post("/v1/sms/telnyx", response_class=PlainTextResponse)
async def telnyx_webhook(
    request: Request,
    background: BackgroundTasks,
    handler: MessageHandler = Depends(get_message_handler),
    store: ReminderStore = Depends(get_store),
):
    data = await _read_event(request)
    event_type = data.get("event_type")
    payload = data.get("payload") or {}

    if event_type == "message.received":
        message = _inbound_message(payload)
        if message is None:
            return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)
        background.add_task(handler.handle, message)
        return PlainTextResponse("OK")

    if event_type in ("message.sent", "message.finalized"):
        background.add_task(_update_status, store, payload)
        return PlainTextResponse("OK")

    return PlainTextResponse("IGNORED", status_code=status.HTTP_200_OK)


@app.get("/admin/stats", response_model=HistoryStats, dependencies=[Depends(require_admin)])
async def admin_stats(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    store: ReminderStore = Depends(get_store),
):
    return await store.history_stats(start, end)


@app.get(
    "/admin/users/{user_id}/history",
    response_model=list[DeliveryHistoryRecord],
    dependencies=[Depends(require_admin)],
)
async def admin_user_history(user_id: str, limit: int = 50, store: ReminderStore = Depends(get_store)):
    return await store.list_history(user_id, limit=limit)


@app.get("/admin/stats/reminders", response_model=ReminderStats, dependencies=[Depends(require_admin)])
async def admin_reminder_stats(store: ReminderStore = Depends(get_store)):
    counts = await store.enabled_counts_by_type()
    return ReminderStats(
        total=sum(counts.values()),
        by_type={t.value: counts.get(t, 0) for t in ReminderType},
    )


@app.get("/admin/users", response_model=UserPage, dependencies=[Depends(require_admin)])
async def admin_users(limit: int = 100, offset: int = 0, store: ReminderStore = Depends(get_store)):
    users = await store.list_users(limit=limit, offset=offset)
    summaries = []
    for user in users:
        definitions = await store.list_definitions(user.id)
        summaries.append(
            UserSummary(
                user=user,
                reminders=len(definitions),
                enabled_reminders=sum(1 for d in definitions if d.enabled),
            )
        )
    return UserPage(users=summaries, limit=limit, offset=offset, total=await store.count_users())


@app.get("/admin/users/{user_id}", response_model=UserDetail, dependencies=[Depends(require_admin)])
async def admin_user(user_id: str, store: ReminderStore = Depends(get_store)):
    user = await store.get_user(user_id)
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    return UserDetail(
        user=user,
        reminders=await store.list_definitions(user_id),
        recent_history=await store.list_history(user_id, limit=50),
    )


@app.get(
    "/admin/deliveries/failed",
    response_model=list[DeliveryHistoryRecord],
    dependencies=[Depends(require_admin)],
)
async def admin_failed_deliveries(limit: int = 100, store: ReminderStore = Depends(get_store)):
    return await store.list_failed_history(limit=limit)


@app.post("/admin/messages/send", response_model=SendResult, dependencies=[Depends(require_admin)])
async def admin_send_message(
    body: ManualMessage,
    store: ReminderStore = Depends(get_store),
    messenger: Messenger = Depends(get_messenger),
):
    user = None
    if body.user_id:
        user = await store.get_user(body.user_id)
        if user is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    if body.phone_number:
        phone_number = normalize_phone(body.phone_number, settings.DEFAULT_COUNTRY_CODE)
    else:
        phone_number = user.phone_number

    result = await messenger.send(phone_number, body.message)
    if not result.accepted:
        _LOGGER.error("Admin message to %s failed: %s", phone_number, result.error)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, result.error or "Failed to send message")

    # only messages tied to a user are logged
    if user is not None:
        now = datetime.now(timezone.utc)
        await store.create_history(
            DeliveryHistoryRecord(
                user_id=user.id,
                reminder_type=ReminderType.CUSTOM,
                status="delivered" if result.status == "delivered" else "sent",
                attempted_at=now,
                reminder_time=now,
                provider_message_id=result.message_id,
            )
        )
    _LOGGER.info("Admin message sent to %s (%s)", phone_number, result.message_id)
    return result
