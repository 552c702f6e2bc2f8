"""Production wiring: builds the bot, dispatcher and worker from ``settings``.

Nothing here is a module-level singleton; callers construct what they need
per process (FastAPI app) or per task run (Celery).
"""

from __future__ import annotations

from config import settings

from app.bot.message_handler import MessageHandler
from app.bot.state_machine import ConversationStateMachine
from app.integrations.hebcal import HebcalClient
from app.scheduler.dispatcher import ReminderDispatcher
from app.scheduler.queue import CeleryJobQueue
from app.scheduler.worker import DeliveryWorker
from app.services.messaging import Messenger
from app.services.time_resolver import CalendarSync, TimeResolver
from app.utils.sms import TelnyxTransport
from db.store import SqlReminderStore, SqlTimeCache


def build_store() -> SqlReminderStore:
    return SqlReminderStore()


def build_resolver() -> TimeResolver:
    upstream = HebcalClient(settings.HEBCAL_API_BASE_URL, timeout=settings.UPSTREAM_TIMEOUT)
    return TimeResolver(SqlTimeCache(), upstream)


def build_messenger() -> Messenger:
    transport = TelnyxTransport(
        settings.TELNYX_API_KEY, settings.TELNYX_FROM_NUMBER, timeout=settings.TRANSPORT_TIMEOUT
    )
    return Messenger(transport)


def build_message_handler() -> MessageHandler:
    store = build_store()
    machine = ConversationStateMachine(
        store,
        build_resolver(),
        build_messenger(),
        default_location=settings.DEFAULT_LOCATION,
    )
    return MessageHandler(store, machine, country_code=settings.DEFAULT_COUNTRY_CODE)


def build_queue() -> CeleryJobQueue:
    from app.celery_app import celery_app

    return CeleryJobQueue.from_url(celery_app, settings.REDIS_URL)


def build_dispatcher(queue: CeleryJobQueue) -> ReminderDispatcher:
    return ReminderDispatcher(
        build_store(),
        build_resolver(),
        queue,
        dedup_window_seconds=settings.DEDUP_WINDOW_SECONDS,
    )


def build_worker() -> DeliveryWorker:
    return DeliveryWorker(
        build_store(),
        build_messenger(),
        max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
        backoff_seconds=settings.DELIVERY_BACKOFF_SECONDS,
    )


def build_calendar_sync() -> CalendarSync:
    store = build_store()
    cache = SqlTimeCache()
    upstream = HebcalClient(settings.HEBCAL_API_BASE_URL, timeout=settings.UPSTREAM_TIMEOUT)
    return CalendarSync(
        TimeResolver(cache, upstream),
        store,
        cache,
        settings.DEFAULT_LOCATION,
        retention_days=settings.CACHE_RETENTION_DAYS,
    )
