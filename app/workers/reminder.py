"""Celery tasks: the dispatch tick, single reminder delivery and calendar sync."""

from __future__ import annotations

import asyncio
import logging

from config import settings

from app import dependencies
from app.celery_app import celery_app
from app.errors import DependencyUnavailable
from app.types.contracts import DeliveryJob
from app.utils.clock import local_now
import db

logging.basicConfig(level=settings.LOG_LEVEL)
_LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async bodies
# ---------------------------------------------------------------------------

async def _dispatch() -> dict:
    queue = dependencies.build_queue()
    try:
        report = await dependencies.build_dispatcher(queue).tick()
    finally:
        await queue.close()
        await db.dispose_engine()
    return vars(report)


async def _deliver(key: str, payload: dict) -> str:
    job = DeliveryJob.model_validate(payload)
    queue = dependencies.build_queue()
    try:
        outcome = await dependencies.build_worker().process(job)
        await queue.ack(key)
        return outcome.value
    finally:
        await queue.close()
        await db.dispose_engine()


async def _sync_calendar() -> dict:
    sync = dependencies.build_calendar_sync()
    today = local_now().date()
    try:
        results = await sync.sync_all(today)
        removed = await sync.prune(today)
    finally:
        await db.dispose_engine()
    return {"locations": results, "pruned": removed}


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.dispatch_due", bind=True)
def dispatch_due(self):  # noqa: D401
    """Run one dispatcher tick; overlapping or failed ticks are simply superseded."""
    return asyncio.run(_dispatch())


@celery_app.task(
    name="app.workers.reminder.handle",
    bind=True,
    max_retries=3,
    rate_limit=settings.WORKER_RATE_LIMIT,
)
def handle(self, key: str, payload: dict):  # noqa: D401
    """Deliver a single reminder job."""
    try:
        return asyncio.run(_deliver(key, payload))
    except DependencyUnavailable as exc:
        _LOGGER.warning("Store unavailable while delivering %s, retrying: %s", key, exc)
        raise self.retry(exc=exc, countdown=30)


@celery_app.task(name="app.workers.reminder.sync_calendar", bind=True)
def sync_calendar(self):  # noqa: D401
    """Pre-warm today's and tomorrow's day times and prune old cache rows."""
    return asyncio.run(_sync_calendar())
