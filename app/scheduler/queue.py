"""Celery-backed job queue with a Redis hash indexing jobs not yet delivered."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List

import redis.asyncio as aioredis
from kombu.exceptions import KombuError
from pydantic import ValidationError

from app.errors import DependencyUnavailable
from app.types.contracts import DeliveryJob
from app.utils.clock import Clock, local_now

_LOGGER = logging.getLogger(__name__)

HANDLE_TASK = "app.workers.reminder.handle"
PENDING_INDEX = "reminders:pending"


class CeleryJobQueue:
    """Delayed delivery via ``send_task(countdown=...)``.

    Celery cannot list delayed tasks cheaply, so every enqueued job is also
    written to a Redis hash (key -> job JSON) that the dispatcher scans for
    duplicates. The delivery task acks its entry once processed; entries
    whose fire time is long past are pruned on read.
    """

    def __init__(
        self,
        celery_app,
        redis_client: aioredis.Redis,
        index_key: str = PENDING_INDEX,
        stale_after: timedelta = timedelta(minutes=30),
        clock: Clock = local_now,
    ):
        self._celery = celery_app
        self._redis = redis_client
        self._index_key = index_key
        self._stale_after = stale_after
        self._clock = clock

    @classmethod
    def from_url(cls, celery_app, url: str, **kwargs) -> "CeleryJobQueue":
        return cls(celery_app, aioredis.from_url(url, decode_responses=True), **kwargs)

    async def enqueue(self, key: str, job: DeliveryJob, delay_seconds: float) -> None:
        try:
            added = await self._redis.hsetnx(self._index_key, key, job.model_dump_json())
        except aioredis.RedisError as exc:
            raise DependencyUnavailable(f"redis unavailable: {exc}") from exc
        if not added:
            _LOGGER.info("Job %s already pending; not enqueued again", key)
            return

        try:
            self._celery.send_task(
                HANDLE_TASK,
                args=[key, job.model_dump(mode="json")],
                countdown=delay_seconds,
                task_id=key,
                queue="reminder",
            )
        except (KombuError, OSError) as exc:
            # the index only lists jobs the broker accepted
            await self._forget(key)
            raise DependencyUnavailable(f"broker unavailable: {exc}") from exc

    async def _forget(self, key: str) -> None:
        try:
            await self._redis.hdel(self._index_key, key)
        except aioredis.RedisError as exc:
            _LOGGER.warning("Could not remove pending job %s: %s", key, exc)

    async def pending_jobs(self) -> List[DeliveryJob]:
        try:
            entries = await self._redis.hgetall(self._index_key)
        except aioredis.RedisError as exc:
            raise DependencyUnavailable(f"redis unavailable: {exc}") from exc

        cutoff = self._clock() - self._stale_after
        jobs: List[DeliveryJob] = []
        stale: List[str] = []
        for key, raw in entries.items():
            try:
                job = DeliveryJob.model_validate_json(raw)
            except ValidationError as exc:
                _LOGGER.warning("Dropping unreadable pending job %s: %s", key, exc)
                stale.append(key)
                continue
            if job.fire_at < cutoff:
                stale.append(key)
                continue
            jobs.append(job)

        if stale:
            _LOGGER.info("Pruning %d stale pending job(s)", len(stale))
            try:
                await self._redis.hdel(self._index_key, *stale)
            except aioredis.RedisError as exc:
                _LOGGER.warning("Could not prune pending jobs: %s", exc)
        return jobs

    async def ack(self, key: str) -> None:
        await self._forget(key)

    async def close(self) -> None:
        await self._redis.aclose()
