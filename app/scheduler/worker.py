"""Delivery of a single reminder job: re-validate, render, send, record."""

from __future__ import annotations

import logging
from enum import Enum

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.bot.messages import reminder_body
from app.errors import TransportError
from app.services.messaging import Messenger
from app.services.ports import ReminderStore
from app.types.contracts import DeliveryHistoryRecord, DeliveryJob, SendResult
from app.utils.clock import Clock, format_hhmm, local_now, service_tz

_LOGGER = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    DISCARDED = "discarded"
    FAILED = "failed"


class DeliveryWorker:
    """Sends one reminder with bounded in-line retry.

    Store errors before the send propagate so the queue can retry the whole
    job; once a message may have left, history write failures are only
    logged.
    """

    def __init__(
        self,
        store: ReminderStore,
        messenger: Messenger,
        clock: Clock = local_now,
        max_attempts: int = 3,
        backoff_seconds: float = 2,
        wait=None,
        tz=None,
    ):
        self._store = store
        self._messenger = messenger
        self._clock = clock
        self._max_attempts = max_attempts
        self._wait = wait if wait is not None else wait_exponential(multiplier=backoff_seconds)
        self._tz = tz or service_tz()

    async def _send_once(self, to: str, body: str) -> SendResult:
        result = await self._messenger.send(to, body, template="reminder")
        if not result.accepted:
            raise TransportError(result.error or f"provider status {result.status}")
        return result

    async def _send(self, to: str, body: str) -> SendResult:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(TransportError),
            before_sleep=before_sleep_log(_LOGGER, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self._send_once(to, body)

    async def process(self, job: DeliveryJob) -> DeliveryOutcome:
        definition = await self._store.find_definition(job.user_id, job.reminder_type)
        if definition is None or not definition.enabled:
            _LOGGER.info("Discarding %s: reminder no longer active", job.key)
            return DeliveryOutcome.DISCARDED

        user = await self._store.get_user(job.user_id)
        if user is None:
            _LOGGER.warning("Discarding %s: user %s not found", job.key, job.user_id)
            return DeliveryOutcome.DISCARDED

        event_time = format_hhmm(job.event_time, self._tz) if job.event_time else None
        body = reminder_body(job.reminder_type, format_hhmm(job.fire_at, self._tz), job.location, event_time)

        record = await self._store.create_history(
            DeliveryHistoryRecord(
                user_id=job.user_id,
                reminder_type=job.reminder_type,
                attempted_at=self._clock(),
                reminder_time=job.fire_at,
            )
        )

        try:
            result = await self._send(user.phone_number, body)
        except TransportError as exc:
            _LOGGER.error("Reminder %s failed after %d attempt(s): %s", job.key, self._max_attempts, exc)
            await self._record(record.id, "failed", error_message=str(exc))
            return DeliveryOutcome.FAILED

        status = "delivered" if result.status == "delivered" else "sent"
        await self._record(record.id, status, provider_message_id=result.message_id)
        _LOGGER.info("Reminder %s %s (message %s)", job.key, status, result.message_id)
        return DeliveryOutcome.DELIVERED

    async def _record(self, record_id: str, status, error_message=None, provider_message_id=None) -> None:
        try:
            await self._store.update_history_status(
                record_id, status, error_message=error_message, provider_message_id=provider_message_id
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Could not update delivery history %s to %s: %s", record_id, status, exc)
