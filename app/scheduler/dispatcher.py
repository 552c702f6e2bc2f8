"""Once-a-minute scan that turns reminder definitions into delivery jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from app.errors import TimeResolutionError
from app.services.ports import JobQueue, ReminderStore
from app.services.time_resolver import TimeResolver
from app.types.contracts import DeliveryJob, ReminderDefinition, ReminderKind
from app.utils.clock import Clock, at_clock, format_hhmm, local_now, next_day, service_tz, truncate_minute

_LOGGER = logging.getLogger(__name__)

TICK = timedelta(minutes=1)


class FireTime(NamedTuple):
    fire_at: datetime
    event_time: Optional[datetime] = None


@dataclass
class DispatchReport:
    scanned: int = 0
    enqueued: int = 0
    skipped_duplicate: int = 0
    failed: int = 0


def job_key(user_id: str, reminder_type: str, fire_at: datetime) -> str:
    """Deterministic queue key: one job per user, type and fire minute."""
    minute = truncate_minute(fire_at).isoformat()
    return f"reminder:{user_id}:{reminder_type}:{minute}"


async def next_fire_time(
    definition: ReminderDefinition, resolver: TimeResolver, tick_start: datetime, tz
) -> Optional[FireTime]:
    """Next occurrence of ``definition`` at or after ``tick_start``.

    ``None`` means "nothing to schedule": the day's event is missing, or an
    ``event`` reminder's occurrence for today has already passed. Raises
    ``TimeResolutionError`` when day times cannot be resolved.
    """
    today = tick_start.astimezone(tz).date()

    if definition.kind is ReminderKind.FIXED:
        fire = at_clock(today, definition.time, tz)
        if fire < tick_start:
            fire = at_clock(next_day(today), definition.time, tz)
        return FireTime(fire)

    times = await resolver.resolve(definition.location, today)

    if definition.kind is ReminderKind.EVENT_OFFSET:
        offset = timedelta(minutes=definition.offset_minutes)
        if times.sunset is None:
            return None
        fire = times.sunset - offset
        if fire >= tick_start:
            return FireTime(fire, times.sunset)
        tomorrow = await resolver.resolve(definition.location, next_day(today))
        if tomorrow.sunset is None:
            return None
        return FireTime(tomorrow.sunset - offset, tomorrow.sunset)

    instant = times.instant_for(definition.reminder_type)
    if instant is None or instant < tick_start:
        return None
    return FireTime(instant, instant)


class ReminderDispatcher:
    def __init__(
        self,
        store: ReminderStore,
        resolver: TimeResolver,
        queue: JobQueue,
        clock: Clock = local_now,
        dedup_window_seconds: int = 60,
        tz=None,
    ):
        self._store = store
        self._resolver = resolver
        self._queue = queue
        self._clock = clock
        self._dedup_window = timedelta(seconds=dedup_window_seconds)
        self._tz = tz or service_tz()

    def _is_duplicate(self, pending: List[DeliveryJob], definition: ReminderDefinition, fire_at: datetime) -> bool:
        for job in pending:
            if job.user_id != definition.user_id or job.reminder_type != definition.reminder_type:
                continue
            if abs(job.fire_at - fire_at) < self._dedup_window:
                return True
        return False

    async def _write_back(self, definition: ReminderDefinition, fire: FireTime) -> None:
        fields = {}
        hhmm = format_hhmm(fire.fire_at, self._tz)
        if definition.time != hhmm:
            fields["time"] = hhmm
        if fire.event_time is not None and definition.event_time != fire.event_time:
            fields["event_time"] = fire.event_time
        if not fields:
            return
        try:
            await self._store.update_definition(definition.id, **fields)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Could not update resolved times of %s: %s", definition.id, exc)

    async def tick(self) -> DispatchReport:
        report = DispatchReport()
        now = self._clock().astimezone(self._tz)
        tick_start = truncate_minute(now)
        window_end = tick_start + TICK

        try:
            definitions = await self._store.list_enabled_definitions()
            pending = await self._queue.pending_jobs()
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Dispatch tick at %s aborted: %s", tick_start, exc)
            return report

        for definition in definitions:
            report.scanned += 1
            try:
                fire = await next_fire_time(definition, self._resolver, tick_start, self._tz)
                if fire is None:
                    continue

                if definition.kind is ReminderKind.EVENT_OFFSET:
                    await self._write_back(definition, fire)

                if not (tick_start <= fire.fire_at < window_end):
                    continue

                if self._is_duplicate(pending, definition, fire.fire_at):
                    _LOGGER.info(
                        "Skipping duplicate %s reminder for user %s at %s",
                        definition.reminder_type.value,
                        definition.user_id,
                        fire.fire_at,
                    )
                    report.skipped_duplicate += 1
                    continue

                job = DeliveryJob(
                    key=job_key(definition.user_id, definition.reminder_type.value, fire.fire_at),
                    user_id=definition.user_id,
                    reminder_type=definition.reminder_type,
                    fire_at=fire.fire_at,
                    location=definition.location,
                    definition_id=definition.id,
                    offset_minutes=definition.offset_minutes,
                    event_time=fire.event_time,
                )
                delay = max(0.0, (fire.fire_at - now).total_seconds())
                await self._queue.enqueue(job.key, job, delay)
                pending.append(job)
                report.enqueued += 1
                _LOGGER.info("Enqueued %s (delay %.0fs)", job.key, delay)
            except TimeResolutionError as exc:
                report.failed += 1
                _LOGGER.warning("Cannot schedule %s yet: %s", definition.id, exc)
            except Exception as exc:  # noqa: BLE001
                report.failed += 1
                _LOGGER.error("Failed to dispatch definition %s: %s", definition.id, exc)

        _LOGGER.info(
            "Dispatch tick %s: scanned=%d enqueued=%d duplicates=%d failed=%d",
            tick_start.strftime("%H:%M"),
            report.scanned,
            report.enqueued,
            report.skipped_duplicate,
            report.failed,
        )
        return report
