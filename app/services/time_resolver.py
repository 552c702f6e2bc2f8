"""Cache-first resolution of a day's key time points."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable

from app.errors import TimeResolutionError
from app.integrations.hebcal import parse_calendar_events
from app.services.ports import CalendarUpstream, ReminderStore, TimeCache
from app.types.contracts import DayTimes

_LOGGER = logging.getLogger(__name__)


class TimeResolver:
    def __init__(self, cache: TimeCache, upstream: CalendarUpstream):
        self._cache = cache
        self._upstream = upstream

    async def resolve(self, location: str, day: date) -> DayTimes:
        """Return the day times for ``location`` on ``day``.

        Raises ``TimeResolutionError`` when neither the cache nor the
        upstream provider can answer.
        """
        try:
            cached = await self._cache.get_day_times(location, day)
        except Exception as exc:  # noqa: BLE001
            raise TimeResolutionError(location, day, f"cache lookup failed: {exc}") from exc
        if cached is not None:
            return cached

        try:
            payload = await self._upstream.fetch(location, day)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Upstream calendar fetch failed location=%s date=%s: %s", location, day, exc)
            raise TimeResolutionError(location, day, str(exc)) from exc

        times = parse_calendar_events(payload, location, day)
        try:
            await self._cache.put_day_times(times)
        except Exception as exc:  # noqa: BLE001
            # The parsed answer is still correct; the next call refetches.
            _LOGGER.warning("Could not cache day times location=%s date=%s: %s", location, day, exc)

        _LOGGER.info(
            "Resolved day times location=%s date=%s sunset=%s candle=%s",
            location,
            day,
            times.sunset,
            times.candle_lighting,
        )
        return times


class CalendarSync:
    """Daily pre-warm of the time cache and pruning of stale rows."""

    def __init__(
        self,
        resolver: TimeResolver,
        store: ReminderStore,
        cache: TimeCache,
        default_location: str,
        retention_days: int = 30,
    ):
        self._resolver = resolver
        self._store = store
        self._cache = cache
        self._default_location = default_location
        self._retention_days = retention_days

    async def locations(self) -> list[str]:
        definitions = await self._store.list_enabled_definitions()
        found = {d.location for d in definitions if d.location}
        found.add(self._default_location)
        return sorted(found)

    async def sync_all(self, today: date) -> dict[str, bool]:
        """Resolve today and tomorrow for every location in use.

        Returns ``{location: ok}``; a failing location does not stop the rest.
        """
        results: dict[str, bool] = {}
        for location in await self.locations():
            results[location] = await self._sync_location(location, (today, today + timedelta(days=1)))
        _LOGGER.info("Calendar sync finished: %s", results)
        return results

    async def _sync_location(self, location: str, days: Iterable[date]) -> bool:
        ok = True
        for day in days:
            try:
                await self._resolver.resolve(location, day)
            except TimeResolutionError as exc:
                _LOGGER.error("Calendar sync failed: %s", exc)
                ok = False
        return ok

    async def prune(self, today: date) -> int:
        cutoff = today - timedelta(days=self._retention_days)
        removed = await self._cache.prune_day_times(cutoff)
        _LOGGER.info("Pruned %d cached day(s) older than %s", removed, cutoff)
        return removed
