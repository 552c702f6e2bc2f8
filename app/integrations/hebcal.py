"""Hebcal calendar client and response parser.

The parser is a best-effort keyword match over the ``items`` array, not a
strict schema: any field may be absent for a given day or location.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

import requests

from app.types.contracts import DayTimes

_LOGGER = logging.getLogger(__name__)

PRAYERS = ("shacharit", "mincha", "maariv")


class HebcalClient:
    """Fetches one day of calendar events for a city."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: requests.Session | None = None):
        self.base_url = base_url
        self.timeout = timeout
        self._session = session or requests.Session()

    def _params(self, location: str, day: date) -> Dict[str, str]:
        iso = day.isoformat()
        return {
            "cfg": "json",
            "v": "1",
            "city": location,
            "start": iso,
            "end": iso,
            "c": "on",
            "ss": "on",
        }

    def fetch_sync(self, location: str, day: date) -> Dict[str, Any]:
        _LOGGER.info("Fetching Hebcal data location=%s date=%s", location, day)
        resp = self._session.get(self.base_url, params=self._params(location, day), timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    async def fetch(self, location: str, day: date) -> Dict[str, Any]:
        return await asyncio.to_thread(self.fetch_sync, location, day)


def _event_time(raw: Optional[str]) -> Optional[datetime]:
    """Parse an item date; date-only values carry no time and are ignored."""
    if not raw or "T" not in raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else None


def parse_calendar_events(payload: Dict[str, Any], location: str, day: date) -> DayTimes:
    times = DayTimes(location=location, day=day, raw=payload)

    for item in payload.get("items") or []:
        moment = _event_time(item.get("date"))
        if moment is None or moment.date() != day:
            continue

        title = (item.get("title") or "").lower()
        category = (item.get("category") or "").lower()
        subcat = (item.get("subcat") or "").lower()

        if "sunset" in title or subcat == "sunset":
            times.sunset = moment
        elif "candle" in title or category == "candles" or subcat == "candles":
            times.candle_lighting = moment
        elif category == "prayer" or subcat in PRAYERS:
            for prayer in PRAYERS:
                if prayer in title or subcat == prayer:
                    times.prayer_times[prayer] = moment

    return times
