"""Wall-clock helpers. All scheduling happens in one service timezone."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from config import settings

Clock = Callable[[], datetime]

_HHMM = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def service_tz() -> ZoneInfo:
    return ZoneInfo(settings.DEFAULT_TIMEZONE)


def local_now() -> datetime:
    """Default clock: aware ``now`` in the service timezone."""
    return datetime.now(tz=service_tz())


def parse_hhmm(text: str) -> Optional[str]:
    """Return a zero-padded ``HH:MM`` for strict 24h input, else ``None``.

    ``"9:05"`` -> ``"09:05"``; ``"24:00"``, ``"18:60"``, ``"6pm"`` -> ``None``.
    """
    match = _HHMM.match(text.strip())
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def at_clock(day: date, hhmm: str, tz) -> datetime:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(day, time(hours, minutes), tzinfo=tz)


def format_hhmm(moment: datetime, tz=None) -> str:
    if tz is not None:
        moment = moment.astimezone(tz)
    return moment.strftime("%H:%M")


def truncate_minute(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


def next_day(day: date) -> date:
    return day + timedelta(days=1)
