"""Parsing of inbound text: command tokens, menu choices, phone numbers."""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Union

from app.types.contracts import ReminderType

HELP_TOKENS = frozenset({"HELP", "עזרה"})
STOP_TOKENS = frozenset({"STOP", "UNSUBSCRIBE", "ביטול"})

_KEYCAP = "️⃣"


class MenuAction(str, Enum):
    DELETE = "delete"


# Reply vocabulary of the reminder type menu: index, English, Hebrew.
TYPE_CHOICES: dict[str, Union[ReminderType, MenuAction]] = {
    "1": ReminderType.TEFILLIN,
    "tefillin": ReminderType.TEFILLIN,
    "תפילין": ReminderType.TEFILLIN,
    "2": ReminderType.CUSTOM,
    "custom": ReminderType.CUSTOM,
    "מותאם": ReminderType.CUSTOM,
    "3": ReminderType.SUNSET,
    "sunset": ReminderType.SUNSET,
    "שקיעה": ReminderType.SUNSET,
    "4": ReminderType.CANDLE,
    "candle": ReminderType.CANDLE,
    "candles": ReminderType.CANDLE,
    "נרות": ReminderType.CANDLE,
    "5": ReminderType.PRAYER,
    "prayer": ReminderType.PRAYER,
    "mincha": ReminderType.PRAYER,
    "תפילה": ReminderType.PRAYER,
    "6": MenuAction.DELETE,
    "delete": MenuAction.DELETE,
    "מחק": MenuAction.DELETE,
    "מחיקה": MenuAction.DELETE,
}

OFFSET_CHOICES = {
    "1": 20,
    "20": 20,
    "2": 30,
    "30": 30,
    "3": 60,
    "60": 60,
    "שעה": 60,
}


def _token(text: str) -> str:
    return text.strip().upper()


def is_help(text: str) -> bool:
    return _token(text) in HELP_TOKENS


def is_stop(text: str) -> bool:
    return _token(text) in STOP_TOKENS


def strip_keycap(text: str) -> str:
    """``"2️⃣"`` -> ``"2"``."""
    return text.strip().replace(_KEYCAP, "").replace("⃣", "")


def parse_type_choice(text: str) -> Optional[Union[ReminderType, MenuAction]]:
    return TYPE_CHOICES.get(strip_keycap(text).lower())


def parse_offset_choice(text: str) -> Optional[int]:
    return OFFSET_CHOICES.get(strip_keycap(text))


def parse_index(text: str, size: int) -> Optional[int]:
    """Zero-based index for a 1-based menu reply, ``None`` if out of range."""
    cleaned = strip_keycap(text)
    if not cleaned.isdigit():
        return None
    index = int(cleaned) - 1
    if 0 <= index < size:
        return index
    return None


def normalize_phone(raw: str, country_code: str = "972") -> str:
    """Canonical ``+<digits>`` form, defaulting to ``country_code``.

    A leading trunk ``0`` is dropped: ``"050-123-4567"`` -> ``"+972501234567"``.
    """
    cleaned = re.sub(r"[^\d+]", "", raw or "")
    if cleaned.startswith("+"):
        return "+" + cleaned[1:].replace("+", "")
    cleaned = cleaned.replace("+", "")
    if cleaned.startswith("00"):
        return "+" + cleaned[2:]
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    return f"+{country_code}{cleaned}"
