"""User-facing message texts."""

from __future__ import annotations

from typing import Iterable, List, Optional

from app.types.contracts import ReminderDefinition, ReminderKind, ReminderType

KEYCAPS = ["1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣", "6️⃣", "7️⃣", "8️⃣", "9️⃣"]

TYPE_LABELS = {
    ReminderType.TEFILLIN: "Tefillin Reminder",
    ReminderType.CUSTOM: "Custom Reminder",
    ReminderType.SUNSET: "Sunset Reminder",
    ReminderType.CANDLE: "Candle Lighting Reminder",
    ReminderType.PRAYER: "Prayer Reminder",
}

# Approved templates; ``{0}`` is the free-form text the template wraps.
TEMPLATES = {
    "reply": "{0}",
    "reminder": "⏰ {0}",
}


def render_template(name: str, params: List[str]) -> str:
    body = TEMPLATES.get(name, "{0}")
    return body.format(*(params or [""]))


def build_menu(title: str, options: Iterable[str]) -> str:
    lines = []
    for index, option in enumerate(options):
        marker = KEYCAPS[index] if index < len(KEYCAPS) else f"{index + 1}."
        lines.append(f"{marker} {option}")
    return f"{title}\n\n" + "\n".join(lines) + "\n\nReply with the number."


TYPE_MENU = build_menu(
    "What would you like to do?",
    [
        "Tefillin Reminder (before sunset)",
        "Custom Reminder (fixed time)",
        "Sunset Reminder",
        "Candle Lighting Reminder",
        "Prayer Reminder (Mincha)",
        "Delete Reminder",
    ],
)

OFFSET_MENU = build_menu(
    "When should I remind you before sunset?",
    ["20 minutes", "30 minutes", "1 hour"],
) + "\nOr send a specific time as HH:MM."

TIME_PROMPT = "Please enter the time for your reminder in HH:MM format (24-hour).\nExample: 18:30"

INVALID_TIME = "Invalid time format. Please use HH:MM (24-hour format), e.g., 18:30"

LOCATION_PROMPT = "Please enter your city name (e.g., Jerusalem, Tel Aviv, Haifa).\nDefault: {default}"

HELP = """Available commands:
• HELP / עזרה - Show this message
• STOP / UNSUBSCRIBE / ביטול - Stop all reminders

Send any message to set up a new reminder or delete an existing one."""

UNSUBSCRIBED = "All reminders have been stopped. You can start again anytime by sending a message."

ERROR = "An error occurred. Please try again or contact support."

NOTHING_TO_DELETE = "You have no active reminders to delete."

SUNSET_UNAVAILABLE = "Could not get the sunset time for {location}. Please try again later."


def location_prompt(default: str) -> str:
    return LOCATION_PROMPT.format(default=default)


def sunset_unavailable(location: str) -> str:
    return SUNSET_UNAVAILABLE.format(location=location)


def describe(definition: ReminderDefinition) -> str:
    label = TYPE_LABELS.get(definition.reminder_type, definition.reminder_type.value)
    if definition.kind is ReminderKind.EVENT_OFFSET:
        return f"{label} ({definition.offset_minutes} min before sunset)"
    if definition.kind is ReminderKind.FIXED:
        return f"{label} ({definition.time})"
    return f"{label} ({definition.location})"


def delete_menu(definitions: List[ReminderDefinition]) -> str:
    return build_menu("Select a reminder to delete:", [describe(d) for d in definitions])


def deleted(definition: ReminderDefinition) -> str:
    return f"✅ Reminder \"{describe(definition)}\" has been deleted successfully."


def offset_confirmation(offset_minutes: int, fire_time: str, tomorrow: bool) -> str:
    when = "tomorrow" if tomorrow else "today"
    return (
        "Your reminder has been set successfully.\n\n"
        f"You will be reminded {offset_minutes} minutes before sunset every day ({when} at {fire_time})."
    )


def fixed_confirmation(reminder_type: ReminderType, hhmm: str) -> str:
    return f"Your {TYPE_LABELS[reminder_type]} has been set for {hhmm} every day."


def event_confirmation(reminder_type: ReminderType, location: str) -> str:
    return f"Your {TYPE_LABELS[reminder_type]} has been set for {location}."


def reminder_body(reminder_type: ReminderType, fire_time: str, location: Optional[str], event_time: Optional[str] = None) -> str:
    where = f" in {location}" if location else ""
    if reminder_type is ReminderType.TEFILLIN:
        suffix = f" Sunset today is at {event_time}." if event_time else ""
        return f"✨ Tefillin Reminder ✨\nIt's time to put on tefillin.{suffix}"
    if reminder_type is ReminderType.SUNSET:
        return f"Sunset reminder: {fire_time}{where}"
    if reminder_type is ReminderType.CANDLE:
        return f"Candle-lighting reminder: {fire_time}{where}"
    if reminder_type is ReminderType.PRAYER:
        return f"Prayer time reminder (Mincha): {fire_time}{where}"
    return f"Reminder: {fire_time}"
