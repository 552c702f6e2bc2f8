"""Pydantic models that define the contract between the conversation bot,
the dispatcher, the delivery worker and the storage layer.

These classes are framework-agnostic and are shared by
workers, API responses, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing_extensions import Annotated

from app.utils.clock import parse_hhmm


def _new_id() -> str:
    return str(uuid4())


# ──────────────────────────────
# Enumerations
# ──────────────────────────────


class ConversationState(str, Enum):
    INITIAL = "INITIAL"
    SELECTING_REMINDER_TYPE = "SELECTING_REMINDER_TYPE"
    SELECTING_TIME = "SELECTING_TIME"
    SELECTING_EVENT_OFFSET = "SELECTING_EVENT_OFFSET"
    SELECTING_LOCATION = "SELECTING_LOCATION"
    SELECTING_DEFINITION_TO_DELETE = "SELECTING_DEFINITION_TO_DELETE"
    CONFIRMED = "CONFIRMED"


class DeleteMenu(str, Enum):
    """Sub-state of SELECTING_DEFINITION_TO_DELETE."""

    MENU_NOT_YET_SHOWN = "MENU_NOT_YET_SHOWN"
    AWAITING_SELECTION = "AWAITING_SELECTION"


class ReminderType(str, Enum):
    """What the user is reminded about. One definition per (user, type)."""

    TEFILLIN = "tefillin"
    SUNSET = "sunset"
    CANDLE = "candle"
    PRAYER = "prayer"
    CUSTOM = "custom"


class ReminderKind(str, Enum):
    """How the fire time is computed."""

    FIXED = "fixed"
    EVENT = "event"
    EVENT_OFFSET = "event-offset"


DeliveryStatus = Literal["pending", "sent", "delivered", "failed"]


# ──────────────────────────────
# Conversation
# ──────────────────────────────


class ConversationContext(BaseModel):
    """Selections carried from one conversation step to the next."""

    pending_type: Optional[ReminderType] = None
    location: Optional[str] = None
    delete_menu: DeleteMenu = DeleteMenu.MENU_NOT_YET_SHOWN


class User(BaseModel):
    id: str = Field(default_factory=_new_id)
    phone_number: str
    current_state: ConversationState = ConversationState.INITIAL
    context: ConversationContext = Field(default_factory=ConversationContext)
    created_at: Optional[datetime] = None


class InboundMessage(BaseModel):
    """Normalized inbound webhook message; only ``from`` and ``body`` drive the bot."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: Optional[str] = None
    body: str = ""
    timestamp: Optional[datetime] = None
    message_type: str = "text"

    @field_validator("body")
    def _strip(cls, v: str):  # noqa: N805
        return (v or "").strip()


# ──────────────────────────────
# Reminders
# ──────────────────────────────


class ReminderDefinition(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    reminder_type: ReminderType
    kind: ReminderKind
    location: Optional[str] = None
    time: Optional[str] = None  # HH:MM
    offset_minutes: Optional[int] = None  # positive → before the event
    enabled: bool = True
    event_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("time")
    def _validate_time(cls, v):  # noqa: N805
        if v is None:
            return v
        normalized = parse_hhmm(v)
        if normalized is None:
            raise ValueError(f"time '{v}' is not a valid HH:MM value")
        return normalized

    @model_validator(mode="after")
    def _kind_fields(self):
        if self.kind is ReminderKind.FIXED and not self.time:
            raise ValueError("fixed reminders need a time")
        if self.kind is ReminderKind.EVENT_OFFSET and self.offset_minutes is None:
            raise ValueError("event-offset reminders need offset_minutes")
        if self.kind in (ReminderKind.EVENT, ReminderKind.EVENT_OFFSET) and not self.location:
            raise ValueError(f"{self.kind.value} reminders need a location")
        return self


class DeliveryJob(BaseModel):
    key: str
    user_id: str
    reminder_type: ReminderType
    fire_at: datetime
    location: Optional[str] = None
    definition_id: str
    offset_minutes: Optional[int] = None
    event_time: Optional[datetime] = None

    @field_validator("fire_at")
    def _aware(cls, v: datetime):  # noqa: N805
        if v.tzinfo is None:
            raise ValueError("fire_at must be timezone-aware")
        return v


class DeliveryHistoryRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    reminder_type: ReminderType
    status: DeliveryStatus = "pending"
    attempted_at: Optional[datetime] = None
    reminder_time: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_message_id: Optional[str] = None


class HistoryStats(BaseModel):
    total: int = 0
    pending: int = 0
    sent: int = 0
    delivered: int = 0
    failed: int = 0


# ──────────────────────────────
# Admin views
# ──────────────────────────────


class ReminderStats(BaseModel):
    """Enabled definitions per reminder type."""

    total: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)


class UserSummary(BaseModel):
    user: User
    reminders: int = 0
    enabled_reminders: int = 0


class UserPage(BaseModel):
    users: List[UserSummary]
    limit: int
    offset: int
    total: int


class UserDetail(BaseModel):
    user: User
    reminders: List[ReminderDefinition]
    recent_history: List[DeliveryHistoryRecord]


class ManualMessage(BaseModel):
    """Operator-initiated message to one user, addressed by id or number."""

    user_id: Optional[str] = None
    phone_number: Optional[str] = None
    message: str

    @field_validator("message")
    def _non_empty(cls, v: str):  # noqa: N805
        v = v.strip()
        if not v:
            raise ValueError("message content is required")
        return v

    @model_validator(mode="after")
    def _has_recipient(self):
        if not self.user_id and not self.phone_number:
            raise ValueError("either user_id or phone_number is required")
        return self


# ──────────────────────────────
# Calendar data
# ──────────────────────────────


class DayTimes(BaseModel):
    """Key time points of one day at one location; any of them may be missing."""

    location: str
    day: date
    sunset: Optional[datetime] = None
    candle_lighting: Optional[datetime] = None
    prayer_times: Dict[str, datetime] = Field(default_factory=dict)
    raw: Optional[dict] = None

    def instant_for(self, reminder_type: ReminderType) -> Optional[datetime]:
        """The event a reminder of ``reminder_type`` is anchored to."""
        if reminder_type in (ReminderType.SUNSET, ReminderType.TEFILLIN):
            return self.sunset
        if reminder_type is ReminderType.CANDLE:
            return self.candle_lighting
        if reminder_type is ReminderType.PRAYER:
            return self.prayer_times.get("mincha")
        return None


# ──────────────────────────────
# Outbound transport
# ──────────────────────────────


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    body: str


class TemplateContent(BaseModel):
    type: Literal["template"] = "template"
    name: str
    params: List[str] = Field(default_factory=list)


OutboundContent = Annotated[Union[TextContent, TemplateContent], Field(discriminator="type")]


class SendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    status: Optional[str] = None  # queued, sending, sent, delivered, failed
    error: Optional[str] = None

    @property
    def accepted(self) -> bool:
        """Non-failed statuses count as provisional success."""
        return self.success and self.status != "failed"
