"""Interfaces the core depends on.

The state machine, dispatcher and worker receive implementations of these
at construction; production wiring lives in ``app/dependencies.py`` and the
tests pass in-memory fakes.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol

from app.types.contracts import (
    ConversationContext,
    ConversationState,
    DayTimes,
    DeliveryHistoryRecord,
    DeliveryJob,
    DeliveryStatus,
    HistoryStats,
    OutboundContent,
    ReminderDefinition,
    ReminderType,
    SendResult,
    User,
)


class ReminderStore(Protocol):
    # users
    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def get_user_by_phone(self, phone_number: str) -> Optional[User]: ...

    async def list_users(self, limit: int = 100, offset: int = 0) -> List[User]: ...

    async def count_users(self) -> int: ...

    async def create_user(self, phone_number: str) -> User: ...

    async def update_user_state(
        self, user_id: str, state: ConversationState, context: ConversationContext
    ) -> None: ...

    # reminder definitions
    async def upsert_definition(self, definition: ReminderDefinition) -> ReminderDefinition: ...

    async def list_definitions(self, user_id: str) -> List[ReminderDefinition]: ...

    async def find_definition(
        self, user_id: str, reminder_type: ReminderType
    ) -> Optional[ReminderDefinition]: ...

    async def update_definition(self, definition_id: str, **fields: Any) -> None: ...

    async def delete_definition(self, definition_id: str) -> None: ...

    async def disable_all_for_user(self, user_id: str) -> int: ...

    async def list_enabled_definitions(self) -> List[ReminderDefinition]: ...

    async def enabled_counts_by_type(self) -> Dict[ReminderType, int]: ...

    # delivery history
    async def create_history(self, record: DeliveryHistoryRecord) -> DeliveryHistoryRecord: ...

    async def update_history_status(
        self,
        record_id: str,
        status: DeliveryStatus,
        error_message: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> None: ...

    async def update_history_by_message_id(
        self, provider_message_id: str, status: DeliveryStatus, error_message: Optional[str] = None
    ) -> bool: ...

    async def list_history(self, user_id: str, limit: int = 50) -> List[DeliveryHistoryRecord]: ...

    async def list_failed_history(self, limit: int = 100) -> List[DeliveryHistoryRecord]: ...

    async def history_stats(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> HistoryStats: ...


class TimeCache(Protocol):
    async def get_day_times(self, location: str, day: date) -> Optional[DayTimes]: ...

    async def put_day_times(self, times: DayTimes) -> None: ...

    async def prune_day_times(self, before: date) -> int: ...


class CalendarUpstream(Protocol):
    async def fetch(self, location: str, day: date) -> Dict[str, Any]: ...


class Transport(Protocol):
    async def send_message(self, to: str, content: OutboundContent) -> SendResult: ...


class JobQueue(Protocol):
    async def enqueue(self, key: str, job: DeliveryJob, delay_seconds: float) -> None: ...

    async def pending_jobs(self) -> List[DeliveryJob]: ...

    async def ack(self, key: str) -> None: ...
