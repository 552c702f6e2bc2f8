"""
SQL implementations of the ReminderStore and TimeCache protocols.
Every database or network failure surfaces as DependencyUnavailable.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import DependencyUnavailable, StoreError
from app.types.contracts import (
    ConversationContext,
    ConversationState,
    DayTimes,
    DeliveryHistoryRecord,
    DeliveryStatus,
    HistoryStats,
    ReminderDefinition,
    ReminderKind,
    ReminderType,
    User,
)
from db.db import DayTimesRow, DeliveryHistoryRow, ReminderDefinitionRow, UserRow, get_session_maker

_DEFINITION_FIELDS = {"kind", "location", "time", "offset_minutes", "enabled", "event_time"}


class _SqlBase:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        maker = self._session_maker or get_session_maker()
        try:
            async with maker() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise DependencyUnavailable(f"database error: {exc}") from exc


# ──────────────────────────────────────────────────────────────────────
# Row ↔ contract conversion
# ──────────────────────────────────────────────────────────────────────


def _user(row: UserRow) -> User:
    return User(
        id=row.id,
        phone_number=row.phone_number,
        current_state=ConversationState(row.current_state),
        context=ConversationContext.model_validate(row.context or {}),
        created_at=row.created_at,
    )


def _definition(row: ReminderDefinitionRow) -> ReminderDefinition:
    return ReminderDefinition(
        id=row.id,
        user_id=row.user_id,
        reminder_type=ReminderType(row.reminder_type),
        kind=ReminderKind(row.kind),
        location=row.location,
        time=row.time,
        offset_minutes=row.offset_minutes,
        enabled=row.enabled,
        event_time=row.event_time,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _history(row: DeliveryHistoryRow) -> DeliveryHistoryRecord:
    return DeliveryHistoryRecord(
        id=row.id,
        user_id=row.user_id,
        reminder_type=ReminderType(row.reminder_type),
        status=row.status,
        attempted_at=row.attempted_at,
        reminder_time=row.reminder_time,
        error_message=row.error_message,
        provider_message_id=row.provider_message_id,
    )


class SqlReminderStore(_SqlBase):
    # 1. Users ---------------------------------------------------------
    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session() as s:
            row = await s.get(UserRow, user_id)
            return _user(row) if row else None

    async def get_user_by_phone(self, phone_number: str) -> Optional[User]:
        async with self._session() as s:
            res = await s.execute(select(UserRow).where(UserRow.phone_number == phone_number))
            row = res.scalar_one_or_none()
            return _user(row) if row else None

    async def list_users(self, limit: int = 100, offset: int = 0) -> List[User]:
        async with self._session() as s:
            res = await s.execute(
                select(UserRow).order_by(UserRow.created_at.desc(), UserRow.id).limit(limit).offset(offset)
            )
            return [_user(r) for r in res.scalars()]

    async def count_users(self) -> int:
        async with self._session() as s:
            res = await s.execute(select(func.count()).select_from(UserRow))
            return res.scalar_one()

    async def create_user(self, phone_number: str) -> User:
        row = UserRow(
            id=str(uuid4()),
            phone_number=phone_number,
            current_state=ConversationState.INITIAL.value,
            context=ConversationContext().model_dump(mode="json"),
        )
        async with self._session() as s:
            s.add(row)
            await s.commit()
            await s.refresh(row)
            return _user(row)

    async def update_user_state(
        self, user_id: str, state: ConversationState, context: ConversationContext
    ) -> None:
        async with self._session() as s:
            await s.execute(
                update(UserRow)
                .where(UserRow.id == user_id)
                .values(current_state=state.value, context=context.model_dump(mode="json"), updated_at=func.now())
            )
            await s.commit()

    # 2. Reminder definitions ----------------------------------------
    async def upsert_definition(self, definition: ReminderDefinition) -> ReminderDefinition:
        """Create or replace the user's definition of this type, re-enabling it."""
        async with self._session() as s:
            res = await s.execute(
                select(ReminderDefinitionRow).where(
                    ReminderDefinitionRow.user_id == definition.user_id,
                    ReminderDefinitionRow.reminder_type == definition.reminder_type.value,
                )
            )
            row = res.scalar_one_or_none()
            if row is None:
                row = ReminderDefinitionRow(
                    id=definition.id,
                    user_id=definition.user_id,
                    reminder_type=definition.reminder_type.value,
                )
                s.add(row)
            row.kind = definition.kind.value
            row.location = definition.location
            row.time = definition.time
            row.offset_minutes = definition.offset_minutes
            row.event_time = definition.event_time
            row.enabled = True
            await s.commit()
            await s.refresh(row)
            return _definition(row)

    async def list_definitions(self, user_id: str) -> List[ReminderDefinition]:
        async with self._session() as s:
            res = await s.execute(
                select(ReminderDefinitionRow)
                .where(ReminderDefinitionRow.user_id == user_id)
                .order_by(ReminderDefinitionRow.created_at, ReminderDefinitionRow.id)
            )
            return [_definition(r) for r in res.scalars()]

    async def find_definition(
        self, user_id: str, reminder_type: ReminderType
    ) -> Optional[ReminderDefinition]:
        async with self._session() as s:
            res = await s.execute(
                select(ReminderDefinitionRow).where(
                    ReminderDefinitionRow.user_id == user_id,
                    ReminderDefinitionRow.reminder_type == reminder_type.value,
                )
            )
            row = res.scalar_one_or_none()
            return _definition(row) if row else None

    async def update_definition(self, definition_id: str, **fields: Any) -> None:
        unknown = set(fields) - _DEFINITION_FIELDS
        if unknown:
            raise StoreError(f"cannot update definition fields: {sorted(unknown)}")
        if "kind" in fields and isinstance(fields["kind"], ReminderKind):
            fields["kind"] = fields["kind"].value
        async with self._session() as s:
            await s.execute(
                update(ReminderDefinitionRow)
                .where(ReminderDefinitionRow.id == definition_id)
                .values(**fields, updated_at=func.now())
            )
            await s.commit()

    async def delete_definition(self, definition_id: str) -> None:
        async with self._session() as s:
            await s.execute(delete(ReminderDefinitionRow).where(ReminderDefinitionRow.id == definition_id))
            await s.commit()

    async def disable_all_for_user(self, user_id: str) -> int:
        async with self._session() as s:
            res = await s.execute(
                update(ReminderDefinitionRow)
                .where(ReminderDefinitionRow.user_id == user_id, ReminderDefinitionRow.enabled.is_(True))
                .values(enabled=False, updated_at=func.now())
            )
            await s.commit()
            return res.rowcount or 0

    async def list_enabled_definitions(self) -> List[ReminderDefinition]:
        async with self._session() as s:
            res = await s.execute(
                select(ReminderDefinitionRow).where(ReminderDefinitionRow.enabled.is_(True))
            )
            return [_definition(r) for r in res.scalars()]

    async def enabled_counts_by_type(self) -> Dict[ReminderType, int]:
        async with self._session() as s:
            res = await s.execute(
                select(ReminderDefinitionRow.reminder_type, func.count())
                .where(ReminderDefinitionRow.enabled.is_(True))
                .group_by(ReminderDefinitionRow.reminder_type)
            )
            return {ReminderType(t): count for t, count in res.all()}

    # 3. Delivery history --------------------------------------------
    async def create_history(self, record: DeliveryHistoryRecord) -> DeliveryHistoryRecord:
        row = DeliveryHistoryRow(
            id=record.id,
            user_id=record.user_id,
            reminder_type=record.reminder_type.value,
            status=record.status,
            attempted_at=record.attempted_at or datetime.now(timezone.utc),
            reminder_time=record.reminder_time,
            error_message=record.error_message,
            provider_message_id=record.provider_message_id,
        )
        async with self._session() as s:
            s.add(row)
            await s.commit()
            return _history(row)

    async def update_history_status(
        self,
        record_id: str,
        status: DeliveryStatus,
        error_message: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> None:
        values: dict[str, Any] = {"status": status}
        if error_message is not None:
            values["error_message"] = error_message
        if provider_message_id is not None:
            values["provider_message_id"] = provider_message_id
        async with self._session() as s:
            await s.execute(update(DeliveryHistoryRow).where(DeliveryHistoryRow.id == record_id).values(**values))
            await s.commit()

    async def update_history_by_message_id(
        self, provider_message_id: str, status: DeliveryStatus, error_message: Optional[str] = None
    ) -> bool:
        values: dict[str, Any] = {"status": status}
        if error_message is not None:
            values["error_message"] = error_message
        stmt = update(DeliveryHistoryRow).where(DeliveryHistoryRow.provider_message_id == provider_message_id)
        if status == "sent":
            # a late "sent" callback must not undo a final status
            stmt = stmt.where(DeliveryHistoryRow.status.in_(("pending", "sent")))
        async with self._session() as s:
            res = await s.execute(stmt.values(**values))
            await s.commit()
            return bool(res.rowcount)

    async def list_history(self, user_id: str, limit: int = 50) -> List[DeliveryHistoryRecord]:
        async with self._session() as s:
            res = await s.execute(
                select(DeliveryHistoryRow)
                .where(DeliveryHistoryRow.user_id == user_id)
                .order_by(DeliveryHistoryRow.attempted_at.desc())
                .limit(limit)
            )
            return [_history(r) for r in res.scalars()]

    async def list_failed_history(self, limit: int = 100) -> List[DeliveryHistoryRecord]:
        async with self._session() as s:
            res = await s.execute(
                select(DeliveryHistoryRow)
                .where(DeliveryHistoryRow.status == "failed")
                .order_by(DeliveryHistoryRow.attempted_at.desc())
                .limit(limit)
            )
            return [_history(r) for r in res.scalars()]

    async def history_stats(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> HistoryStats:
        stmt = select(DeliveryHistoryRow.status, func.count()).group_by(DeliveryHistoryRow.status)
        if start:
            stmt = stmt.where(DeliveryHistoryRow.attempted_at >= start)
        if end:
            stmt = stmt.where(DeliveryHistoryRow.attempted_at <= end)
        async with self._session() as s:
            res = await s.execute(stmt)
            counts = {status: count for status, count in res.all()}
        return HistoryStats(
            total=sum(counts.values()),
            pending=counts.get("pending", 0),
            sent=counts.get("sent", 0),
            delivered=counts.get("delivered", 0),
            failed=counts.get("failed", 0),
        )


class SqlTimeCache(_SqlBase):
    async def get_day_times(self, location: str, day: date) -> Optional[DayTimes]:
        async with self._session() as s:
            res = await s.execute(
                select(DayTimesRow).where(DayTimesRow.location == location, DayTimesRow.day == day)
            )
            row = res.scalar_one_or_none()
            return DayTimes.model_validate(row.payload) if row else None

    async def put_day_times(self, times: DayTimes) -> None:
        payload = times.model_dump(mode="json")
        async with self._session() as s:
            res = await s.execute(
                select(DayTimesRow).where(DayTimesRow.location == times.location, DayTimesRow.day == times.day)
            )
            row = res.scalar_one_or_none()
            if row is None:
                s.add(DayTimesRow(location=times.location, day=times.day, payload=payload))
            else:
                row.payload = payload
                row.fetched_at = datetime.now(timezone.utc)
            await s.commit()

    async def prune_day_times(self, before: date) -> int:
        async with self._session() as s:
            res = await s.execute(delete(DayTimesRow).where(DayTimesRow.day < before))
            await s.commit()
            return res.rowcount or 0
