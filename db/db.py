"""
Async DB layer for the reminder bot.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, AsyncGenerator

from sqlalchemy import JSON, Date, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings


# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass


# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _build_url() -> str:
    url = settings.DATABASE_URL or settings.DATABASE_PUBLIC_URL
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url


def get_engine():
    global _engine
    if _engine is None:
        _engine = create_async_engine(_build_url(), pool_size=5, max_overflow=5, pool_pre_ping=True)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker


def get_session() -> AsyncGenerator[AsyncSession, None]:
    maker = get_session_maker()

    async def _session_scope():
        async with maker() as session:
            yield session

    return _session_scope()


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────


class UserRow(Base):
    __tablename__ = "users"

    id:            Mapped[str] = mapped_column(String(36), primary_key=True)
    phone_number:  Mapped[str] = mapped_column(String(32), unique=True, index=True)
    current_state: Mapped[str] = mapped_column(String(64), default="INITIAL")
    context:       Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at:    Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:    Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ReminderDefinitionRow(Base):
    __tablename__ = "reminder_definitions"
    __table_args__ = (UniqueConstraint("user_id", "reminder_type", name="uq_definition_user_type"),)

    id:             Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id:        Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    reminder_type:  Mapped[str] = mapped_column(String(32))
    kind:           Mapped[str] = mapped_column(String(16))
    location:       Mapped[str | None] = mapped_column(String(128))
    time:           Mapped[str | None] = mapped_column(String(5))
    offset_minutes: Mapped[int | None]
    enabled:        Mapped[bool] = mapped_column(default=True, index=True)
    event_time:     Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at:     Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:     Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class DeliveryHistoryRow(Base):
    __tablename__ = "delivery_history"

    id:                  Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id:             Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    reminder_type:       Mapped[str] = mapped_column(String(32))
    status:              Mapped[str] = mapped_column(String(16), default="pending", index=True)
    attempted_at:        Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    reminder_time:       Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message:       Mapped[str | None]
    provider_message_id: Mapped[str | None] = mapped_column(String(128), index=True)


class DayTimesRow(Base):
    __tablename__ = "day_times_cache"
    __table_args__ = (UniqueConstraint("location", "day", name="uq_day_times_location_day"),)

    id:         Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    location:   Mapped[str] = mapped_column(String(128))
    day:        Mapped[date] = mapped_column(Date, index=True)
    payload:    Mapped[dict[str, Any]] = mapped_column(JSON)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
