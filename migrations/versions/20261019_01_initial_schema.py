"""initial reminder bot schema

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("phone_number", sa.String(length=32), nullable=False),
        sa.Column("current_state", sa.String(length=64), nullable=False, server_default="INITIAL"),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_phone_number", "users", ["phone_number"], unique=True)

    op.create_table(
        "reminder_definitions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reminder_type", sa.String(length=32), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("time", sa.String(length=5), nullable=True),
        sa.Column("offset_minutes", sa.Integer(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("event_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "reminder_type", name="uq_definition_user_type"),
    )
    op.create_index("ix_reminder_definitions_user_id", "reminder_definitions", ["user_id"])
    op.create_index("ix_reminder_definitions_enabled", "reminder_definitions", ["enabled"])

    op.create_table(
        "delivery_history",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reminder_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("reminder_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("provider_message_id", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_delivery_history_user_id", "delivery_history", ["user_id"])
    op.create_index("ix_delivery_history_status", "delivery_history", ["status"])
    op.create_index("ix_delivery_history_provider_message_id", "delivery_history", ["provider_message_id"])

    op.create_table(
        "day_times_cache",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("location", sa.String(length=128), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("location", "day", name="uq_day_times_location_day"),
    )
    op.create_index("ix_day_times_cache_day", "day_times_cache", ["day"])


def downgrade() -> None:
    op.drop_table("day_times_cache")
    op.drop_table("delivery_history")
    op.drop_table("reminder_definitions")
    op.drop_table("users")
