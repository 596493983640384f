"""sprint_rooms, sprint_participants, sprint_sessions

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "sprint_rooms",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("subject", sa.String(length=120), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sprint_rooms_owner_id"), "sprint_rooms", ["owner_id"], unique=False)
    op.create_index(op.f("ix_sprint_rooms_is_active"), "sprint_rooms", ["is_active"], unique=False)

    op.create_table(
        "sprint_participants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("room_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("current_task", sa.Text(), nullable=False, server_default=""),
        sa.Column("reflection", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="member"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["room_id"], ["sprint_rooms.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_sprint_participants_room_id"), "sprint_participants", ["room_id"], unique=False)
    op.create_index(op.f("ix_sprint_participants_user_id"), "sprint_participants", ["user_id"], unique=False)
    op.create_index(
        "uq_sprint_participants_active_user",
        "sprint_participants",
        ["room_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "sprint_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("room_id", sa.Uuid(), nullable=False),
        sa.Column("started_by", sa.Uuid(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("end_reason", sa.String(length=16), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["room_id"], ["sprint_rooms.id"], ondelete="CASCADE"),
    )
    op.create_index(op.f("ix_sprint_sessions_room_id"), "sprint_sessions", ["room_id"], unique=False)
    op.create_index(
        "uq_sprint_sessions_active_room",
        "sprint_sessions",
        ["room_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )


def downgrade() -> None:
    op.drop_index("uq_sprint_sessions_active_room", table_name="sprint_sessions")
    op.drop_index(op.f("ix_sprint_sessions_room_id"), table_name="sprint_sessions")
    op.drop_table("sprint_sessions")
    op.drop_index("uq_sprint_participants_active_user", table_name="sprint_participants")
    op.drop_index(op.f("ix_sprint_participants_user_id"), table_name="sprint_participants")
    op.drop_index(op.f("ix_sprint_participants_room_id"), table_name="sprint_participants")
    op.drop_table("sprint_participants")
    op.drop_index(op.f("ix_sprint_rooms_is_active"), table_name="sprint_rooms")
    op.drop_index(op.f("ix_sprint_rooms_owner_id"), table_name="sprint_rooms")
    op.drop_table("sprint_rooms")
