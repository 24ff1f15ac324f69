"""Create users, fasts, tribes and SOS tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "fasts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("goal_hours", sa.Integer(), nullable=False, server_default="16"),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_fasts_user_id"), "fasts", ["user_id"], unique=False)

    op.create_table(
        "tribes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tribe_memberships",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tribe_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["tribe_id"], ["tribes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tribe_id", "user_id", name="uq_tribe_membership_tribe_user"),
    )
    op.create_index(op.f("ix_tribe_memberships_tribe_id"), "tribe_memberships", ["tribe_id"], unique=False)
    op.create_index(op.f("ix_tribe_memberships_user_id"), "tribe_memberships", ["user_id"], unique=False)

    op.create_table(
        "sos_flares",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("fast_id", sa.Integer(), nullable=False),
        sa.Column("tribe_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("hours_fasted", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("hype_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("anonymous", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_fallback_fired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fast_id"], ["fasts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tribe_id"], ["tribes.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sos_flares_owner_id"), "sos_flares", ["owner_id"], unique=False)
    op.create_index("ix_sos_flares_status_created_at", "sos_flares", ["status", "created_at"], unique=False)
    op.create_index(
        "uq_sos_flares_one_active_per_owner",
        "sos_flares",
        ["owner_id"],
        unique=True,
        sqlite_where=sa.text("status = 'ACTIVE'"),
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "hype_responses",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("flare_id", sa.String(36), nullable=False),
        sa.Column("from_user_id", sa.Integer(), nullable=False),
        sa.Column("from_display_name", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("emoji", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["flare_id"], ["sos_flares.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("id"),
    )
    op.create_index(op.f("ix_hype_responses_flare_id"), "hype_responses", ["flare_id"], unique=False)
    op.create_index(
        "ix_hype_responses_sender_created_at", "hype_responses", ["from_user_id", "created_at"], unique=False
    )

    op.create_table(
        "sos_preferences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("notify_tribe_on_flare", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("anonymous_by_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_flare_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )


def downgrade() -> None:
    op.drop_table("sos_preferences")
    op.drop_index("ix_hype_responses_sender_created_at", table_name="hype_responses")
    op.drop_index(op.f("ix_hype_responses_flare_id"), table_name="hype_responses")
    op.drop_table("hype_responses")
    op.drop_index("uq_sos_flares_one_active_per_owner", table_name="sos_flares")
    op.drop_index("ix_sos_flares_status_created_at", table_name="sos_flares")
    op.drop_index(op.f("ix_sos_flares_owner_id"), table_name="sos_flares")
    op.drop_table("sos_flares")
    op.drop_index(op.f("ix_tribe_memberships_user_id"), table_name="tribe_memberships")
    op.drop_index(op.f("ix_tribe_memberships_tribe_id"), table_name="tribe_memberships")
    op.drop_table("tribe_memberships")
    op.drop_table("tribes")
    op.drop_index(op.f("ix_fasts_user_id"), table_name="fasts")
    op.drop_table("fasts")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
