"""Create seeding sessions, participants, whitelist and audit tables

Revision ID: 5e2c8a41b7d0
Revises:
Create Date: 2026-10-17 10:12:03.418220

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5e2c8a41b7d0'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


_PARTICIPANT_STATES = (
    "(participant_type = 'seeder' AND status IN ('seeding')) OR "
    "(participant_type = 'switcher' AND status IN ('left', 'on_source', 'switched'))"
)


def upgrade() -> None:
    """Create the four seeding tables and their indexes."""

    # --- seeding_sessions ---
    op.create_table(
        "seeding_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("target_node_id", sa.String(50), nullable=False),
        sa.Column("target_node_name", sa.String(100), nullable=True),
        sa.Column("player_threshold", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("switch_reward_value", sa.Integer, nullable=True),
        sa.Column("switch_reward_unit", sa.String(20), nullable=True),
        sa.Column("playtime_reward_value", sa.Integer, nullable=True),
        sa.Column("playtime_reward_unit", sa.String(20), nullable=True),
        sa.Column("playtime_threshold_minutes", sa.Integer, nullable=True),
        sa.Column("completion_reward_value", sa.Integer, nullable=True),
        sa.Column("completion_reward_unit", sa.String(20), nullable=True),
        sa.Column("source_node_ids", postgresql.JSONB, nullable=True),
        sa.Column("custom_broadcast_message", sa.Text, nullable=True),
        sa.Column("started_by", sa.String(64), nullable=True),
        sa.Column("started_by_name", sa.String(100), nullable=True),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.func.now(),
        ),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("participants_count", sa.Integer, nullable=True, server_default="0"),
        sa.Column("rewards_granted_count", sa.Integer, nullable=True, server_default="0"),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
    )
    # At most one active session, enforced by the database
    op.create_index(
        "uq_seeding_sessions_single_active", "seeding_sessions", ["status"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_seeding_sessions_started_at", "seeding_sessions", ["started_at"])
    op.create_index("ix_seeding_sessions_target", "seeding_sessions", ["target_node_id"])

    # --- seeding_participants ---
    op.create_table(
        "seeding_participants",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            sa.Integer,
            sa.ForeignKey("seeding_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("player_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("participant_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("source_node_id", sa.String(50), nullable=True),
        sa.Column("source_join_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_leave_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("target_join_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("target_leave_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_on_target", sa.Boolean, nullable=True, server_default=sa.false()),
        sa.Column("dwell_minutes", sa.Integer, nullable=True, server_default="0"),
        sa.Column("switch_rewarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("playtime_rewarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_rewarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_reward_minutes", sa.Integer, nullable=True, server_default="0"),
        sa.Column("confirmation_sent", sa.Boolean, nullable=True, server_default=sa.false()),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "session_id", "player_id", name="uq_seeding_participants_session_player"
        ),
        sa.CheckConstraint(_PARTICIPANT_STATES, name="ck_seeding_participants_state"),
    )
    op.create_index(
        "ix_seeding_participants_on_target", "seeding_participants",
        ["session_id", "is_on_target"],
    )
    op.create_index(
        "ix_seeding_participants_status", "seeding_participants",
        ["session_id", "status"],
    )
    op.create_index("ix_seeding_participants_player", "seeding_participants", ["player_id"])

    # --- whitelist_entries ---
    op.create_table(
        "whitelist_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("identity", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("tag", sa.String(64), nullable=True),
        sa.Column("reason", sa.String(100), nullable=False),
        sa.Column("duration_minutes", sa.Integer, nullable=False),
        sa.Column("granted_by", sa.String(64), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean, nullable=True, server_default=sa.false()),
        sa.Column("revoked_by", sa.String(64), nullable=True),
        sa.Column("revoked_reason", sa.Text, nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
    )
    op.create_index(
        "ix_whitelist_entries_identity", "whitelist_entries", ["identity", "revoked"]
    )
    op.create_index("ix_whitelist_entries_tag", "whitelist_entries", ["tag"])

    # --- audit_log ---
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("actor_type", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("target_type", sa.String(30), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=True,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_audit_log_actor_time", "audit_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_audit_log_target", "audit_log", ["target_type", "target_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop the seeding tables."""
    op.drop_table("audit_log")
    op.drop_table("whitelist_entries")
    op.drop_table("seeding_participants")
    op.drop_index("uq_seeding_sessions_single_active", table_name="seeding_sessions")
    op.drop_table("seeding_sessions")
