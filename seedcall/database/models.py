"""
seedcall.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- seeding_sessions     — One row per seeding session (at most one active)
- seeding_participants — Per-session participant state machine
- whitelist_entries    — Time-limited whitelist grants (default reward ledger)
- audit_log            — Append-only audit trail (default audit sink)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from seedcall.engine.rewards import RewardSpec, RewardTier, TierRewards


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Seedcall ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SessionStatus(enum.StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipantType(enum.StrEnum):
    """How a participant entered the session."""
    SWITCHER = "switcher"  # first observed on a source node
    SEEDER = "seeder"      # found on the target without source tracking


class ParticipantStatus(enum.StrEnum):
    ON_SOURCE = "on_source"
    LEFT = "left"
    SWITCHED = "switched"
    SEEDING = "seeding"


class AuditAction(enum.StrEnum):
    """Action types recorded through the audit sink."""
    SESSION_STARTED = "seeding_session_started"
    SESSION_CLOSED = "seeding_session_closed"
    SESSION_CANCELLED = "seeding_session_cancelled"
    REWARDS_REVERSED = "seeding_rewards_reversed"
    PARTICIPANT_REWARDS_REVOKED = "seeding_participant_rewards_revoked"


# ---------------------------------------------------------------------------
# ParticipantState — the only legal (type, status) pairs
# ---------------------------------------------------------------------------
LEGAL_STATES: dict[ParticipantType, frozenset[ParticipantStatus]] = {
    ParticipantType.SWITCHER: frozenset({
        ParticipantStatus.ON_SOURCE,
        ParticipantStatus.LEFT,
        ParticipantStatus.SWITCHED,
    }),
    ParticipantType.SEEDER: frozenset({ParticipantStatus.SEEDING}),
}


@dataclass(frozen=True, slots=True)
class ParticipantState:
    """Validated (type, status) pair.

    Constructing an illegal combination (e.g. a seeder ``on_source``)
    raises ``ValueError``; :class:`SeedingParticipant` only accepts its
    type and status through this object.
    """

    type: ParticipantType
    status: ParticipantStatus

    def __post_init__(self) -> None:
        ptype = ParticipantType(self.type)
        status = ParticipantStatus(self.status)
        if status not in LEGAL_STATES[ptype]:
            raise ValueError(f"Illegal participant state: {ptype}/{status}")
        object.__setattr__(self, "type", ptype)
        object.__setattr__(self, "status", status)

    @classmethod
    def seeder(cls) -> ParticipantState:
        return cls(ParticipantType.SEEDER, ParticipantStatus.SEEDING)

    @classmethod
    def on_source(cls) -> ParticipantState:
        return cls(ParticipantType.SWITCHER, ParticipantStatus.ON_SOURCE)

    @classmethod
    def switched(cls) -> ParticipantState:
        return cls(ParticipantType.SWITCHER, ParticipantStatus.SWITCHED)

    @classmethod
    def left(cls) -> ParticipantState:
        return cls(ParticipantType.SWITCHER, ParticipantStatus.LEFT)


def _state_check_sql() -> str:
    clauses = []
    for ptype, statuses in LEGAL_STATES.items():
        allowed = ", ".join(f"'{s.value}'" for s in sorted(statuses))
        clauses.append(f"(participant_type = '{ptype.value}' AND status IN ({allowed}))")
    return " OR ".join(clauses)


# ---------------------------------------------------------------------------
# SeedingSession — one campaign toward a target node
# ---------------------------------------------------------------------------
class SeedingSession(Base):
    __tablename__ = "seeding_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_node_id: Mapped[str] = mapped_column(String(50), nullable=False)
    target_node_name: Mapped[str | None] = mapped_column(String(100), default=None)
    player_threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.ACTIVE.value
    )

    # Reward tiers: value/unit pairs, NULL = tier disabled
    switch_reward_value: Mapped[int | None] = mapped_column(Integer, default=None)
    switch_reward_unit: Mapped[str | None] = mapped_column(String(20), default=None)
    playtime_reward_value: Mapped[int | None] = mapped_column(Integer, default=None)
    playtime_reward_unit: Mapped[str | None] = mapped_column(String(20), default=None)
    playtime_threshold_minutes: Mapped[int | None] = mapped_column(Integer, default=None)
    completion_reward_value: Mapped[int | None] = mapped_column(Integer, default=None)
    completion_reward_unit: Mapped[str | None] = mapped_column(String(20), default=None)

    source_node_ids: Mapped[list[str]] = mapped_column(JSONB, default=list)
    custom_broadcast_message: Mapped[str | None] = mapped_column(Text, default=None)

    started_by: Mapped[str | None] = mapped_column(String(64), default=None)
    started_by_name: Mapped[str | None] = mapped_column(String(100), default=None)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    participants_count: Mapped[int] = mapped_column(Integer, default=0)
    rewards_granted_count: Mapped[int] = mapped_column(Integer, default=0)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        # The single-active-session invariant lives in the database
        Index(
            "uq_seeding_sessions_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_seeding_sessions_started_at", "started_at"),
        Index("ix_seeding_sessions_target", "target_node_id"),
    )

    @property
    def rewards(self) -> TierRewards:
        def _spec(value: int | None, unit: str | None) -> RewardSpec | None:
            if value is None or unit is None:
                return None
            return RewardSpec(value, unit)

        playtime = _spec(self.playtime_reward_value, self.playtime_reward_unit)
        return TierRewards(
            switch=_spec(self.switch_reward_value, self.switch_reward_unit),
            playtime=playtime if self.playtime_threshold_minutes else None,
            playtime_threshold_minutes=self.playtime_threshold_minutes,
            completion=_spec(self.completion_reward_value, self.completion_reward_unit),
        )

    def reward_for(self, tier: RewardTier) -> RewardSpec | None:
        return self.rewards.get(tier)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE.value

    @property
    def is_test_mode(self) -> bool:
        return bool((self.metadata_ or {}).get("test_mode"))

    def __repr__(self) -> str:
        return (
            f"<SeedingSession id={self.id} target={self.target_node_id!r} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# SeedingParticipant — one player's state within one session
# ---------------------------------------------------------------------------
GRANT_COLUMNS: dict[RewardTier, str] = {
    RewardTier.SWITCH: "switch_rewarded_at",
    RewardTier.PLAYTIME: "playtime_rewarded_at",
    RewardTier.COMPLETION: "completion_rewarded_at",
}


class SeedingParticipant(Base):
    __tablename__ = "seeding_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("seeding_sessions.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[str] = mapped_column(String(64), nullable=False)  # Steam ID
    username: Mapped[str | None] = mapped_column(String(100), default=None)

    # Written only through the ``state`` property
    participant_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    source_node_id: Mapped[str | None] = mapped_column(String(50), default=None)
    source_join_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    source_leave_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    target_join_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    target_leave_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    is_on_target: Mapped[bool] = mapped_column(Boolean, default=False)
    dwell_minutes: Mapped[int] = mapped_column(Integer, default=0)

    switch_rewarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    playtime_rewarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    completion_rewarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    total_reward_minutes: Mapped[int] = mapped_column(Integer, default=0)
    confirmation_sent: Mapped[bool] = mapped_column(Boolean, default=False)

    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("session_id", "player_id", name="uq_seeding_participants_session_player"),
        CheckConstraint(_state_check_sql(), name="ck_seeding_participants_state"),
        Index("ix_seeding_participants_on_target", "session_id", "is_on_target"),
        Index("ix_seeding_participants_status", "session_id", "status"),
        Index("ix_seeding_participants_player", "player_id"),
    )

    @property
    def state(self) -> ParticipantState:
        return ParticipantState(self.participant_type, self.status)

    @state.setter
    def state(self, value: ParticipantState) -> None:
        self.participant_type = value.type.value
        self.status = value.status.value

    def grant_timestamp(self, tier: RewardTier) -> datetime | None:
        return getattr(self, GRANT_COLUMNS[RewardTier(tier)])

    def __repr__(self) -> str:
        return (
            f"<SeedingParticipant id={self.id} session={self.session_id} "
            f"player={self.player_id!r} {self.participant_type}/{self.status}>"
        )


# ---------------------------------------------------------------------------
# WhitelistEntry — time-limited access grants
# ---------------------------------------------------------------------------
class WhitelistEntry(Base):
    __tablename__ = "whitelist_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    tag: Mapped[str | None] = mapped_column(String(64), default=None)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    granted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False)
    revoked_by: Mapped[str | None] = mapped_column(String(64), default=None)
    revoked_reason: Mapped[str | None] = mapped_column(Text, default=None)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        Index("ix_whitelist_entries_identity", "identity", "revoked"),
        Index("ix_whitelist_entries_tag", "tag"),
    )

    def __repr__(self) -> str:
        return (
            f"<WhitelistEntry id={self.id} identity={self.identity!r} "
            f"minutes={self.duration_minutes} revoked={self.revoked}>"
        )


# ---------------------------------------------------------------------------
# AuditLog — append-only audit trail
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)  # system | discord_user
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), default=None)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audit_log_actor_time", "actor_id", "timestamp"),
        Index("ix_audit_log_target", "target_type", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} action={self.action_type} target={self.target_id}>"
