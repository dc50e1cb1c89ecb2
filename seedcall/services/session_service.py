"""
seedcall.services.session_service — Session Ledger
===================================================

Synchronous persistence for :class:`SeedingSession` rows.  Every function
takes the :class:`Engine` first and is called from async code through
:func:`~seedcall.database.engine.run_db`.

The one-active-session rule is enforced twice: a pre-insert lookup gives a
friendly error, and the partial unique index on ``status = 'active'``
rejects a concurrent insert from another process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from seedcall.config import SeedingSettings
from seedcall.database.models import (
    ParticipantStatus,
    ParticipantType,
    SeedingParticipant,
    SeedingSession,
    SessionStatus,
)
from seedcall.engine.rewards import RewardTier, TierRewards
from seedcall.services.errors import ActiveSessionExistsError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Create request
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SessionRequest:
    """Operator input for a new seeding session."""

    target_node_id: str
    player_threshold: int
    rewards: TierRewards
    test_mode: bool = False
    # Honored only in test mode
    source_node_ids: tuple[str, ...] = field(default_factory=tuple)
    custom_message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_node_ids", tuple(self.source_node_ids))


def validate_request(request: SessionRequest, settings: SeedingSettings) -> None:
    """Raise ``ValueError`` describing the first problem with *request*."""
    minimum = 1 if request.test_mode else settings.min_player_threshold
    if not minimum <= request.player_threshold <= settings.max_player_threshold:
        raise ValueError(
            f"Player threshold must be between {minimum} and "
            f"{settings.max_player_threshold}"
        )
    if request.test_mode and not request.source_node_ids:
        raise ValueError("Test mode requires at least one source server")
    if not request.rewards.any():
        raise ValueError("At least one reward tier must be configured")


def _row_to_dict(obj: Any) -> dict:
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key if col.key != "metadata" else "metadata_", None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def session_to_dict(row: SeedingSession) -> dict:
    """JSON-ready view of a session, with reward labels."""
    data = _row_to_dict(row)
    data["test_mode"] = row.is_test_mode
    data["rewards"] = {
        tier.value: (
            {"value": spec.value, "unit": spec.unit.value, "minutes": spec.minutes,
             "label": spec.label}
            if (spec := row.reward_for(tier)) else None
        )
        for tier in RewardTier
    }
    return data


def participant_to_dict(row: SeedingParticipant) -> dict:
    return _row_to_dict(row)


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------
def _active_query():
    return select(SeedingSession).where(SeedingSession.status == SessionStatus.ACTIVE.value)


def create_session(
    engine,
    request: SessionRequest,
    *,
    source_node_ids: list[str],
    target_node_name: str | None = None,
    started_by: str | None = None,
    started_by_name: str | None = None,
) -> SeedingSession:
    """Insert a new ``active`` session.

    Raises
    ------
    ActiveSessionExistsError
        If any session is already active, including one inserted
        concurrently by another process.
    """
    rewards = request.rewards

    def _pair(tier: RewardTier) -> tuple[int | None, str | None]:
        spec = rewards.get(tier)
        return (spec.value, spec.unit.value) if spec else (None, None)

    switch_value, switch_unit = _pair(RewardTier.SWITCH)
    playtime_value, playtime_unit = _pair(RewardTier.PLAYTIME)
    completion_value, completion_unit = _pair(RewardTier.COMPLETION)

    with Session(engine, expire_on_commit=False) as session:
        existing = session.scalars(_active_query()).first()
        if existing is not None:
            raise ActiveSessionExistsError(existing.id)

        row = SeedingSession(
            target_node_id=request.target_node_id,
            target_node_name=target_node_name,
            player_threshold=request.player_threshold,
            status=SessionStatus.ACTIVE.value,
            switch_reward_value=switch_value,
            switch_reward_unit=switch_unit,
            playtime_reward_value=playtime_value,
            playtime_reward_unit=playtime_unit,
            playtime_threshold_minutes=(
                rewards.playtime_threshold_minutes if rewards.playtime else None
            ),
            completion_reward_value=completion_value,
            completion_reward_unit=completion_unit,
            source_node_ids=list(source_node_ids),
            custom_broadcast_message=request.custom_message or None,
            started_by=started_by,
            started_by_name=started_by_name,
            started_at=datetime.now(UTC),
            participants_count=0,
            rewards_granted_count=0,
            metadata_={"test_mode": request.test_mode},
        )
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ActiveSessionExistsError() from None
        session.refresh(row)
        session.expunge(row)

    logger.info(
        "Seeding session #%d created → target %s, threshold %d, %d source node(s)%s",
        row.id, row.target_node_id, row.player_threshold, len(row.source_node_ids),
        " [test mode]" if request.test_mode else "",
    )
    return row


def get_active_session(engine) -> SeedingSession | None:
    with Session(engine, expire_on_commit=False) as session:
        row = session.scalars(_active_query().order_by(SeedingSession.id.desc())).first()
        if row is not None:
            session.expunge(row)
        return row


def has_active_session(engine) -> bool:
    with Session(engine) as session:
        return session.scalar(
            select(func.count(SeedingSession.id))
            .where(SeedingSession.status == SessionStatus.ACTIVE.value)
        ) > 0


def get_seeding_session(engine, session_id: int) -> SeedingSession | None:
    with Session(engine, expire_on_commit=False) as session:
        row = session.get(SeedingSession, session_id)
        if row is not None:
            session.expunge(row)
        return row


def list_sessions(
    engine,
    *,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
) -> tuple[list[SeedingSession], int]:
    """Newest-first page of sessions and the total matching count."""
    page = max(page, 1)
    limit = max(1, min(limit, 100))
    with Session(engine, expire_on_commit=False) as session:
        query = select(SeedingSession)
        count_query = select(func.count(SeedingSession.id))
        if status:
            query = query.where(SeedingSession.status == status)
            count_query = count_query.where(SeedingSession.status == status)
        total = session.scalar(count_query) or 0
        rows = list(session.scalars(
            query.order_by(SeedingSession.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all())
        for row in rows:
            session.expunge(row)
        return rows, total


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------
def _finish_session(
    engine, session_id: int, status: SessionStatus, metadata: dict[str, Any]
) -> SeedingSession | None:
    """Move an active session to *status*; ``None`` if it was not active."""
    with Session(engine, expire_on_commit=False) as session:
        row = session.scalars(
            select(SeedingSession)
            .where(SeedingSession.id == session_id)
            .with_for_update()
        ).first()
        if row is None or row.status != SessionStatus.ACTIVE.value:
            return None
        row.status = status.value
        row.closed_at = datetime.now(UTC)
        row.metadata_ = {**(row.metadata_ or {}), **metadata}
        session.commit()
        session.refresh(row)
        session.expunge(row)

    logger.info("Seeding session #%d → %s", session_id, status.value)
    return row


def close_session(engine, session_id: int, reason: str = "manual") -> SeedingSession | None:
    return _finish_session(
        engine, session_id, SessionStatus.COMPLETED, {"close_reason": reason}
    )


def cancel_session(
    engine, session_id: int, reason: str | None = None
) -> SeedingSession | None:
    metadata = {"cancellation_reason": reason} if reason else {}
    return _finish_session(engine, session_id, SessionStatus.CANCELLED, metadata)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------
def refresh_participant_count(engine, session_id: int) -> int:
    """Recount participants and store the result on the session row."""
    with Session(engine) as session:
        count = session.scalar(
            select(func.count(SeedingParticipant.id))
            .where(SeedingParticipant.session_id == session_id)
        ) or 0
        session.execute(
            update(SeedingSession)
            .where(SeedingSession.id == session_id)
            .values(participants_count=count)
        )
        session.commit()
        return count


def increment_rewards_granted(engine, session_id: int, amount: int = 1) -> None:
    with Session(engine) as session:
        session.execute(
            update(SeedingSession)
            .where(SeedingSession.id == session_id)
            .values(rewards_granted_count=SeedingSession.rewards_granted_count + amount)
        )
        session.commit()


def decrement_rewards_granted(engine, session_id: int, amount: int) -> None:
    """Subtract *amount*, never going below zero."""
    if amount <= 0:
        return
    remaining = SeedingSession.rewards_granted_count - amount
    with Session(engine) as session:
        session.execute(
            update(SeedingSession)
            .where(SeedingSession.id == session_id)
            .values(rewards_granted_count=case((remaining < 0, 0), else_=remaining))
        )
        session.commit()


def reset_rewards_granted(engine, session_id: int) -> None:
    with Session(engine) as session:
        session.execute(
            update(SeedingSession)
            .where(SeedingSession.id == session_id)
            .values(rewards_granted_count=0)
        )
        session.commit()


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
def session_stats(engine, session_id: int) -> dict[str, int]:
    """Participant counts for one session, broken down for dashboards."""
    with Session(engine) as session:
        rows = session.execute(
            select(
                SeedingParticipant.participant_type,
                SeedingParticipant.status,
                func.count(SeedingParticipant.id),
            )
            .where(SeedingParticipant.session_id == session_id)
            .group_by(SeedingParticipant.participant_type, SeedingParticipant.status)
        ).all()
        on_target = session.scalar(
            select(func.count(SeedingParticipant.id)).where(
                SeedingParticipant.session_id == session_id,
                SeedingParticipant.is_on_target.is_(True),
            )
        ) or 0

    stats = {
        "total": 0,
        "switchers": 0,
        "seeders": 0,
        "on_target": on_target,
        **{status.value: 0 for status in ParticipantStatus},
    }
    for ptype, status, count in rows:
        stats["total"] += count
        stats[status] = stats.get(status, 0) + count
        if ptype == ParticipantType.SWITCHER.value:
            stats["switchers"] += count
        else:
            stats["seeders"] += count
    return stats
