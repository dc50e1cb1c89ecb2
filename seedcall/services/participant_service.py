"""
seedcall.services.participant_service — Participant Ledger
===========================================================

Synchronous persistence for :class:`SeedingParticipant` rows, called
through :func:`~seedcall.database.engine.run_db`.

Rows are created lazily the first time a player is observed during a
session and are never deleted.  ``(session_id, player_id)`` is unique, so
a duplicate roster event can never create a second row: enrollment uses a
SAVEPOINT and falls back to the existing row on ``IntegrityError``.

Grant timestamps are stamped with a conditional UPDATE
(``WHERE <tier>_rewarded_at IS NULL``) so a tier is recorded at most once
even if two code paths race for it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from seedcall.database.models import (
    GRANT_COLUMNS,
    ParticipantState,
    ParticipantStatus,
    SeedingParticipant,
)
from seedcall.engine.rewards import RewardTier

logger = logging.getLogger(__name__)

# Statuses that earn playtime and completion rewards
_EARNING = (ParticipantStatus.SWITCHED.value, ParticipantStatus.SEEDING.value)


def _now() -> datetime:
    return datetime.now(UTC)


def _detached(session: Session, row: SeedingParticipant | None) -> SeedingParticipant | None:
    if row is not None:
        session.refresh(row)
        session.expunge(row)
    return row


def _by_player(session_id: int, player_id: str):
    return select(SeedingParticipant).where(
        SeedingParticipant.session_id == session_id,
        SeedingParticipant.player_id == player_id,
    )


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def get_participant(engine, session_id: int, player_id: str) -> SeedingParticipant | None:
    with Session(engine, expire_on_commit=False) as session:
        row = session.scalars(_by_player(session_id, player_id)).first()
        if row is not None:
            session.expunge(row)
        return row


def get_participant_by_id(engine, participant_id: int) -> SeedingParticipant | None:
    with Session(engine, expire_on_commit=False) as session:
        row = session.get(SeedingParticipant, participant_id)
        if row is not None:
            session.expunge(row)
        return row


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------
def _enroll(engine, row: SeedingParticipant) -> tuple[SeedingParticipant, bool]:
    """Insert *row* unless the player already has one in this session.

    Returns ``(participant, created)``.
    """
    with Session(engine, expire_on_commit=False) as session:
        existing = session.scalars(_by_player(row.session_id, row.player_id)).first()
        if existing is not None:
            session.expunge(existing)
            return existing, False

        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(row)
                session.flush()
        except IntegrityError:
            # Lost a race with another insert for the same player
            session.commit()
            existing = session.scalars(_by_player(row.session_id, row.player_id)).one()
            session.expunge(existing)
            return existing, False

        session.commit()
        return _detached(session, row), True


def enroll_seeder(
    engine, session_id: int, player_id: str, username: str | None = None
) -> tuple[SeedingParticipant, bool]:
    """Enroll a player found on the target without source tracking."""
    return _enroll(engine, SeedingParticipant(
        session_id=session_id,
        player_id=player_id,
        username=username,
        state=ParticipantState.seeder(),
        target_join_time=_now(),
        is_on_target=True,
        dwell_minutes=0,
        total_reward_minutes=0,
        confirmation_sent=False,
    ))


def enroll_switcher(
    engine,
    session_id: int,
    player_id: str,
    source_node_id: str,
    username: str | None = None,
) -> tuple[SeedingParticipant, bool]:
    """Enroll a player seen on a source node as a potential switcher."""
    return _enroll(engine, SeedingParticipant(
        session_id=session_id,
        player_id=player_id,
        username=username,
        state=ParticipantState.on_source(),
        source_node_id=source_node_id,
        source_join_time=_now(),
        is_on_target=False,
        dwell_minutes=0,
        total_reward_minutes=0,
        confirmation_sent=False,
    ))


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
def mark_switched(engine, participant_id: int) -> SeedingParticipant | None:
    """``on_source`` → ``switched``; ``None`` if the row was not on source.

    The status condition makes a duplicate target join a no-op.
    """
    now = _now()
    with Session(engine, expire_on_commit=False) as session:
        row = session.get(SeedingParticipant, participant_id)
        if row is None or row.state != ParticipantState.on_source():
            return None
        row.state = ParticipantState.switched()
        row.source_leave_time = row.source_leave_time or now
        row.target_join_time = now
        row.target_leave_time = None
        row.is_on_target = True
        session.commit()
        return _detached(session, row)


def mark_on_target(engine, participant_id: int) -> None:
    """Re-entry to the target without a state change."""
    with Session(engine) as session:
        session.execute(
            update(SeedingParticipant)
            .where(SeedingParticipant.id == participant_id)
            .values(is_on_target=True, target_leave_time=None)
        )
        session.commit()


def mark_left_target(engine, participant_id: int) -> None:
    with Session(engine) as session:
        session.execute(
            update(SeedingParticipant)
            .where(SeedingParticipant.id == participant_id)
            .values(is_on_target=False, target_leave_time=_now())
        )
        session.commit()


def mark_source_left(engine, participant_id: int) -> None:
    """Record a source-node leave for an ``on_source`` row."""
    with Session(engine) as session:
        session.execute(
            update(SeedingParticipant)
            .where(
                SeedingParticipant.id == participant_id,
                SeedingParticipant.status == ParticipantStatus.ON_SOURCE.value,
            )
            .values(source_leave_time=_now())
        )
        session.commit()


def rejoin_source(
    engine, participant_id: int, source_node_id: str
) -> SeedingParticipant | None:
    """``left`` → ``on_source`` for an expired switcher seen on a source again.

    Returns the revived row, or ``None`` if the row was not ``left``.
    """
    with Session(engine, expire_on_commit=False) as session:
        row = session.get(SeedingParticipant, participant_id)
        if row is None or row.state != ParticipantState.left():
            return None
        row.state = ParticipantState.on_source()
        row.source_node_id = source_node_id
        row.source_join_time = _now()
        row.source_leave_time = None
        session.commit()
        return _detached(session, row)


def mark_confirmation_sent(engine, participant_id: int) -> None:
    with Session(engine) as session:
        session.execute(
            update(SeedingParticipant)
            .where(SeedingParticipant.id == participant_id)
            .values(confirmation_sent=True)
        )
        session.commit()


def expire_stale_switchers(engine, session_id: int, cutoff: datetime) -> list[str]:
    """Move ``on_source`` rows whose source leave predates *cutoff* to ``left``.

    Returns the affected player ids so the caller can drop them from the
    switcher tracker.
    """
    left = ParticipantState.left()
    with Session(engine) as session:
        rows = session.scalars(
            select(SeedingParticipant).where(
                SeedingParticipant.session_id == session_id,
                SeedingParticipant.status == ParticipantStatus.ON_SOURCE.value,
                SeedingParticipant.source_leave_time.is_not(None),
                SeedingParticipant.source_leave_time < cutoff,
            )
        ).all()
        for row in rows:
            row.state = left
        session.commit()
        return [row.player_id for row in rows]


# ---------------------------------------------------------------------------
# Dwell time
# ---------------------------------------------------------------------------
def accrue_dwell(engine, session_id: int, minutes: int = 1) -> int:
    """Add *minutes* to every participant currently on the target."""
    with Session(engine) as session:
        result = session.execute(
            update(SeedingParticipant)
            .where(
                SeedingParticipant.session_id == session_id,
                SeedingParticipant.is_on_target.is_(True),
            )
            .values(dwell_minutes=SeedingParticipant.dwell_minutes + minutes)
        )
        session.commit()
        return result.rowcount


def reconcile_on_target(engine, session_id: int, player_ids: Iterable[str]) -> int:
    """Make ``is_on_target`` match the target's current roster.

    Returns how many participants were flipped off the target.
    """
    present = list(set(player_ids))
    now = _now()
    with Session(engine) as session:
        gone = update(SeedingParticipant).where(
            SeedingParticipant.session_id == session_id,
            SeedingParticipant.is_on_target.is_(True),
        )
        if present:
            gone = gone.where(SeedingParticipant.player_id.not_in(present))
        left_count = session.execute(
            gone.values(is_on_target=False, target_leave_time=now)
        ).rowcount

        if present:
            session.execute(
                update(SeedingParticipant)
                .where(
                    SeedingParticipant.session_id == session_id,
                    SeedingParticipant.player_id.in_(present),
                )
                .values(is_on_target=True, target_leave_time=None)
            )
        session.commit()
        return left_count


# ---------------------------------------------------------------------------
# Reward bookkeeping
# ---------------------------------------------------------------------------
def record_grant(
    engine, participant_id: int, tier: RewardTier, minutes: int
) -> SeedingParticipant | None:
    """Stamp *tier* and add *minutes* to the participant's total.

    Returns the updated participant, or ``None`` if the tier was already
    stamped (nothing is written in that case).
    """
    column = getattr(SeedingParticipant, GRANT_COLUMNS[RewardTier(tier)])
    with Session(engine, expire_on_commit=False) as session:
        result = session.execute(
            update(SeedingParticipant)
            .where(SeedingParticipant.id == participant_id, column.is_(None))
            .values({
                column: _now(),
                SeedingParticipant.total_reward_minutes:
                    SeedingParticipant.total_reward_minutes + minutes,
            })
        )
        session.commit()
        if result.rowcount != 1:
            return None
        row = session.get(SeedingParticipant, participant_id)
        session.expunge(row)
        return row


def _cleared_values() -> dict:
    values = {getattr(SeedingParticipant, name): None for name in GRANT_COLUMNS.values()}
    values[SeedingParticipant.total_reward_minutes] = 0
    return values


def clear_session_rewards(engine, session_id: int) -> int:
    """Clear every grant timestamp in the session; returns rows affected."""
    with Session(engine) as session:
        result = session.execute(
            update(SeedingParticipant)
            .where(SeedingParticipant.session_id == session_id)
            .values(_cleared_values())
        )
        session.commit()
        return result.rowcount


def clear_participant_rewards(engine, participant_id: int) -> dict[RewardTier, bool]:
    """Clear one participant's grants; returns which tiers had been stamped."""
    with Session(engine) as session:
        row = session.get(SeedingParticipant, participant_id)
        if row is None:
            return {tier: False for tier in RewardTier}
        cleared = {tier: row.grant_timestamp(tier) is not None for tier in RewardTier}
        for name in GRANT_COLUMNS.values():
            setattr(row, name, None)
        row.total_reward_minutes = 0
        session.commit()
        return cleared


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _list(engine, query) -> list[SeedingParticipant]:
    with Session(engine, expire_on_commit=False) as session:
        rows = list(session.scalars(query.order_by(SeedingParticipant.id)).all())
        for row in rows:
            session.expunge(row)
        return rows


def list_eligible_for_playtime(
    engine, session_id: int, threshold_minutes: int
) -> list[SeedingParticipant]:
    return _list(engine, select(SeedingParticipant).where(
        SeedingParticipant.session_id == session_id,
        SeedingParticipant.status.in_(_EARNING),
        SeedingParticipant.dwell_minutes >= threshold_minutes,
        SeedingParticipant.playtime_rewarded_at.is_(None),
    ))


def list_eligible_for_completion(engine, session_id: int) -> list[SeedingParticipant]:
    """Participants still on the target who have not had the completion tier."""
    return _list(engine, select(SeedingParticipant).where(
        SeedingParticipant.session_id == session_id,
        SeedingParticipant.is_on_target.is_(True),
        SeedingParticipant.status.in_(_EARNING),
        SeedingParticipant.completion_rewarded_at.is_(None),
    ))


def list_on_source(engine, session_id: int) -> list[SeedingParticipant]:
    return _list(engine, select(SeedingParticipant).where(
        SeedingParticipant.session_id == session_id,
        SeedingParticipant.status == ParticipantStatus.ON_SOURCE.value,
    ))


def list_on_target(engine, session_id: int) -> list[SeedingParticipant]:
    return _list(engine, select(SeedingParticipant).where(
        SeedingParticipant.session_id == session_id,
        SeedingParticipant.is_on_target.is_(True),
    ))


def known_player_ids(engine, session_id: int) -> set[str]:
    with Session(engine) as session:
        return set(session.scalars(
            select(SeedingParticipant.player_id)
            .where(SeedingParticipant.session_id == session_id)
        ).all())


def list_participants(
    engine,
    session_id: int,
    *,
    page: int = 1,
    limit: int = 50,
    status: str | None = None,
    participant_type: str | None = None,
    include_on_source: bool = False,
) -> tuple[list[SeedingParticipant], int]:
    """Paginated participants, newest first.

    ``on_source`` rows are left out unless *status* asks for them or
    *include_on_source* is set.
    """
    page = max(page, 1)
    limit = max(1, min(limit, 200))
    filters = [SeedingParticipant.session_id == session_id]
    if status:
        filters.append(SeedingParticipant.status == status)
    elif not include_on_source:
        filters.append(SeedingParticipant.status != ParticipantStatus.ON_SOURCE.value)
    if participant_type:
        filters.append(SeedingParticipant.participant_type == participant_type)

    with Session(engine, expire_on_commit=False) as session:
        total = session.scalar(
            select(func.count(SeedingParticipant.id)).where(*filters)
        ) or 0
        rows = list(session.scalars(
            select(SeedingParticipant)
            .where(*filters)
            .order_by(SeedingParticipant.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all())
        for row in rows:
            session.expunge(row)
        return rows, total
