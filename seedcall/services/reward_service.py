"""
seedcall.services.reward_service — Reward Engine
=================================================

Policy layer between the orchestrator and the reward ledger.

A grant for ``(participant, tier)`` happens at most once per session:

1. The tier must be configured on the session (the switch tier is only
   ever paid to switchers).
2. The participant is re-read and skipped if the tier's grant timestamp
   is already set.
3. The ledger grant is issued, then the timestamp is stamped with a
   conditional UPDATE and the session counter is incremented.

Ledger and transport failures are logged per participant and never abort
a sweep over many participants.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from seedcall.constants import session_tag
from seedcall.database.engine import run_db
from seedcall.database.models import AuditAction, ParticipantType
from seedcall.engine.messages import completion_reward_message, playtime_reward_message
from seedcall.engine.rewards import RewardTier, format_duration
from seedcall.services import participant_service as participants
from seedcall.services import session_service as sessions
from seedcall.services.audit_service import describe
from seedcall.services.errors import (
    ParticipantNotFoundError,
    SessionNotFoundError,
    SessionStillActiveError,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from seedcall.database.models import SeedingParticipant, SeedingSession
    from seedcall.services.collaborators import AuditSink, RewardLedger, Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReversalResult:
    session_id: int
    revoked_count: int
    participants_affected: int
    tiers_cleared: dict[str, bool] = field(default_factory=dict)
    message: str = ""


@dataclass(frozen=True, slots=True)
class ClosePreview:
    """What closing the session right now would grant."""

    session_id: int
    participants_to_reward: int
    completion_reward_minutes: int
    total_minutes: int
    completion_reward_label: str | None
    total_label: str
    player_ids: list[str] = field(default_factory=list)


class RewardEngine:
    def __init__(
        self,
        engine: Engine,
        ledger: RewardLedger,
        transport: Transport | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.engine = engine
        self.ledger = ledger
        self.transport = transport
        self.audit = audit

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------
    async def grant_tier(
        self,
        participant: SeedingParticipant,
        session: SeedingSession,
        tier: RewardTier,
    ) -> bool:
        """Grant *tier* to *participant*; returns True if a grant was made."""
        tier = RewardTier(tier)
        spec = session.reward_for(tier)
        if spec is None:
            return False
        if tier is RewardTier.SWITCH and participant.participant_type != ParticipantType.SWITCHER:
            return False

        current = await run_db(participants.get_participant_by_id, self.engine, participant.id)
        if current is None or current.grant_timestamp(tier) is not None:
            return False

        minutes = spec.minutes
        try:
            await self.ledger.grant(
                current.player_id,
                minutes,
                session_tag(session.id),
                {
                    "tier": tier.value,
                    "session_id": session.id,
                    "username": current.username,
                    "value": spec.value,
                    "unit": spec.unit.value,
                },
            )
            updated = await run_db(
                participants.record_grant, self.engine, current.id, tier, minutes
            )
            if updated is None:
                logger.warning(
                    "%s reward for %s in session #%d was already recorded",
                    tier.value, current.player_id, session.id,
                )
                return False
            await run_db(sessions.increment_rewards_granted, self.engine, session.id)
        except Exception:
            logger.exception(
                "Failed to grant %s reward to %s in session #%d",
                tier.value, current.player_id, session.id,
            )
            return False

        logger.info(
            "Granted %s reward to %s (%s): %s",
            tier.value, current.username or "?", current.player_id, spec.label,
        )

        if tier is RewardTier.PLAYTIME:
            await self._notify(
                session, current.player_id,
                playtime_reward_message(session, updated.total_reward_minutes),
            )
        elif tier is RewardTier.COMPLETION:
            await self._notify(
                session, current.player_id,
                completion_reward_message(session, updated.total_reward_minutes),
            )
        return True

    async def _sweep(
        self,
        session: SeedingSession,
        tier: RewardTier,
        eligible: list[SeedingParticipant],
    ) -> int:
        granted = 0
        for participant in eligible:
            try:
                if await self.grant_tier(participant, session, tier):
                    granted += 1
            except Exception:
                logger.exception(
                    "%s sweep failed for participant %s in session #%d",
                    tier.value, participant.player_id, session.id,
                )
        return granted

    async def grant_playtime(self, session: SeedingSession) -> int:
        """Grant the playtime tier to everyone past the dwell threshold."""
        rewards = session.rewards
        if rewards.playtime is None:
            return 0
        eligible = await run_db(
            participants.list_eligible_for_playtime,
            self.engine, session.id, rewards.playtime_threshold_minutes,
        )
        return await self._sweep(session, RewardTier.PLAYTIME, eligible)

    async def grant_completion(self, session: SeedingSession) -> int:
        """Grant the completion tier to everyone still on the target."""
        if session.reward_for(RewardTier.COMPLETION) is None:
            return 0
        eligible = await run_db(participants.list_eligible_for_completion, self.engine, session.id)
        granted = await self._sweep(session, RewardTier.COMPLETION, eligible)
        logger.info(
            "Completion rewards for session #%d: %d/%d granted",
            session.id, granted, len(eligible),
        )
        return granted

    async def _notify(self, session: SeedingSession, player_id: str, message: str) -> None:
        if self.transport is None:
            return
        try:
            await self.transport.direct_message(session.target_node_id, player_id, message)
        except Exception:
            logger.exception("Failed to message %s on %s", player_id, session.target_node_id)

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------
    async def _finished_session(self, session_id: int) -> SeedingSession:
        session = await run_db(sessions.get_seeding_session, self.engine, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.is_active:
            raise SessionStillActiveError(session_id)
        return session

    async def record_audit(
        self, action: AuditAction, actor_id: str, session: SeedingSession, **details
    ) -> None:
        if self.audit is None:
            return
        details = {
            "session_id": session.id,
            "target_node_id": session.target_node_id,
            "target_node_name": session.target_node_name,
            **details,
        }
        await self.audit.record(
            action.value,
            actor_id,
            session.target_node_name or f"Session #{session.id}",
            describe(action, details),
            details,
        )

    async def reverse_session(
        self, session_id: int, reversed_by: str, reason: str = "Manual reversal"
    ) -> ReversalResult:
        """Revoke every reward the session granted and clear its timestamps."""
        session = await self._finished_session(session_id)

        revoked = await self.ledger.revoke_by_tag(session_tag(session_id), reversed_by, reason)
        affected = await run_db(participants.clear_session_rewards, self.engine, session_id)
        await run_db(sessions.reset_rewards_granted, self.engine, session_id)

        await self.record_audit(
            AuditAction.REWARDS_REVERSED, reversed_by, session,
            reason=reason, revoked_count=revoked, participants_affected=affected,
        )
        logger.info("Reversed %d reward(s) for session #%d: %s", revoked, session_id, reason)
        return ReversalResult(
            session_id=session_id,
            revoked_count=revoked,
            participants_affected=affected,
            message=(
                f"Revoked {revoked} whitelist entries, cleared rewards for "
                f"{affected} participants"
            ),
        )

    async def reverse_participant(
        self,
        session_id: int,
        participant_id: int,
        reversed_by: str,
        reason: str = "Manual revocation",
    ) -> ReversalResult:
        session = await self._finished_session(session_id)
        participant = await run_db(participants.get_participant_by_id, self.engine, participant_id)
        if participant is None or participant.session_id != session_id:
            raise ParticipantNotFoundError(session_id, participant_id)

        revoked = await self.ledger.revoke_by_tag_and_identity(
            session_tag(session_id), participant.player_id, reversed_by, reason
        )
        cleared = await run_db(participants.clear_participant_rewards, self.engine, participant_id)
        cleared_count = sum(cleared.values())
        await run_db(sessions.decrement_rewards_granted, self.engine, session_id, cleared_count)

        tiers = {tier.value: was_set for tier, was_set in cleared.items()}
        await self.record_audit(
            AuditAction.PARTICIPANT_REWARDS_REVOKED, reversed_by, session,
            reason=reason,
            participant_id=participant_id,
            player_id=participant.player_id,
            username=participant.username,
            revoked_count=revoked,
            rewards_cleared=tiers,
        )
        logger.info(
            "Revoked %d reward(s) for participant %d in session #%d",
            revoked, participant_id, session_id,
        )
        return ReversalResult(
            session_id=session_id,
            revoked_count=revoked,
            participants_affected=1,
            tiers_cleared=tiers,
            message=(
                f"Revoked {revoked} whitelist entries for "
                f"{participant.username or participant.player_id}"
            ),
        )

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------
    async def close_preview(self, session_id: int) -> ClosePreview:
        session = await run_db(sessions.get_seeding_session, self.engine, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        completion = session.reward_for(RewardTier.COMPLETION)
        eligible = (
            await run_db(participants.list_eligible_for_completion, self.engine, session_id)
            if completion is not None else []
        )
        each = completion.minutes if completion else 0
        total = each * len(eligible)
        return ClosePreview(
            session_id=session_id,
            participants_to_reward=len(eligible),
            completion_reward_minutes=each,
            total_minutes=total,
            completion_reward_label=completion.label if completion else None,
            total_label=format_duration(total),
            player_ids=[p.player_id for p in eligible],
        )
