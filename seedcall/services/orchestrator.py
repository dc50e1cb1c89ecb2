"""
seedcall.services.orchestrator — Seeding Session Orchestrator
==============================================================

Owns the single active seeding session and drives it from roster events,
timers and operator calls.

Every piece of mutating work runs as a job on one ``asyncio.Queue``
consumer, so events, ticks and operator calls never interleave:

- :meth:`SessionOrchestrator.submit` enqueues a roster event and returns
  immediately (connectors call it from their feed loops).
- Public coroutine methods enqueue a job and await its result.
- Code already running on the consumer calls the ``_``-prefixed
  coroutines directly and never re-enters the queue.

Database work happens in the ledger services via ``run_db``.  The switcher
tracker and the throttle's occupancy cache are rebuilt from durable state
by :meth:`SessionOrchestrator.start`.

Usage::

    orchestrator = SessionOrchestrator(engine, cfg.seeding, connector, ledger, audit)
    await orchestrator.start()           # recovers any active session
    await connector.start(orchestrator.submit)

    session = await orchestrator.create_session(request, "1234", "drew")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from discord.ext import tasks

from seedcall.constants import SYSTEM_ACTOR
from seedcall.database.engine import run_db
from seedcall.database.models import AuditAction, ParticipantStatus
from seedcall.engine.events import OccupancySnapshot, RosterEvent, RosterJoined, RosterLeft
from seedcall.engine.messages import (
    cancelled_message,
    closed_message,
    seeder_enrollment_message,
    seeding_call_message,
    switch_confirmation_message,
)
from seedcall.engine.rewards import RewardTier
from seedcall.engine.tracker import SwitcherTracker
from seedcall.services import participant_service as participants
from seedcall.services import session_service as sessions
from seedcall.services.errors import (
    ActiveSessionExistsError,
    NodeNotConnectedError,
    SessionNotFoundError,
    TeardownResult,
)
from seedcall.services.reward_service import ClosePreview, ReversalResult, RewardEngine
from seedcall.services.throttle import BroadcastThrottle

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from seedcall.config import SeedingSettings
    from seedcall.database.models import SeedingSession
    from seedcall.services.collaborators import (
        AuditSink,
        NodeConnector,
        PresentPlayer,
        RewardLedger,
    )
    from seedcall.services.session_service import SessionRequest

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Job:
    func: Callable[..., Awaitable[Any]]
    args: tuple
    future: asyncio.Future | None


@dataclass(frozen=True, slots=True)
class NodeStatus:
    id: str
    name: str
    connected: bool
    occupancy: int
    qualifying: bool
    max_players: int = 100


class SessionOrchestrator:
    """State machine for one seeding session at a time."""

    def __init__(
        self,
        engine: Engine,
        settings: SeedingSettings,
        connector: NodeConnector,
        ledger: RewardLedger,
        audit: AuditSink | None = None,
    ) -> None:
        self.engine = engine
        self.settings = settings
        self.connector = connector
        self.rewards = RewardEngine(engine, ledger, connector, audit)
        self.tracker = SwitcherTracker()
        self.throttle = BroadcastThrottle(
            min_players=settings.min_players_for_broadcast,
            stale_after=settings.occupancy_stale_seconds,
            fallback=connector.node_occupancy,
        )

        self._session: SeedingSession | None = None
        self._queue: asyncio.Queue[_Job] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._timers: list[tasks.Loop] = []

    @property
    def active_session(self) -> SeedingSession | None:
        """In-memory copy of the active session (counters may lag)."""
        return self._session

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Start the job consumer and recover any persisted active session."""
        if self.running:
            return
        self._consumer = asyncio.create_task(self._consume(), name="seeding-orchestrator")
        await self._serialized(self._recover)

    async def stop(self) -> None:
        """Cancel timers and the consumer.  Persisted state is left as is."""
        self._stop_timers()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        logger.info("Seeding orchestrator stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    def submit(self, event: RosterEvent) -> None:
        """Queue a roster event for processing (fire-and-forget)."""
        self._queue.put_nowait(_Job(self._handle_event, (event,), None))

    # ------------------------------------------------------------------
    # Queue plumbing
    # ------------------------------------------------------------------
    async def _serialized(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if not self.running:
            raise RuntimeError("Seeding orchestrator is not running")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Job(func, args, future))
        return await future

    async def _consume(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                result = await job.func(*job.args)
            except Exception as exc:
                if job.future is None:
                    logger.exception("Seeding job %s failed", job.func.__name__)
                elif not job.future.done():
                    job.future.set_exception(exc)
            else:
                if job.future is not None and not job.future.done():
                    job.future.set_result(result)
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def create_session(
        self,
        request: SessionRequest,
        requested_by: str | None = None,
        requested_by_name: str | None = None,
    ) -> SeedingSession:
        return await self._serialized(self._create, request, requested_by, requested_by_name)

    async def close_session(self, session_id: int, reason: str = "manual") -> TeardownResult:
        return await self._serialized(self._close, session_id, reason)

    async def cancel_session(
        self, session_id: int, requested_by: str, reason: str | None = None
    ) -> TeardownResult:
        return await self._serialized(self._cancel, session_id, requested_by, reason)

    async def reverse_session_rewards(
        self, session_id: int, requested_by: str, reason: str = "Manual reversal"
    ) -> ReversalResult:
        return await self._serialized(
            self.rewards.reverse_session, session_id, requested_by, reason
        )

    async def reverse_participant_rewards(
        self,
        session_id: int,
        participant_id: int,
        requested_by: str,
        reason: str = "Manual revocation",
    ) -> ReversalResult:
        return await self._serialized(
            self.rewards.reverse_participant, session_id, participant_id, requested_by, reason
        )

    async def run_dwell_tick(self) -> None:
        await self._serialized(self._dwell_tick)

    async def run_reminder_tick(self) -> None:
        await self._serialized(self._reminder_tick)

    async def get_active_session(self) -> SeedingSession | None:
        """Fresh copy of the active session, or None when idle."""
        if self._session is None:
            return None
        return await run_db(sessions.get_seeding_session, self.engine, self._session.id)

    async def get_close_preview(self, session_id: int) -> ClosePreview:
        return await self.rewards.close_preview(session_id)

    def list_available_nodes(self) -> list[NodeStatus]:
        nodes = []
        for node in self.connector.list_nodes():
            occupancy = self.throttle.occupancy(node.id) if node.connected else 0
            nodes.append(NodeStatus(
                id=node.id,
                name=node.name,
                connected=node.connected,
                occupancy=occupancy,
                qualifying=node.connected and occupancy >= self.throttle.min_players,
                max_players=self.settings.max_players_per_server,
            ))
        return nodes

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    async def _create(
        self,
        request: SessionRequest,
        requested_by: str | None,
        requested_by_name: str | None,
    ) -> SeedingSession:
        if self._session is not None:
            raise ActiveSessionExistsError(self._session.id)
        sessions.validate_request(request, self.settings)

        nodes = {node.id: node for node in self.connector.list_nodes()}
        target = nodes.get(request.target_node_id)
        if target is None or not target.connected:
            raise NodeNotConnectedError(request.target_node_id)

        if request.test_mode:
            source_ids = [n for n in request.source_node_ids if n != target.id]
        else:
            source_ids = [n.id for n in nodes.values() if n.connected and n.id != target.id]

        session = await run_db(
            sessions.create_session,
            self.engine,
            request,
            source_node_ids=source_ids,
            target_node_name=target.name,
            started_by=requested_by,
            started_by_name=requested_by_name,
        )
        self._session = session
        self.tracker.clear()

        present = self._present_players()
        for player in present:
            if player.node_id != session.target_node_id:
                continue
            try:
                _, created = await run_db(
                    participants.enroll_seeder,
                    self.engine, session.id, player.player_id, player.display_name,
                )
                if created:
                    await self._direct(session, player.player_id, seeder_enrollment_message(session))
            except Exception:
                logger.exception("Failed to enroll seeder %s", player.player_id)

        self._start_timers()
        await self._broadcast_call(session, present)
        try:
            await run_db(sessions.refresh_participant_count, self.engine, session.id)
        except Exception:
            logger.exception("Failed to refresh participant count for session #%d", session.id)

        await self.rewards.record_audit(
            AuditAction.SESSION_STARTED,
            requested_by or SYSTEM_ACTOR,
            session,
            player_threshold=session.player_threshold,
            source_node_ids=session.source_node_ids,
            test_mode=session.is_test_mode,
        )
        return await run_db(sessions.get_seeding_session, self.engine, session.id)

    # ------------------------------------------------------------------
    # Roster events
    # ------------------------------------------------------------------
    async def _handle_event(self, event: RosterEvent) -> None:
        if isinstance(event, OccupancySnapshot):
            await self._on_snapshot(event)
        elif isinstance(event, RosterJoined):
            await self._on_join(event)
        elif isinstance(event, RosterLeft):
            await self._on_leave(event)
        else:
            logger.warning("Ignoring unknown roster event %r", event)

    async def _on_join(self, event: RosterJoined) -> None:
        if event.occupancy > 0:
            self.throttle.record(event.node_id, event.occupancy)
        session = self._session
        if session is None:
            return
        if event.node_id == session.target_node_id:
            await self._on_target_join(session, event)
        elif event.node_id in session.source_node_ids:
            await self._on_source_join(session, event)

    async def _on_source_join(self, session: SeedingSession, event: RosterJoined) -> None:
        created = await self._enroll_source(
            session, event.player_id, event.node_id, event.display_name
        )
        if created:
            logger.debug("Tracking potential switcher %s on %s", event.player_id, event.node_id)
            await run_db(sessions.refresh_participant_count, self.engine, session.id)

    async def _enroll_source(
        self,
        session: SeedingSession,
        player_id: str,
        node_id: str,
        display_name: str | None,
    ) -> bool:
        """Enroll (or revive an expired) switcher on *node_id* and track it.

        Returns True when a new participant row was created.
        """
        row, created = await run_db(
            participants.enroll_switcher,
            self.engine, session.id, player_id, node_id, display_name,
        )
        if row.status == ParticipantStatus.LEFT:
            revived = await run_db(participants.rejoin_source, self.engine, row.id, node_id)
            if revived is not None:
                logger.info("Expired switcher %s is back on %s", player_id, node_id)
                row = revived
        if row.status == ParticipantStatus.ON_SOURCE:
            self.tracker.track(row.player_id, row.source_node_id, row.source_join_time, row.id)
        return created

    async def _on_target_join(self, session: SeedingSession, event: RosterJoined) -> None:
        # Tracker entry narrows the lookup; the ledger row decides the transition
        tracked = self.tracker.discard(event.player_id)
        if tracked is not None and tracked.participant_id is not None:
            row = await run_db(
                participants.get_participant_by_id, self.engine, tracked.participant_id
            )
        else:
            row = await run_db(
                participants.get_participant, self.engine, session.id, event.player_id
            )

        if row is not None and row.status == ParticipantStatus.ON_SOURCE:
            switched = await run_db(participants.mark_switched, self.engine, row.id)
            if switched is not None:
                logger.info("Player %s switched from %s", event.player_id, row.source_node_id)
                await self.rewards.grant_tier(switched, session, RewardTier.SWITCH)
                await self._direct(session, event.player_id, switch_confirmation_message(session))
                await run_db(participants.mark_confirmation_sent, self.engine, row.id)
                await run_db(sessions.refresh_participant_count, self.engine, session.id)
        elif row is not None:
            await run_db(participants.mark_on_target, self.engine, row.id)
        else:
            _, created = await run_db(
                participants.enroll_seeder,
                self.engine, session.id, event.player_id, event.display_name,
            )
            if created:
                await self._direct(session, event.player_id, seeder_enrollment_message(session))
                await run_db(sessions.refresh_participant_count, self.engine, session.id)

        await self._check_threshold(session, event.occupancy)

    async def _on_leave(self, event: RosterLeft) -> None:
        session = self._session
        if session is None:
            return
        if event.node_id == session.target_node_id:
            row = await run_db(participants.get_participant, self.engine, session.id, event.player_id)
            if row is not None and row.is_on_target:
                await run_db(participants.mark_left_target, self.engine, row.id)
        elif event.node_id in session.source_node_ids:
            row = await run_db(participants.get_participant, self.engine, session.id, event.player_id)
            if row is not None and row.status == ParticipantStatus.ON_SOURCE:
                await run_db(participants.mark_source_left, self.engine, row.id)

    async def _on_snapshot(self, event: OccupancySnapshot) -> None:
        self.throttle.record(event.node_id, event.occupancy)
        session = self._session
        if session is None or event.node_id != session.target_node_id:
            return
        await run_db(participants.reconcile_on_target, self.engine, session.id, event.player_ids)
        await self._check_threshold(session, event.occupancy)

    async def _check_threshold(self, session: SeedingSession, occupancy: int) -> None:
        if self._session is None or self._session.id != session.id:
            return
        if occupancy >= session.player_threshold:
            logger.info(
                "Target %s reached %d/%d players, closing session #%d",
                session.target_node_id, occupancy, session.player_threshold, session.id,
            )
            await self._close(session.id, "threshold_reached")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------
    async def _dwell_tick(self) -> None:
        session = self._session
        if session is None:
            return
        await run_db(
            participants.accrue_dwell,
            self.engine, session.id, self.settings.dwell_minutes_per_tick,
        )
        await self.rewards.grant_playtime(session)

        if self.settings.switcher_expiry_minutes:
            cutoff = datetime.now(UTC) - timedelta(minutes=self.settings.switcher_expiry_minutes)
            expired = await run_db(
                participants.expire_stale_switchers, self.engine, session.id, cutoff
            )
            for player_id in expired:
                self.tracker.discard(player_id)
            if expired:
                logger.info("Expired %d stale switcher(s) in session #%d", len(expired), session.id)

    async def _reminder_tick(self) -> None:
        session = self._session
        if session is None:
            return
        await self._broadcast_call(session, self._present_players(), reminder=True)

    def _make_timer(self, seconds: float, tick: Callable[[], Awaitable[None]]) -> tasks.Loop:
        async def _fire() -> None:
            self._queue.put_nowait(_Job(tick, (), None))

        timer = tasks.loop(seconds=seconds)(_fire)

        # First tick one full interval after start
        @timer.before_loop
        async def _delay() -> None:
            await asyncio.sleep(seconds)

        return timer

    def _start_timers(self) -> None:
        self._stop_timers()
        self._timers = [
            self._make_timer(self.settings.dwell_tick_seconds, self._dwell_tick),
            self._make_timer(self.settings.broadcast_reminder_minutes * 60, self._reminder_tick),
        ]
        for timer in self._timers:
            timer.start()

    def _stop_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    # ------------------------------------------------------------------
    # Broadcasts
    # ------------------------------------------------------------------
    def _present_players(self) -> list[PresentPlayer]:
        try:
            return list(self.connector.present_players())
        except Exception:
            logger.exception("Roster feed failed to list present players")
            return []

    async def _broadcast_call(
        self,
        session: SeedingSession,
        present: list[PresentPlayer],
        reminder: bool = False,
    ) -> int:
        """Enroll occupants of qualifying source nodes, then broadcast to them."""
        targets = self.throttle.qualifying(session.source_node_ids, session.is_test_mode)
        if not targets:
            logger.debug(
                "No source node at %d+ players for seeding call%s",
                self.throttle.min_players, " reminder" if reminder else "",
            )
            return 0

        enrolled = 0
        for player in present:
            if player.node_id not in targets:
                continue
            try:
                created = await self._enroll_source(
                    session, player.player_id, player.node_id, player.display_name
                )
            except Exception:
                logger.exception("Failed to enroll switcher %s", player.player_id)
                continue
            enrolled += created
        if enrolled:
            await run_db(sessions.refresh_participant_count, self.engine, session.id)
            logger.info("Enrolled %d source player(s) in session #%d", enrolled, session.id)

        await self._broadcast(targets, seeding_call_message(session))
        logger.info(
            "Seeding call%s sent to %d source node(s)",
            " reminder" if reminder else "", len(targets),
        )
        return len(targets)

    async def _broadcast(self, node_ids: list[str], message: str) -> None:
        for node_id in node_ids:
            try:
                await self.connector.broadcast_text(node_id, message)
            except Exception:
                logger.exception("Failed to broadcast to %s", node_id)

    async def _direct(self, session: SeedingSession, player_id: str, message: str) -> None:
        try:
            await self.connector.direct_message(session.target_node_id, player_id, message)
        except Exception:
            logger.exception("Failed to message %s on %s", player_id, session.target_node_id)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def _load_for_teardown(self, session_id: int) -> SeedingSession:
        session = await run_db(sessions.get_seeding_session, self.engine, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _clear_active(self, session_id: int) -> None:
        if self._session is not None and self._session.id == session_id:
            self.tracker.clear()
            self._session = None

    async def _close(self, session_id: int, reason: str) -> TeardownResult:
        session = await self._load_for_teardown(session_id)
        if not session.is_active:
            return TeardownResult(
                False, f"Session {session_id} is already {session.status}", session_id
            )

        self._stop_timers()
        granted = 0
        try:
            granted = await self.rewards.grant_completion(session)
        except Exception:
            logger.exception("Completion sweep failed for session #%d", session_id)
        await self._broadcast(session.source_node_ids, closed_message(session))

        if await run_db(sessions.close_session, self.engine, session_id, reason) is None:
            logger.warning("Session #%d was closed elsewhere during teardown", session_id)
        await self.rewards.record_audit(
            AuditAction.SESSION_CLOSED, SYSTEM_ACTOR, session,
            reason=reason, rewards_granted=granted,
        )
        self._clear_active(session_id)

        logger.info("Seeding session #%d closed (%s), %d completion reward(s)",
                    session_id, reason, granted)
        return TeardownResult(True, f"Session {session_id} closed", session_id, granted)

    async def _cancel(
        self, session_id: int, requested_by: str, reason: str | None
    ) -> TeardownResult:
        session = await self._load_for_teardown(session_id)
        if not session.is_active:
            return TeardownResult(
                False, f"Session {session_id} is already {session.status}", session_id
            )

        self._stop_timers()
        await self._broadcast(session.source_node_ids, cancelled_message(session, reason))

        if await run_db(sessions.cancel_session, self.engine, session_id, reason) is None:
            logger.warning("Session #%d was closed elsewhere during teardown", session_id)
        await self.rewards.record_audit(
            AuditAction.SESSION_CANCELLED, requested_by, session, reason=reason,
        )
        self._clear_active(session_id)

        logger.info("Seeding session #%d cancelled by %s", session_id, requested_by)
        return TeardownResult(True, f"Session {session_id} cancelled", session_id)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------
    async def _recover(self) -> None:
        session = await run_db(sessions.get_active_session, self.engine)
        if session is None:
            logger.info("No active seeding session to recover")
            return

        self._session = session
        on_source = await run_db(participants.list_on_source, self.engine, session.id)
        self.tracker.rebuild(on_source)

        on_target = [
            p for p in self._present_players() if p.node_id == session.target_node_id
        ]
        if on_target:
            await run_db(
                participants.reconcile_on_target,
                self.engine, session.id, [p.player_id for p in on_target],
            )
            known = await run_db(participants.known_player_ids, self.engine, session.id)
            for player in on_target:
                if player.player_id in known:
                    continue
                try:
                    await run_db(
                        participants.enroll_seeder,
                        self.engine, session.id, player.player_id, player.display_name,
                    )
                    logger.info("Late enrollment during recovery: %s", player.player_id)
                except Exception:
                    logger.exception("Failed to enroll %s during recovery", player.player_id)
        else:
            logger.info("No players on target %s to reconcile", session.target_node_id)

        await run_db(sessions.refresh_participant_count, self.engine, session.id)
        self._start_timers()
        logger.info(
            "Recovered seeding session #%d → %s (%d tracked switcher(s))",
            session.id, session.target_node_id, len(self.tracker),
        )
