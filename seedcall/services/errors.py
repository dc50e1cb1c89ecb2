"""
seedcall.services.errors — Seeding Exceptions
==============================================

Raised by deliberate state transitions (create, close, reverse) so the
REST and Discord surfaces can map them to a response.  Work driven by
roster events and timers never raises these; it logs and continues.
"""

from __future__ import annotations

from dataclasses import dataclass


class SeedingError(Exception):
    """Base class for seeding session failures."""


class ActiveSessionExistsError(SeedingError):
    def __init__(self, session_id: int | None = None) -> None:
        self.session_id = session_id
        detail = f" (session #{session_id})" if session_id is not None else ""
        super().__init__(f"A seeding session is already active{detail}")


class NodeNotConnectedError(SeedingError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Target server {node_id} is not connected")


class SessionNotFoundError(SeedingError, LookupError):
    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class ParticipantNotFoundError(SeedingError, LookupError):
    def __init__(self, session_id: int, participant_id: int) -> None:
        self.session_id = session_id
        self.participant_id = participant_id
        super().__init__(
            f"Participant {participant_id} not found in session {session_id}"
        )


class SessionStillActiveError(SeedingError):
    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(
            f"Session {session_id} is still active; close or cancel it first"
        )


@dataclass(frozen=True, slots=True)
class TeardownResult:
    """Outcome of a close or cancel request.

    ``performed`` is False when the session had already left ``active``;
    that case is informational, not an error.
    """

    performed: bool
    message: str
    session_id: int | None = None
    rewards_granted: int = 0
