"""
seedcall.engine.events — Roster Events
=======================================

Normalized events produced by a node connector.  Every roster change on
any node is turned into one of these before the orchestrator sees it.
Delivery is at-least-once: the same join may arrive twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = ["OccupancySnapshot", "RosterEvent", "RosterJoined", "RosterLeft"]


@dataclass(frozen=True, slots=True)
class RosterJoined:
    """A player appeared on *node_id*.

    ``occupancy`` is the node's player count including this player, as
    reported by the connector alongside the join.
    """

    node_id: str
    player_id: str
    display_name: str | None = None
    occupancy: int = 0


@dataclass(frozen=True, slots=True)
class RosterLeft:
    node_id: str
    player_id: str


@dataclass(frozen=True, slots=True)
class OccupancySnapshot:
    """Periodic full roster of one node."""

    node_id: str
    occupancy: int
    player_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "player_ids", frozenset(self.player_ids))


RosterEvent = RosterJoined | RosterLeft | OccupancySnapshot
