"""
seedcall.engine.tracker — Switcher Tracker
===========================================

In-memory index of participants currently observed on a source node and
not yet seen on the target.  It is a cache: the participant ledger is
authoritative, and :meth:`SwitcherTracker.rebuild` restores the index from
``on_source`` rows after a restart.

Only the orchestrator's queue consumer touches a tracker, so it carries no
locking of its own.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

__all__ = ["SwitcherTracker", "TrackedSwitcher"]


@dataclass(frozen=True, slots=True)
class TrackedSwitcher:
    player_id: str
    node_id: str
    joined_at: datetime | None
    participant_id: int | None = None


class SwitcherTracker:
    """Mapping of player id → :class:`TrackedSwitcher`."""

    def __init__(self) -> None:
        self._entries: dict[str, TrackedSwitcher] = {}

    def track(
        self,
        player_id: str,
        node_id: str,
        joined_at: datetime | None,
        participant_id: int | None = None,
    ) -> TrackedSwitcher:
        """Record (or refresh) a player on a source node."""
        entry = TrackedSwitcher(player_id, node_id, joined_at, participant_id)
        self._entries[player_id] = entry
        return entry

    def get(self, player_id: str) -> TrackedSwitcher | None:
        return self._entries.get(player_id)

    def discard(self, player_id: str) -> TrackedSwitcher | None:
        return self._entries.pop(player_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def rebuild(self, rows: Iterable) -> int:
        """Replace the index with *rows* (``on_source`` participants).

        Each row needs ``player_id``, ``source_node_id``,
        ``source_join_time`` and ``id`` attributes.  Returns the entry count.
        """
        self._entries = {
            row.player_id: TrackedSwitcher(
                row.player_id, row.source_node_id, row.source_join_time, row.id,
            )
            for row in rows
        }
        return len(self._entries)

    def snapshot(self) -> dict[str, TrackedSwitcher]:
        return dict(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._entries
