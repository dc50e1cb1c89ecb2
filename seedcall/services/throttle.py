"""
seedcall.services.throttle — Occupancy-based broadcast throttle
================================================================

Decides which source nodes are busy enough to receive the seeding call.
Keeps the last reported occupancy per node and falls back to a live
roster query when the cached figure is missing, zero or stale.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


class BroadcastThrottle:
    """Occupancy cache with a qualifying-node filter.

    - A node qualifies when its occupancy is at least ``min_players``.
    - Cached entries older than ``stale_after`` seconds are ignored in
      favour of ``fallback(node_id)``.
    """

    def __init__(
        self,
        min_players: int = 99,
        stale_after: float = 300,
        fallback: Callable[[str], int] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_players = min_players
        self.stale_after = stale_after
        self._fallback = fallback
        self._clock = clock
        self._counts: dict[str, tuple[int, float]] = {}

    def record(self, node_id: str, occupancy: int) -> None:
        self._counts[node_id] = (occupancy, self._clock())

    def occupancy(self, node_id: str) -> int:
        cached = self._counts.get(node_id)
        if cached is not None:
            count, observed_at = cached
            if count > 0 and self._clock() - observed_at <= self.stale_after:
                return count

        if self._fallback is not None:
            try:
                return int(self._fallback(node_id))
            except Exception:
                logger.exception("Roster occupancy lookup failed for node %s", node_id)
        return cached[0] if cached else 0

    def is_qualifying(self, node_id: str) -> bool:
        return self.occupancy(node_id) >= self.min_players

    def qualifying(self, node_ids: Iterable[str], test_mode: bool = False) -> list[str]:
        """Nodes from *node_ids* that should get a broadcast.

        Test mode returns every node unfiltered.
        """
        nodes = list(node_ids)
        if test_mode:
            return nodes
        return [node for node in nodes if self.is_qualifying(node)]

    def clear(self) -> None:
        self._counts.clear()
