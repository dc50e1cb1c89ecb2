"""
seedcall.constants — Shared Constants
======================================

Single source of truth for message prefixes, ledger tags and actor names.
Import from here instead of duplicating in services, cogs and routes.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Outbound message prefixes
# ---------------------------------------------------------------------------
SEEDING_PREFIX = "[SEEDING]"
TEST_PREFIX = "[TEST] "

# ---------------------------------------------------------------------------
# Reward ledger / audit identities
# ---------------------------------------------------------------------------
SYSTEM_ACTOR = "seeding-system"
SESSION_TAG_PREFIX = "seeding-session:"


def session_tag(session_id: int) -> str:
    """Tag attached to every reward ledger entry granted for *session_id*."""
    return f"{SESSION_TAG_PREFIX}{session_id}"


# ---------------------------------------------------------------------------
# Discord embed colors
# ---------------------------------------------------------------------------
STATUS_COLORS: dict[str, int] = {
    "active": 0x2ECC71,
    "completed": 0x3498DB,
    "cancelled": 0x95A5A6,
}
