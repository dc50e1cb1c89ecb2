"""
seedcall.engine.messages — Outbound Message Text
=================================================

Builders for every line of text the orchestrator sends to a node, either
as a server-wide broadcast or as a direct message to one player.

All builders take the session row (anything with the same attributes
works) and return a plain string.  Messages of a test-mode session are
prefixed with :data:`~seedcall.constants.TEST_PREFIX`.
"""

from __future__ import annotations

import re

from seedcall.constants import SEEDING_PREFIX, TEST_PREFIX
from seedcall.engine.rewards import RewardTier, format_duration

__all__ = [
    "cancelled_message",
    "closed_message",
    "completion_reward_message",
    "playtime_reward_message",
    "seeder_enrollment_message",
    "seeding_call_message",
    "switch_confirmation_message",
]


def _prefixed(session, text: str) -> str:
    return f"{TEST_PREFIX}{text}" if session.is_test_mode else text


def _target_label(session) -> str:
    return session.target_node_name or session.target_node_id


def _server_number(node_id: str) -> str:
    """``"server2"`` → ``"2"``; ids without digits are returned unchanged."""
    return re.sub(r"\D", "", node_id) or node_id


def _tier_goals(session, verb: str) -> list[str]:
    rewards = session.rewards
    parts: list[str] = []
    if rewards.playtime is not None:
        parts.append(
            f"Stay {rewards.playtime_threshold_minutes}min for "
            f"+{rewards.playtime.label} {verb}."
        )
    if rewards.completion is not None:
        parts.append(
            f"Be here at {session.player_threshold} players for "
            f"+{rewards.completion.label} more!"
        )
    return parts


# ---------------------------------------------------------------------------
# Broadcasts (source nodes)
# ---------------------------------------------------------------------------
def seeding_call_message(session) -> str:
    """The campaign call sent to qualifying source nodes.

    A custom template may use ``{server}`` (digits of the target node id)
    and ``{reward}`` (maximum total reward label).
    """
    reward = format_duration(session.rewards.total_minutes())
    if session.custom_broadcast_message:
        text = (
            session.custom_broadcast_message
            .replace("{server}", _server_number(session.target_node_id))
            .replace("{reward}", reward)
        )
    else:
        text = (
            f"{SEEDING_PREFIX} {_target_label(session)} needs players! "
            f"Switch now for up to {reward} whitelist reward!"
        )
    return _prefixed(session, text)


def closed_message(session) -> str:
    return _prefixed(
        session,
        f"{SEEDING_PREFIX} Thanks! {_target_label(session)} seeding complete. "
        "Session closed.",
    )


def cancelled_message(session, reason: str | None = None) -> str:
    text = f"{SEEDING_PREFIX} {_target_label(session)} seeding session has been cancelled."
    if reason:
        text = f"{text} Reason: {reason}"
    return _prefixed(session, text)


# ---------------------------------------------------------------------------
# Direct messages (one player)
# ---------------------------------------------------------------------------
def seeder_enrollment_message(session) -> str:
    parts = [f"{SEEDING_PREFIX} Seeding session started!"]
    parts.extend(_tier_goals(session, "whitelist"))
    return _prefixed(session, " ".join(parts))


def switch_confirmation_message(session) -> str:
    switch = session.reward_for(RewardTier.SWITCH)
    if switch is not None:
        parts = [f"{SEEDING_PREFIX} +{switch.label} whitelist unlocked!"]
    else:
        parts = [f"{SEEDING_PREFIX} You've been counted!"]
    parts.extend(_tier_goals(session, "bonus"))
    return _prefixed(session, " ".join(parts))


def playtime_reward_message(session, total_minutes: int) -> str:
    playtime = session.reward_for(RewardTier.PLAYTIME)
    label = playtime.label if playtime else "0min"
    return _prefixed(
        session,
        f"{SEEDING_PREFIX} Playtime bonus unlocked! +{label} whitelist added. "
        f"Total earned: {format_duration(total_minutes)}",
    )


def completion_reward_message(session, total_minutes: int) -> str:
    completion = session.reward_for(RewardTier.COMPLETION)
    label = completion.label if completion else "0min"
    return _prefixed(
        session,
        f"{SEEDING_PREFIX} Seeding complete! +{label} completion bonus! "
        f"Your total reward: {format_duration(total_minutes)} whitelist",
    )
