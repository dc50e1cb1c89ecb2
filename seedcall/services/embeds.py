"""
seedcall.services.embeds — Discord embed builders for seeding status
=====================================================================

Embed construction lives here so the seeding cog only supplies data.
"""

from __future__ import annotations

import discord

from seedcall.constants import STATUS_COLORS
from seedcall.database.models import SeedingSession
from seedcall.engine.rewards import RewardTier
from seedcall.services.errors import TeardownResult


def _reward_lines(session: SeedingSession) -> str:
    rewards = session.rewards
    lines = []
    for tier in RewardTier:
        spec = rewards.get(tier)
        if spec is None:
            continue
        line = f"**{tier.value.title()}:** +{spec.label}"
        if tier is RewardTier.PLAYTIME:
            line += f" after {rewards.playtime_threshold_minutes}min"
        lines.append(line)
    return "\n".join(lines) or "None"


def build_session_embed(
    session: SeedingSession,
    stats: dict[str, int] | None = None,
) -> discord.Embed:
    """Status card for one seeding session."""
    title = f"\U0001f331 Seeding #{session.id}: {session.target_node_name or session.target_node_id}"
    if session.is_test_mode:
        title = f"[TEST] {title}"

    embed = discord.Embed(
        title=title,
        description=(
            f"Status: **{session.status}**\n"
            f"Closes at **{session.player_threshold}** players on the target."
        ),
        color=discord.Color(STATUS_COLORS.get(session.status, 0x95A5A6)),
    )
    embed.add_field(name="Rewards", value=_reward_lines(session), inline=False)

    if stats is not None:
        embed.add_field(
            name="Participants",
            value=(
                f"{stats['total']} total · {stats['on_target']} on target\n"
                f"{stats['switched']} switched · {stats['seeders']} seeders · "
                f"{stats['on_source']} on source"
            ),
            inline=False,
        )
    else:
        embed.add_field(name="Participants", value=str(session.participants_count))

    embed.add_field(name="Rewards granted", value=str(session.rewards_granted_count))
    embed.add_field(
        name="Source nodes",
        value=", ".join(session.source_node_ids) or "None",
        inline=False,
    )
    if session.started_by_name:
        embed.set_footer(text=f"Started by {session.started_by_name}")
    return embed


def build_idle_embed() -> discord.Embed:
    return discord.Embed(
        title="\U0001f331 No active seeding session",
        description="Start one from the dashboard.",
        color=discord.Color(STATUS_COLORS["cancelled"]),
    )


def build_teardown_embed(result: TeardownResult) -> discord.Embed:
    if not result.performed:
        return discord.Embed(description=result.message, color=discord.Color.orange())
    description = result.message
    if result.rewards_granted:
        description += f"\n{result.rewards_granted} completion reward(s) granted."
    return discord.Embed(
        title="✅ Seeding session ended",
        description=description,
        color=discord.Color(STATUS_COLORS["completed"]),
    )
