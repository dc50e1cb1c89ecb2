"""
seedcall.bot.cogs.seeding — Seeding Slash Commands
===================================================

Discord slash commands for the active seeding session:
- /seeding-status — show the active session and participant counts
- /seeding-close — close the active session and pay completion rewards
- /seeding-cancel — cancel the active session without completion rewards

All commands require the configured admin_role_id.  Sessions are started
from the dashboard, where the reward tiers can be configured.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from seedcall.database.engine import run_db
from seedcall.services.embeds import build_idle_embed, build_session_embed, build_teardown_embed
from seedcall.services.errors import SeedingError
from seedcall.services.session_service import session_stats

if TYPE_CHECKING:
    from seedcall.bot.core import SeedcallBot

logger = logging.getLogger(__name__)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: SeedcallBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Seeding(commands.Cog, name="Seeding"):
    """Operator commands for the seeding orchestrator."""

    def __init__(self, bot: SeedcallBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /seeding-status
    # -------------------------------------------------------------------
    @app_commands.command(name="seeding-status", description="Show the active seeding session.")
    @is_admin()
    async def seeding_status(self, interaction: discord.Interaction) -> None:
        session = await self.bot.orchestrator.get_active_session()
        if session is None:
            await interaction.response.send_message(embed=build_idle_embed(), ephemeral=True)
            return

        stats = await run_db(session_stats, self.bot.engine, session.id)
        await interaction.response.send_message(
            embed=build_session_embed(session, stats), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /seeding-close
    # -------------------------------------------------------------------
    @app_commands.command(
        name="seeding-close",
        description="Close the active seeding session and grant completion rewards.",
    )
    @is_admin()
    async def seeding_close(self, interaction: discord.Interaction) -> None:
        session = self.bot.orchestrator.active_session
        if session is None:
            await interaction.response.send_message(
                "❌ There is no active seeding session.", ephemeral=True,
            )
            return

        # Completion sweep can outlast the 3s interaction window
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.orchestrator.close_session(session.id, "manual")
        logger.info(
            "%s closed seeding session #%d: %s",
            interaction.user, session.id, result.message,
        )
        await interaction.followup.send(embed=build_teardown_embed(result), ephemeral=True)

    # -------------------------------------------------------------------
    # /seeding-cancel
    # -------------------------------------------------------------------
    @app_commands.command(
        name="seeding-cancel",
        description="Cancel the active seeding session (no completion rewards).",
    )
    @app_commands.describe(reason="Reason shown to players on the source servers")
    @is_admin()
    async def seeding_cancel(
        self, interaction: discord.Interaction, reason: str | None = None
    ) -> None:
        session = self.bot.orchestrator.active_session
        if session is None:
            await interaction.response.send_message(
                "❌ There is no active seeding session.", ephemeral=True,
            )
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.orchestrator.cancel_session(
            session.id, str(interaction.user.id), reason,
        )
        await interaction.followup.send(embed=build_teardown_embed(result), ephemeral=True)

    # -------------------------------------------------------------------
    # Error handler
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await interaction.response.send_message(
                "🔒 You need the Admin role to use this command.",
                ephemeral=True,
            )
            return

        original = getattr(error, "original", error)
        if isinstance(original, SeedingError):
            send = (
                interaction.followup.send
                if interaction.response.is_done()
                else interaction.response.send_message
            )
            await send(f"❌ {original}", ephemeral=True)
        else:
            raise error


async def setup(bot: SeedcallBot) -> None:
    await bot.add_cog(Seeding(bot))
