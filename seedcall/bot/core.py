"""
seedcall.bot.core — Bot Instance & Orchestrator Wiring
=======================================================

Defines :class:`SeedcallBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``),
   node connector and seeding orchestrator so every Cog can reach them.
2. Loads the seeding Cog.
3. Starts the orchestrator (recovering any active session) and then the
   connector, whose roster events feed ``orchestrator.submit``.
4. Syncs the slash-command tree on startup (guild-scoped for dev when
   ``DEV_GUILD_ID`` is set, global otherwise).
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from seedcall.config import SeedcallConfig
from seedcall.services.collaborators import NodeConnector
from seedcall.services.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "seedcall.bot.cogs.seeding",
]


class SeedcallBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`SeedcallConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    connector:
        The node connector supplying roster events and transport.
    orchestrator:
        The seeding orchestrator bound to *engine* and *connector*.
    """

    def __init__(
        self,
        cfg: SeedcallConfig,
        engine: Engine,
        connector: NodeConnector,
        orchestrator: SessionOrchestrator,
    ) -> None:
        # Slash commands only; no privileged intents needed
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            description=f"{cfg.community_name} seeding coordinator",
        )

        self.cfg = cfg
        self.engine = engine
        self.connector = connector
        self.orchestrator = orchestrator

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load Cogs, then bring up the orchestrator and the connector.

        The orchestrator starts first so no roster event is delivered
        before the active session has been recovered.
        """
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

        await self.orchestrator.start()
        await self.connector.start(self.orchestrator.submit)
        logger.info("Node connector started")

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        """Graceful shutdown: stop the feed before the orchestrator."""
        logger.info("Bot shutting down…")
        try:
            await self.connector.stop()
        except Exception:
            logger.exception("Node connector failed to stop cleanly")
        await self.orchestrator.stop()
        await super().close()
