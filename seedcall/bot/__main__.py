"""
seedcall.bot.__main__ — Entry point for ``python -m seedcall.bot``
==================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Load the node connector named in config.yaml.
5. Build the reward ledger, audit sink and seeding orchestrator.
6. Create the SeedcallBot and attach the orchestrator to the REST API.
7. Run the bot and the REST API on one event loop.

Run with::

    python -m seedcall.bot
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

from seedcall.bot.core import SeedcallBot
from seedcall.config import load_config
from seedcall.database.engine import create_db_engine, init_db
from seedcall.services.audit_service import AuditLogSink
from seedcall.services.collaborators import load_connector
from seedcall.services.orchestrator import SessionOrchestrator
from seedcall.services.whitelist_service import WhitelistLedger

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("seedcall")


async def _serve(bot: SeedcallBot, token: str, port: int) -> None:
    # Imported late: the API module validates JWT_SECRET at import time
    from seedcall.api.main import app

    app.state.orchestrator = bot.orchestrator
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=port, log_config=None))

    async with bot:
        await asyncio.gather(bot.start(token), server.serve())


def main() -> None:
    """Bootstrap and run the Seedcall bot and API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)
    if not cfg.connector:
        logger.critical("config.yaml has no 'connector' entry; nothing to orchestrate.")
        sys.exit(1)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4-5. Collaborators and orchestrator.
    connector = load_connector(cfg.connector, cfg)
    orchestrator = SessionOrchestrator(
        engine,
        cfg.seeding,
        connector,
        WhitelistLedger(engine),
        AuditLogSink(engine),
    )

    # 6. Bot.
    bot = SeedcallBot(cfg=cfg, engine=engine, connector=connector, orchestrator=orchestrator)

    # 7. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Seedcall bot and API on port %d…", cfg.dashboard_port)
    try:
        asyncio.run(_serve(bot, token, cfg.dashboard_port))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
