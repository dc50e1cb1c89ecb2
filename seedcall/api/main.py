"""
seedcall.api.main — FastAPI application entry point
====================================================

The seeding endpoints need the live orchestrator, so the API is served
from the bot process (``python -m seedcall.bot``), which attaches it as
``app.state.orchestrator``.  Started on its own::

    uvicorn seedcall.api.main:app --port 8000

the read-only endpoints work and the mutating ones answer 503.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from seedcall import __version__  # noqa: E402
from seedcall.api.routes.seeding import router as seeding_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    attached = getattr(app.state, "orchestrator", None) is not None
    logger.info(
        "Seedcall API started (orchestrator %s)", "attached" if attached else "not attached"
    )
    yield
    logger.info("Seedcall API shutting down")


app = FastAPI(
    title="Seedcall API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(seeding_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
