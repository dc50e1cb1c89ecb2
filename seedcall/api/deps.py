"""
seedcall.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from seedcall.database.engine import create_db_engine
from seedcall.services.orchestrator import SessionOrchestrator

JWT_ALGORITHM = "HS256"

# Dashboard tokens are HS256-signed; anything shorter is brute-forceable
_MIN_SECRET_LENGTH = 32
_WEAK_SECRETS = frozenset({"", "dev", "secret", "change-me", "seedcall-dev-secret-change-me"})


def _load_jwt_secret() -> str:
    """Read ``JWT_SECRET`` and refuse to start the API with a weak one."""
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET is not set; the seeding API cannot verify admin tokens. "
            "Put a random value of at least "
            f"{_MIN_SECRET_LENGTH} characters in .env (see .env.example)."
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(f"JWT_SECRET '{secret}' is a known weak default; replace it.")
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars, need {_MIN_SECRET_LENGTH})."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


def get_orchestrator(request: Request) -> SessionOrchestrator:
    """The orchestrator attached by the process entry point; 503 without one."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, "Seeding service not initialized"
        )
    return orchestrator


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Decode the bearer token; 401 when absent or invalid, 403 for non-admins."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token") from None
    if not claims.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return claims


AdminUser = Annotated[dict, Depends(get_current_admin)]
Orchestrator = Annotated[SessionOrchestrator, Depends(get_orchestrator)]
