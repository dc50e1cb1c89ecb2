"""
seedcall.services.audit_service — Default Audit Sink
=====================================================

Writes seeding lifecycle actions to the ``audit_log`` table.  Audit
failures are logged and swallowed: a broken audit trail must never stop a
session from closing.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from seedcall.constants import SYSTEM_ACTOR
from seedcall.database.engine import get_session, run_db
from seedcall.database.models import AuditAction, AuditLog

logger = logging.getLogger(__name__)


def describe(action_type: str, details: dict[str, Any]) -> str:
    """Human-readable description for an audit row."""
    server = details.get("target_node_name") or details.get("target_node_id") or "Unknown Server"
    reason = details.get("reason")

    if action_type == AuditAction.SESSION_STARTED:
        return (
            f"Seeding session started for {server} "
            f"(target: {details.get('player_threshold')} players)"
        )
    if action_type == AuditAction.SESSION_CLOSED:
        return f"Seeding session closed for {server}: {reason or 'Completed'}"
    if action_type == AuditAction.SESSION_CANCELLED:
        return f"Seeding session cancelled for {server}: {reason or 'No reason provided'}"
    if action_type == AuditAction.REWARDS_REVERSED:
        return f"Seeding rewards reversed for {server}: {reason or 'No reason provided'}"
    if action_type == AuditAction.PARTICIPANT_REWARDS_REVOKED:
        player = details.get("username") or details.get("player_id") or "Unknown"
        return (
            f"Participant rewards revoked ({player}) for {server} session: "
            f"{reason or 'No reason provided'}"
        )
    return f"Seeding session action: {action_type}"


# ---------------------------------------------------------------------------
# Sync helpers (run via run_db)
# ---------------------------------------------------------------------------
def write_audit_row(
    engine,
    action_type: str,
    actor_id: str,
    target_id: str | None,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    with get_session(engine) as session:
        session.add(AuditLog(
            action_type=action_type,
            actor_type="system" if actor_id == SYSTEM_ACTOR else "discord_user",
            actor_id=actor_id,
            target_type="seeding_session",
            target_id=target_id,
            description=description,
            metadata_=metadata,
        ))


def list_audit_rows(engine, target_id: str | None = None, limit: int = 50) -> list[AuditLog]:
    query = select(AuditLog).order_by(AuditLog.id.desc()).limit(limit)
    if target_id is not None:
        query = query.where(AuditLog.target_id == target_id)
    with Session(engine, expire_on_commit=False) as session:
        rows = list(session.scalars(query).all())
        for row in rows:
            session.expunge(row)
        return rows


# ---------------------------------------------------------------------------
# Async sink
# ---------------------------------------------------------------------------
class AuditLogSink:
    """Audit sink backed by the ``audit_log`` table."""

    def __init__(self, engine) -> None:
        self.engine = engine

    async def record(
        self,
        action_type: str,
        actor_id: str,
        target_id: str | None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            await run_db(
                write_audit_row,
                self.engine,
                action_type,
                actor_id,
                target_id,
                description or describe(action_type, metadata or {}),
                metadata,
            )
        except Exception:
            logger.exception("Failed to write audit row %s for %s", action_type, target_id)
