"""
seedcall.services.whitelist_service — Default Reward Ledger
============================================================

Stores seeding rewards as time-limited :class:`WhitelistEntry` rows.
Every entry carries the session tag (``seeding-session:<id>``) so one
session's grants can be revoked together.

The sync functions do the DB work; :class:`WhitelistLedger` is the async
adapter the reward engine talks to.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from seedcall.constants import SYSTEM_ACTOR
from seedcall.database.engine import get_session, run_db
from seedcall.database.models import WhitelistEntry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sync helpers (run via run_db)
# ---------------------------------------------------------------------------
def grant_entry(
    engine,
    identity: str,
    duration_minutes: int,
    tag: str,
    metadata: dict[str, Any] | None = None,
) -> WhitelistEntry:
    meta = dict(metadata or {})
    now = datetime.now(UTC)
    entry = WhitelistEntry(
        identity=identity,
        username=meta.get("username"),
        tag=tag,
        reason=f"seeding-{meta['tier']}" if meta.get("tier") else "seeding",
        duration_minutes=duration_minutes,
        granted_by=meta.get("granted_by") or SYSTEM_ACTOR,
        granted_at=now,
        expires_at=now + timedelta(minutes=duration_minutes),
        revoked=False,
        metadata_=meta or None,
    )
    with Session(engine, expire_on_commit=False) as session:
        session.add(entry)
        session.commit()
        session.refresh(entry)
        session.expunge(entry)
    return entry


def revoke_entries(
    engine,
    tag: str,
    revoked_by: str,
    reason: str | None = None,
    identity: str | None = None,
) -> int:
    """Revoke unrevoked entries with *tag* (optionally for one identity)."""
    query = update(WhitelistEntry).where(
        WhitelistEntry.tag == tag,
        WhitelistEntry.revoked.is_(False),
    )
    if identity is not None:
        query = query.where(WhitelistEntry.identity == identity)

    with get_session(engine) as session:
        result = session.execute(query.values(
            revoked=True,
            revoked_by=revoked_by,
            revoked_reason=reason,
            revoked_at=datetime.now(UTC),
        ))
        count = result.rowcount
    return count


def list_entries(engine, tag: str, *, include_revoked: bool = True) -> list[WhitelistEntry]:
    query = select(WhitelistEntry).where(WhitelistEntry.tag == tag)
    if not include_revoked:
        query = query.where(WhitelistEntry.revoked.is_(False))
    with Session(engine, expire_on_commit=False) as session:
        rows = list(session.scalars(query.order_by(WhitelistEntry.id)).all())
        for row in rows:
            session.expunge(row)
        return rows


# ---------------------------------------------------------------------------
# Async ledger
# ---------------------------------------------------------------------------
class WhitelistLedger:
    """Reward ledger backed by the ``whitelist_entries`` table."""

    def __init__(self, engine) -> None:
        self.engine = engine

    async def grant(
        self,
        identity: str,
        duration_minutes: int,
        tag: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = await run_db(grant_entry, self.engine, identity, duration_minutes, tag, metadata)
        logger.info(
            "Whitelist entry #%d granted to %s for %d min (%s)",
            entry.id, identity, duration_minutes, tag,
        )

    async def revoke_by_tag(self, tag: str, revoked_by: str, reason: str | None) -> int:
        count = await run_db(revoke_entries, self.engine, tag, revoked_by, reason)
        logger.info("Revoked %d whitelist entr(ies) tagged %s", count, tag)
        return count

    async def revoke_by_tag_and_identity(
        self, tag: str, identity: str, revoked_by: str, reason: str | None
    ) -> int:
        count = await run_db(
            revoke_entries, self.engine, tag, revoked_by, reason, identity=identity
        )
        logger.info("Revoked %d whitelist entr(ies) tagged %s for %s", count, tag, identity)
        return count
