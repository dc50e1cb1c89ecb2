"""
tests/test_ledgers.py — Whitelist Ledger & Audit Sink
======================================================
The default reward ledger and audit sink, backed by SQLite.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import run_async
from seedcall.constants import SYSTEM_ACTOR, session_tag
from seedcall.database.models import AuditAction
from seedcall.services.audit_service import AuditLogSink, describe, list_audit_rows
from seedcall.services.whitelist_service import WhitelistLedger, list_entries


@pytest.fixture
def engine(db_engine):
    return db_engine


class TestWhitelistLedger:
    def test_grant_sets_expiry_and_reason(self, engine):
        ledger = WhitelistLedger(engine)
        run_async(ledger.grant("765", 1440, session_tag(3), {"tier": "switch", "username": "Al"}))

        (entry,) = list_entries(engine, session_tag(3))
        assert entry.reason == "seeding-switch"
        assert entry.username == "Al"
        assert entry.granted_by == SYSTEM_ACTOR
        assert entry.expires_at - entry.granted_at == timedelta(minutes=1440)
        assert not entry.revoked

    def test_revoke_by_tag_and_identity(self, engine):
        ledger = WhitelistLedger(engine)

        async def _inner():
            await ledger.grant("a", 60, session_tag(1))
            await ledger.grant("a", 60, session_tag(1))
            await ledger.grant("b", 60, session_tag(1))
            await ledger.grant("a", 60, session_tag(2))
            one = await ledger.revoke_by_tag_and_identity(session_tag(1), "a", "1234", "abuse")
            rest = await ledger.revoke_by_tag(session_tag(1), "1234", None)
            again = await ledger.revoke_by_tag(session_tag(1), "1234", None)
            return one, rest, again

        assert run_async(_inner()) == (2, 1, 0)
        assert list_entries(engine, session_tag(1), include_revoked=False) == []
        assert len(list_entries(engine, session_tag(2), include_revoked=False)) == 1


class TestAuditSink:
    def test_record_writes_row(self, engine):
        sink = AuditLogSink(engine)
        run_async(sink.record(
            AuditAction.SESSION_CLOSED.value, SYSTEM_ACTOR, "Server 2",
            metadata={"target_node_name": "Server 2", "reason": "threshold_reached"},
        ))
        (row,) = list_audit_rows(engine)
        assert row.actor_type == "system"
        assert row.target_type == "seeding_session"
        assert row.description == "Seeding session closed for Server 2: threshold_reached"

    def test_failures_are_swallowed(self, engine):
        sink = AuditLogSink(engine)
        with patch(
            "seedcall.services.audit_service.write_audit_row",
            side_effect=RuntimeError("db down"),
        ):
            run_async(sink.record("seeding_session_started", "1234", "Server 2", "x"))
        assert list_audit_rows(engine) == []

    @pytest.mark.parametrize("action,details,expected", [
        (AuditAction.SESSION_STARTED, {"target_node_id": "server2", "player_threshold": 50},
         "Seeding session started for server2 (target: 50 players)"),
        (AuditAction.SESSION_CANCELLED, {},
         "Seeding session cancelled for Unknown Server: No reason provided"),
        (AuditAction.PARTICIPANT_REWARDS_REVOKED,
         {"target_node_name": "Server 2", "player_id": "765", "reason": "alt"},
         "Participant rewards revoked (765) for Server 2 session: alt"),
        ("something_else", {}, "Seeding session action: something_else"),
    ])
    def test_describe(self, action, details, expected):
        assert describe(action, details) == expected
