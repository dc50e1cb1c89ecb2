"""
tests/test_session_service.py — Session Ledger Tests
=====================================================
Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from seedcall.config import SeedingSettings
from seedcall.database.models import SeedingSession, SessionStatus
from seedcall.engine.rewards import RewardSpec, TierRewards
from seedcall.services import participant_service, session_service
from seedcall.services.errors import ActiveSessionExistsError
from seedcall.services.session_service import SessionRequest, validate_request


@pytest.fixture
def engine(db_engine):
    return db_engine


def _request(**overrides) -> SessionRequest:
    fields = {
        "target_node_id": "server2",
        "player_threshold": 50,
        "rewards": TierRewards(
            switch=RewardSpec(1, "days"),
            completion=RewardSpec(12, "hours"),
        ),
    }
    fields.update(overrides)
    return SessionRequest(**fields)


def _create(engine, **overrides) -> SeedingSession:
    return session_service.create_session(
        engine, _request(**overrides),
        source_node_ids=["server1", "server3"],
        target_node_name="Server 2",
        started_by="1234",
        started_by_name="drew",
    )


# ===========================================================================
# Validation
# ===========================================================================
class TestValidateRequest:
    def test_accepts_valid_request(self):
        validate_request(_request(), SeedingSettings())

    @pytest.mark.parametrize("threshold", [9, 100])
    def test_threshold_out_of_range(self, threshold):
        with pytest.raises(ValueError, match="between 10 and 99"):
            validate_request(_request(player_threshold=threshold), SeedingSettings())

    def test_test_mode_allows_low_threshold(self):
        validate_request(
            _request(player_threshold=1, test_mode=True, source_node_ids=["server1"]),
            SeedingSettings(),
        )

    def test_test_mode_requires_sources(self):
        with pytest.raises(ValueError, match="source server"):
            validate_request(_request(player_threshold=5, test_mode=True), SeedingSettings())

    def test_requires_a_reward_tier(self):
        with pytest.raises(ValueError, match="reward tier"):
            validate_request(_request(rewards=TierRewards()), SeedingSettings())


# ===========================================================================
# Create / single-active rule
# ===========================================================================
class TestCreateSession:
    def test_creates_active_session(self, engine):
        row = _create(engine)
        assert row.id is not None
        assert row.status == SessionStatus.ACTIVE
        assert row.source_node_ids == ["server1", "server3"]
        assert row.switch_reward_value == 1
        assert row.switch_reward_unit == "days"
        assert row.playtime_reward_value is None
        assert row.rewards.completion == RewardSpec(12, "hours")
        assert not row.is_test_mode

    def test_second_active_session_rejected(self, engine):
        first = _create(engine)
        with pytest.raises(ActiveSessionExistsError) as exc_info:
            _create(engine, target_node_id="server3")
        assert exc_info.value.session_id == first.id

    def test_unique_index_blocks_concurrent_insert(self, engine):
        _create(engine)
        with Session(engine) as session:
            session.add(SeedingSession(
                target_node_id="server3", player_threshold=20, status="active",
            ))
            with pytest.raises(IntegrityError):
                session.commit()

    def test_new_session_allowed_after_close(self, engine):
        first = _create(engine)
        session_service.close_session(engine, first.id)
        second = _create(engine)
        assert second.id != first.id
        assert session_service.get_active_session(engine).id == second.id


# ===========================================================================
# Status transitions
# ===========================================================================
class TestFinishSession:
    def test_close_records_reason(self, engine):
        row = _create(engine)
        closed = session_service.close_session(engine, row.id, "threshold_reached")
        assert closed.status == SessionStatus.COMPLETED
        assert closed.closed_at is not None
        assert closed.metadata_["close_reason"] == "threshold_reached"
        assert closed.metadata_["test_mode"] is False
        assert not session_service.has_active_session(engine)

    def test_close_is_noop_when_not_active(self, engine):
        row = _create(engine)
        session_service.cancel_session(engine, row.id, "wrong server")
        assert session_service.close_session(engine, row.id) is None
        stored = session_service.get_seeding_session(engine, row.id)
        assert stored.status == SessionStatus.CANCELLED
        assert stored.metadata_["cancellation_reason"] == "wrong server"

    def test_unknown_session(self, engine):
        assert session_service.close_session(engine, 999) is None


# ===========================================================================
# Counters & stats
# ===========================================================================
class TestCounters:
    def test_rewards_counter_never_negative(self, engine):
        row = _create(engine)
        session_service.increment_rewards_granted(engine, row.id)
        session_service.increment_rewards_granted(engine, row.id)
        session_service.decrement_rewards_granted(engine, row.id, 5)
        assert session_service.get_seeding_session(engine, row.id).rewards_granted_count == 0

    def test_reset_counter(self, engine):
        row = _create(engine)
        session_service.increment_rewards_granted(engine, row.id, 3)
        session_service.reset_rewards_granted(engine, row.id)
        assert session_service.get_seeding_session(engine, row.id).rewards_granted_count == 0

    def test_participant_count_and_stats(self, engine):
        row = _create(engine)
        participant_service.enroll_seeder(engine, row.id, "s1")
        participant_service.enroll_switcher(engine, row.id, "w1", "server1")
        participant_service.enroll_switcher(engine, row.id, "w2", "server3")

        assert session_service.refresh_participant_count(engine, row.id) == 3
        stats = session_service.session_stats(engine, row.id)
        assert stats["total"] == 3
        assert stats["seeders"] == 1
        assert stats["switchers"] == 2
        assert stats["on_source"] == 2
        assert stats["on_target"] == 1
        assert stats["switched"] == 0


# ===========================================================================
# Listing & serialization
# ===========================================================================
class TestListing:
    def test_list_sessions_newest_first_with_filter(self, engine):
        ids = []
        for _ in range(3):
            row = _create(engine)
            session_service.close_session(engine, row.id)
            ids.append(row.id)
        active = _create(engine)

        rows, total = session_service.list_sessions(engine, page=1, limit=2)
        assert total == 4
        assert [r.id for r in rows] == [active.id, ids[-1]]

        rows, total = session_service.list_sessions(engine, status="completed")
        assert total == 3
        assert all(r.status == "completed" for r in rows)

    def test_session_to_dict(self, engine):
        data = session_service.session_to_dict(_create(engine))
        assert data["metadata"] == {"test_mode": False}
        assert data["test_mode"] is False
        assert data["rewards"]["switch"]["label"] == "1d"
        assert data["rewards"]["playtime"] is None
        assert data["rewards"]["completion"]["minutes"] == 720
        assert isinstance(data["started_at"], str)

