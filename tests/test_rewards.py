"""
tests/test_rewards.py — Reward Calculus Tests
==============================================
Pure-function tests for minute conversion, duration labels and the
per-tier reward configuration.
"""

from __future__ import annotations

import pytest

from seedcall.engine.rewards import (
    RewardSpec,
    RewardTier,
    RewardUnit,
    TierRewards,
    format_duration,
    reward_to_minutes,
)


class TestRewardToMinutes:
    @pytest.mark.parametrize("value,unit,expected", [
        (30, "minutes", 30),
        (2, "hours", 120),
        (3, "days", 4320),
        (1, "months", 43200),
        (0, "days", 0),
    ])
    def test_conversion(self, value, unit, expected):
        assert reward_to_minutes(value, unit) == expected

    def test_accepts_enum(self):
        assert reward_to_minutes(1, RewardUnit.HOURS) == 60

    def test_unknown_unit_rejected(self):
        with pytest.raises(ValueError):
            reward_to_minutes(1, "weeks")

    def test_negative_value_rejected(self):
        with pytest.raises(ValueError):
            reward_to_minutes(-1, "days")


class TestFormatDuration:
    @pytest.mark.parametrize("minutes,expected", [
        (0, "0min"),
        (45, "45min"),
        (60, "1hr"),
        (90, "1.5hr"),
        (1440, "1d"),
        (4320, "3d"),
        (43200, "1mo"),
        (64800, "1.5mo"),
    ])
    def test_labels(self, minutes, expected):
        assert format_duration(minutes) == expected

    def test_rounds_to_one_decimal(self):
        # 100 minutes = 1.666… hours
        assert format_duration(100) == "1.7hr"

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            format_duration(-5)


class TestRewardSpec:
    def test_minutes_and_label(self):
        spec = RewardSpec(7, "days")
        assert spec.unit is RewardUnit.DAYS
        assert spec.minutes == 10080
        assert spec.label == "7d"

    def test_zero_value_rejected(self):
        with pytest.raises(ValueError):
            RewardSpec(0, RewardUnit.HOURS)


class TestTierRewards:
    def test_total_minutes_sums_configured_tiers(self):
        rewards = TierRewards(
            switch=RewardSpec(1, "days"),
            playtime=RewardSpec(2, "hours"),
            playtime_threshold_minutes=30,
            completion=RewardSpec(1, "days"),
        )
        assert rewards.total_minutes() == 1440 + 120 + 1440
        assert rewards.any()

    def test_empty_configuration(self):
        rewards = TierRewards()
        assert not rewards.any()
        assert rewards.total_minutes() == 0
        assert rewards.get(RewardTier.SWITCH) is None

    def test_playtime_requires_threshold(self):
        with pytest.raises(ValueError, match="playtime_threshold_minutes"):
            TierRewards(playtime=RewardSpec(1, "hours"))

    def test_get_by_string_tier(self):
        spec = RewardSpec(5, "minutes")
        assert TierRewards(completion=spec).get("completion") == spec
