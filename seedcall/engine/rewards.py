"""
seedcall.engine.rewards — Reward Calculus
==========================================

Pure functions converting a reward specification (value + unit) into a
canonical minute count and a short human-readable label.
No Discord I/O, no DB I/O.

Every duration shown to players or operators goes through
:func:`format_duration`.

    >>> reward_to_minutes(3, "days")
    4320
    >>> format_duration(90)
    '1.5hr'
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = [
    "RewardSpec",
    "RewardTier",
    "RewardUnit",
    "TierRewards",
    "format_duration",
    "reward_to_minutes",
]


class RewardUnit(enum.StrEnum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    MONTHS = "months"


class RewardTier(enum.StrEnum):
    """The three independently configured reward categories."""
    SWITCH = "switch"
    PLAYTIME = "playtime"
    COMPLETION = "completion"


# A month is a fixed 30-day block
MINUTES_PER_UNIT: dict[RewardUnit, int] = {
    RewardUnit.MINUTES: 1,
    RewardUnit.HOURS: 60,
    RewardUnit.DAYS: 60 * 24,
    RewardUnit.MONTHS: 60 * 24 * 30,
}

# Coarsest first; format_duration walks this list top-down
_DISPLAY_UNITS: tuple[tuple[str, int], ...] = (
    ("mo", MINUTES_PER_UNIT[RewardUnit.MONTHS]),
    ("d", MINUTES_PER_UNIT[RewardUnit.DAYS]),
    ("hr", MINUTES_PER_UNIT[RewardUnit.HOURS]),
    ("min", 1),
)


def reward_to_minutes(value: int, unit: RewardUnit | str) -> int:
    """Convert ``(value, unit)`` into whole minutes.

    Raises
    ------
    ValueError
        If *unit* is not a known :class:`RewardUnit` or *value* is negative.
    """
    if value < 0:
        raise ValueError(f"Reward value must not be negative: {value}")
    return int(round(value * MINUTES_PER_UNIT[RewardUnit(unit)]))


def _trim(number: float) -> str:
    rounded = round(number, 1)
    if rounded == int(rounded):
        return str(int(rounded))
    return f"{rounded:.1f}"


def format_duration(minutes: int | float) -> str:
    """Label *minutes* with the coarsest unit that keeps the number ≥ 1.

    90 → ``"1.5hr"``, 4320 → ``"3d"``, 43200 → ``"1mo"``, 0 → ``"0min"``.
    Non-integral numbers are rounded to one decimal place.
    """
    if minutes < 0:
        raise ValueError(f"Duration must not be negative: {minutes}")
    for label, size in _DISPLAY_UNITS:
        if minutes >= size:
            return f"{_trim(minutes / size)}{label}"
    return f"{_trim(minutes)}min"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RewardSpec:
    """One tier's configured reward, e.g. ``RewardSpec(7, RewardUnit.DAYS)``."""

    value: int
    unit: RewardUnit

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit", RewardUnit(self.unit))
        if self.value <= 0:
            raise ValueError(f"Reward value must be positive: {self.value}")

    @property
    def minutes(self) -> int:
        return reward_to_minutes(self.value, self.unit)

    @property
    def label(self) -> str:
        return format_duration(self.minutes)


@dataclass(frozen=True, slots=True)
class TierRewards:
    """Reward configuration for all three tiers of a session."""

    switch: RewardSpec | None = None
    playtime: RewardSpec | None = None
    playtime_threshold_minutes: int | None = None
    completion: RewardSpec | None = None

    def __post_init__(self) -> None:
        if self.playtime is not None and not self.playtime_threshold_minutes:
            raise ValueError("Playtime reward requires playtime_threshold_minutes")

    def get(self, tier: RewardTier) -> RewardSpec | None:
        return getattr(self, RewardTier(tier).value)

    def any(self) -> bool:
        return any(self.get(tier) is not None for tier in RewardTier)

    def total_minutes(self) -> int:
        """Maximum reward one participant can earn across all tiers."""
        return sum(
            spec.minutes for tier in RewardTier
            if (spec := self.get(tier)) is not None
        )
