"""
seedcall.config — YAML Configuration Loader
============================================

**Why this file exists:**
This module reads ``config.yaml`` for identity, connector and seeding
tuning values.  Secrets (``DISCORD_TOKEN``, ``DATABASE_URL``,
``JWT_SECRET``) stay in the environment / ``.env``.

Usage::

    from seedcall.config import load_config

    cfg = load_config()                           # reads ./config.yaml
    print(cfg.community_name)                     # "Seedcall Dev"
    print(cfg.seeding.min_players_for_broadcast)  # 99
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Seeding tuning: every key is optional in the YAML ``seeding:`` block
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SeedingSettings:
    """Tuning for the session orchestrator and broadcast throttle."""

    # A source node must hold at least this many players to be broadcast to
    min_players_for_broadcast: int = 99
    # Reported as each node's capacity by the node listing
    max_players_per_server: int = 100
    broadcast_reminder_minutes: int = 5
    dwell_tick_seconds: int = 60
    # Cached occupancy older than this falls back to a live roster query
    occupancy_stale_seconds: int = 300
    min_player_threshold: int = 10
    max_player_threshold: int = 99
    # None keeps on_source participants tracked for the whole session
    switcher_expiry_minutes: int | None = None

    @property
    def dwell_minutes_per_tick(self) -> int:
        return self.dwell_tick_seconds // 60

    def __post_init__(self) -> None:
        # Dwell is stored in whole minutes, so each tick must cover whole minutes
        if self.dwell_tick_seconds < 60 or self.dwell_tick_seconds % 60:
            raise ValueError(
                f"dwell_tick_seconds must be a positive multiple of 60, "
                f"got {self.dwell_tick_seconds}"
            )


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SeedcallConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    guild_id: int
    admin_role_id: int  # Discord role required for the seeding slash commands

    # Dashboard / REST API
    dashboard_port: int

    # Node connector factory, ``"package.module:factory"``
    connector: str | None = None

    seeding: SeedingSettings = field(default_factory=SeedingSettings)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def _load_seeding(raw: dict | None) -> SeedingSettings:
    if not raw:
        return SeedingSettings()
    known = set(SeedingSettings.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise KeyError(f"Unknown seeding settings: {', '.join(sorted(unknown))}")
    return SeedingSettings(**raw)


def load_config(path: str | Path = "config.yaml") -> SeedcallConfig:
    """Read *path* and return a :class:`SeedcallConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing, or the ``seeding`` block has an
        unknown key.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    return SeedcallConfig(
        community_name=raw["community_name"],
        guild_id=int(raw["guild_id"]),
        admin_role_id=int(raw["admin_role_id"]),
        dashboard_port=int(raw["dashboard_port"]),
        connector=raw.get("connector") or None,
        seeding=_load_seeding(raw.get("seeding")),
    )
