"""
Seedcall — Cross-Server Seeding Sessions for Game Communities
==============================================================
Runs one seeding session at a time: asks players on busy source servers
to move to a target server that needs players, tracks who switched and
how long they stayed, and grants tiered whitelist rewards.

Package layout::

    seedcall/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Prefixes, ledger tags, embed colors
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Sessions, participants, whitelist, audit log
    ├── engine/
    │   ├── rewards.py     # Reward calculus (value + unit → minutes → label)
    │   ├── events.py      # Roster events from the node feeds
    │   ├── tracker.py     # In-memory switcher index
    │   └── messages.py    # Outbound in-game message text
    ├── services/
    │   ├── session_service.py      # Session ledger
    │   ├── participant_service.py  # Participant ledger
    │   ├── reward_service.py       # Reward engine (grant / reverse)
    │   ├── throttle.py             # Occupancy-based broadcast throttle
    │   ├── orchestrator.py         # The session state machine
    │   ├── collaborators.py        # Connector / ledger / audit contracts
    │   ├── whitelist_service.py    # Default reward ledger
    │   ├── audit_service.py        # Default audit sink
    │   └── embeds.py               # Discord status embed
    ├── api/
    │   ├── main.py        # FastAPI app
    │   └── routes/        # Seeding admin endpoints
    └── bot/
        ├── core.py        # Bot subclass, orchestrator wiring
        └── cogs/
            └── seeding.py # /seeding-status, /seeding-close, /seeding-cancel
"""

__version__ = "0.1.0"
