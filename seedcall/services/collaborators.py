"""
seedcall.services.collaborators — External Collaborator Contracts
==================================================================

The orchestrator talks to the outside world only through these
protocols.  A *node connector* (one object covering roster reads,
transport and its own lifecycle) is supplied by the deployment and
loaded from ``config.yaml``::

    connector: "my_squad_rcon.connector:build"

The factory receives the :class:`~seedcall.config.SeedcallConfig` and
returns a :class:`NodeConnector`.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from seedcall.engine.events import RosterEvent

if TYPE_CHECKING:
    from seedcall.config import SeedcallConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PresentPlayer:
    node_id: str
    player_id: str
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class NodeInfo:
    id: str
    name: str
    connected: bool


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------
@runtime_checkable
class RosterFeed(Protocol):
    def present_players(self) -> list[PresentPlayer]: ...

    def node_occupancy(self, node_id: str) -> int: ...


@runtime_checkable
class Transport(Protocol):
    def list_nodes(self) -> list[NodeInfo]: ...

    async def broadcast_text(self, node_id: str, message: str) -> None: ...

    async def direct_message(self, node_id: str, player_id: str, message: str) -> None: ...


class RewardLedger(Protocol):
    async def grant(
        self,
        identity: str,
        duration_minutes: int,
        tag: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def revoke_by_tag(self, tag: str, revoked_by: str, reason: str | None) -> int: ...

    async def revoke_by_tag_and_identity(
        self, tag: str, identity: str, revoked_by: str, reason: str | None
    ) -> int: ...


class AuditSink(Protocol):
    async def record(
        self,
        action_type: str,
        actor_id: str,
        target_id: str | None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


EventSink = Callable[[RosterEvent], Any]


@runtime_checkable
class NodeConnector(RosterFeed, Transport, Protocol):
    async def start(self, sink: EventSink) -> None: ...

    async def stop(self) -> None: ...


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------
def load_connector(spec: str, cfg: SeedcallConfig) -> NodeConnector:
    """Import ``"package.module:factory"`` and call ``factory(cfg)``.

    Raises
    ------
    ValueError
        If *spec* is not in ``module:attribute`` form.
    TypeError
        If the factory's result lacks the connector methods.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Connector must be 'module:factory', got {spec!r}")

    factory = getattr(importlib.import_module(module_name), attr)
    connector = factory(cfg)
    if not isinstance(connector, NodeConnector):
        raise TypeError(f"{spec} did not return a node connector")
    logger.info("Node connector loaded from %s", spec)
    return connector
