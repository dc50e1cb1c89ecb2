"""
seedcall.api.routes.seeding — Seeding session endpoints (JWT‑protected)
========================================================================

Read endpoints query the ledgers directly; anything that changes a
session goes through the orchestrator so it is serialized with roster
events.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from seedcall.api.deps import AdminUser, Orchestrator, get_current_admin, get_engine
from seedcall.engine.rewards import RewardSpec, RewardUnit, TierRewards
from seedcall.services import participant_service, session_service
from seedcall.services.errors import (
    ActiveSessionExistsError,
    NodeNotConnectedError,
    SessionStillActiveError,
)
from seedcall.services.session_service import (
    SessionRequest,
    participant_to_dict,
    session_to_dict,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/seeding",
    tags=["seeding"],
    dependencies=[Depends(get_current_admin)],
)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RewardInput(BaseModel):
    value: int = Field(gt=0)
    unit: RewardUnit


class SessionCreate(BaseModel):
    target_node_id: str = Field(min_length=1)
    player_threshold: int
    switch_reward: RewardInput | None = None
    playtime_reward: RewardInput | None = None
    playtime_threshold_minutes: int | None = Field(default=None, gt=0)
    completion_reward: RewardInput | None = None
    test_mode: bool = False
    source_node_ids: list[str] = Field(default_factory=list)
    custom_message: str | None = Field(default=None, max_length=500)


class ReasonBody(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


def _http_error(exc: Exception) -> HTTPException:
    """Map a seeding exception onto an HTTP error."""
    if isinstance(exc, ActiveSessionExistsError):
        return HTTPException(status.HTTP_409_CONFLICT, str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status.HTTP_404_NOT_FOUND, str(exc))
    if isinstance(exc, (NodeNotConnectedError, SessionStillActiveError, ValueError)):
        return HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


def _spec(reward: RewardInput | None) -> RewardSpec | None:
    return RewardSpec(reward.value, reward.unit) if reward else None


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------
@router.get("/nodes")
def list_nodes(orchestrator: Orchestrator):
    return [
        {
            "id": node.id,
            "name": node.name,
            "connected": node.connected,
            "player_count": node.occupancy,
            "qualifying": node.qualifying,
            "max_players": node.max_players,
        }
        for node in orchestrator.list_available_nodes()
    ]


# ---------------------------------------------------------------------------
# Sessions — read
# ---------------------------------------------------------------------------
@router.get("/sessions")
def list_sessions(
    engine: Engine = Depends(get_engine),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: str | None = Query(None, alias="status"),
):
    rows, total = session_service.list_sessions(
        engine, page=page, limit=limit, status=status_filter
    )
    return {
        "sessions": [session_to_dict(row) for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/sessions/active")
def get_active(engine: Engine = Depends(get_engine)):
    row = session_service.get_active_session(engine)
    if row is None:
        return {"session": None}
    return {
        "session": session_to_dict(row),
        "stats": session_service.session_stats(engine, row.id),
    }


@router.get("/sessions/{session_id}")
def get_session_detail(session_id: int, engine: Engine = Depends(get_engine)):
    row = session_service.get_seeding_session(engine, session_id)
    if row is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Session {session_id} not found")
    return {
        "session": session_to_dict(row),
        "stats": session_service.session_stats(engine, session_id),
    }


@router.get("/sessions/{session_id}/participants")
def list_participants(
    session_id: int,
    engine: Engine = Depends(get_engine),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status_filter: str | None = Query(None, alias="status"),
    participant_type: str | None = Query(None, alias="type"),
    include_on_source: bool = False,
):
    if session_service.get_seeding_session(engine, session_id) is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Session {session_id} not found")
    rows, total = participant_service.list_participants(
        engine,
        session_id,
        page=page,
        limit=limit,
        status=status_filter,
        participant_type=participant_type,
        include_on_source=include_on_source,
    )
    return {
        "participants": [participant_to_dict(row) for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/sessions/{session_id}/close-preview")
async def close_preview(session_id: int, orchestrator: Orchestrator):
    try:
        preview = await orchestrator.get_close_preview(session_id)
    except LookupError as exc:
        raise _http_error(exc)
    return {
        "session_id": preview.session_id,
        "participants_to_reward": preview.participants_to_reward,
        "completion_reward_minutes": preview.completion_reward_minutes,
        "completion_reward": preview.completion_reward_label,
        "total_minutes": preview.total_minutes,
        "total": preview.total_label,
    }


# ---------------------------------------------------------------------------
# Sessions — write
# ---------------------------------------------------------------------------
@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(body: SessionCreate, admin: AdminUser, orchestrator: Orchestrator):
    try:
        rewards = TierRewards(
            switch=_spec(body.switch_reward),
            playtime=_spec(body.playtime_reward),
            playtime_threshold_minutes=body.playtime_threshold_minutes,
            completion=_spec(body.completion_reward),
        )
        request = SessionRequest(
            target_node_id=body.target_node_id,
            player_threshold=body.player_threshold,
            rewards=rewards,
            test_mode=body.test_mode,
            source_node_ids=tuple(body.source_node_ids),
            custom_message=body.custom_message,
        )
        session_service.validate_request(request, orchestrator.settings)
        row = await orchestrator.create_session(
            request, str(admin.get("sub")), admin.get("username"),
        )
    except (ActiveSessionExistsError, NodeNotConnectedError, ValueError) as exc:
        raise _http_error(exc)

    logger.info("Admin %s started seeding session #%d", admin.get("username"), row.id)
    return {"session": session_to_dict(row)}


@router.post("/sessions/{session_id}/close")
async def close_session(session_id: int, orchestrator: Orchestrator):
    try:
        result = await orchestrator.close_session(session_id, "manual")
    except LookupError as exc:
        raise _http_error(exc)
    return {
        "performed": result.performed,
        "message": result.message,
        "rewards_granted": result.rewards_granted,
    }


@router.post("/sessions/{session_id}/cancel")
async def cancel_session(
    session_id: int, body: ReasonBody, admin: AdminUser, orchestrator: Orchestrator
):
    try:
        result = await orchestrator.cancel_session(
            session_id, str(admin.get("sub")), body.reason
        )
    except LookupError as exc:
        raise _http_error(exc)
    return {"performed": result.performed, "message": result.message}


@router.post("/sessions/{session_id}/reverse-rewards")
async def reverse_rewards(
    session_id: int, body: ReasonBody, admin: AdminUser, orchestrator: Orchestrator
):
    try:
        result = await orchestrator.reverse_session_rewards(
            session_id, str(admin.get("sub")), body.reason or "Manual reversal"
        )
    except (LookupError, SessionStillActiveError) as exc:
        raise _http_error(exc)
    return {
        "revoked_count": result.revoked_count,
        "participants_affected": result.participants_affected,
        "message": result.message,
    }


@router.post("/sessions/{session_id}/participants/{participant_id}/revoke-rewards")
async def revoke_participant_rewards(
    session_id: int,
    participant_id: int,
    body: ReasonBody,
    admin: AdminUser,
    orchestrator: Orchestrator,
):
    try:
        result = await orchestrator.reverse_participant_rewards(
            session_id, participant_id, str(admin.get("sub")),
            body.reason or "Manual revocation",
        )
    except (LookupError, SessionStillActiveError) as exc:
        raise _http_error(exc)
    return {
        "revoked_count": result.revoked_count,
        "rewards_cleared": result.tiers_cleared,
        "message": result.message,
    }
