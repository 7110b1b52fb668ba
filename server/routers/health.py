"""
Health check and room listing endpoints.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
- /metrics - Room and game counts for monitoring
- /api/rooms - Open rooms with their participants
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Response
from pydantic import BaseModel

from game import GameStage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None


def set_health_dependencies(room_manager=None):
    """Set dependencies for health checks."""
    global _room_manager
    _room_manager = room_manager


class ParticipantSummary(BaseModel):
    id: str
    name: str
    is_host: bool
    connected: bool


class RoomSummary(BaseModel):
    room_id: str
    stage: str
    participants: list[ParticipantSummary]
    jokers: int
    current_player_id: Optional[str] = None


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check(response: Response):
    """
    Readiness check - can the app handle requests?

    Returns 503 until the room registry has been wired up.
    """
    ready = _room_manager is not None
    if not ready:
        response.status_code = 503
    return {
        "status": "ok" if ready else "starting",
        "checks": {"room_registry": {"status": "ok" if ready else "not_configured"}},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/metrics")
async def metrics():
    """Expose room and game counts for dashboards and alerting."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        rooms = _room_manager.rooms.values()
        metrics_data.update({
            "active_rooms": len(rooms),
            "total_participants": sum(len(r.players) for r in rooms),
            "connected_participants": sum(
                1 for r in rooms for p in r.players.values() if p.connected
            ),
            "games_in_progress": sum(1 for r in rooms if r.game_in_progress()),
        })

    return metrics_data


@router.get("/api/rooms", response_model=list[RoomSummary])
async def list_rooms():
    """List open rooms. Hands and deck contents are never exposed here."""
    if _room_manager is None:
        return []

    summaries = []
    for room in _room_manager.rooms.values():
        game = room.game
        current = game.current_player() if game and game.stage == GameStage.PLAYING else None
        summaries.append(RoomSummary(
            room_id=room.code,
            stage=game.stage.value if game else GameStage.LOBBY.value,
            participants=[ParticipantSummary(**p) for p in room.player_list()],
            jokers=game.jokers if game else room.settings["jokers"],
            current_player_id=current.id if current else None,
        ))
    return summaries
