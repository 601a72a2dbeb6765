"""
Health check endpoints for deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (is the lobby registry available?)
- /metrics - Lobby and game counts for monitoring
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_room_manager = None


def set_health_dependencies(room_manager=None):
    """Set dependencies for health checks."""
    global _room_manager
    _room_manager = room_manager


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
async def readiness_check():
    """
    Readiness check - can the app accept players?

    Returns 503 until the lobby registry has been wired up.
    """
    ready = _room_manager is not None
    checks = {"lobbies": {"status": "ok" if ready else "not_configured"}}

    return Response(
        content=json.dumps({
            "status": "ok" if ready else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=200 if ready else 503,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Expose lobby metrics for dashboards and alerting."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _room_manager is not None:
        rooms = _room_manager.rooms.values()
        metrics_data.update({
            "active_lobbies": len(_room_manager.rooms),
            "total_players": sum(len(r.players) for r in rooms),
            "games_in_progress": sum(
                1 for r in rooms if r.game is not None and not r.game.is_over
            ),
            "pending_cleanups": sum(
                1 for code in _room_manager.rooms if _room_manager.has_pending_cleanup(code)
            ),
        })

    return metrics_data
