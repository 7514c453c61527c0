"""
Health check endpoints for the voice relay.

Provides:
- /health - Basic status with timestamp
- /health/ready - Readiness probe (startup finished)
- /health/live - Liveness probe (service is running)
- /health/status - Detailed status for monitoring
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from ..config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

# Startup state
_startup_complete = False
_startup_time: float | None = None


def mark_startup_complete() -> None:
    """Mark startup as complete."""
    global _startup_complete, _startup_time
    _startup_complete = True
    _startup_time = time.time()
    logger.info("Startup marked as complete")


def mark_shutdown() -> None:
    """Report not ready while shutting down."""
    global _startup_complete
    _startup_complete = False


def _uptime_seconds() -> float:
    return round(time.time() - _startup_time, 1) if _startup_time else 0


@router.get("")
async def health() -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/live")
async def liveness() -> dict[str, str]:
    """
    Liveness probe.

    Returns 200 if the service is alive.
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> dict[str, Any]:
    """
    Readiness probe.

    Returns 200 once startup is complete and sessions can be created,
    503 otherwise.
    """
    if not _startup_complete:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Startup not complete",
        )

    registry = request.app.state.registry
    if registry.active_sessions >= registry.max_sessions:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session capacity reached",
        )

    return {
        "status": "ready",
        "active_sessions": registry.active_sessions,
        "uptime_seconds": _uptime_seconds(),
    }


@router.get("/status")
async def detailed_status(request: Request) -> dict[str, Any]:
    """
    Detailed status endpoint for capacity monitoring.

    Returns session counts by phase and the configured backends.
    """
    registry = request.app.state.registry
    sessions = registry.get_all_sessions()

    phases: dict[str, int] = {}
    for session in sessions:
        phases[session.phase.value] = phases.get(session.phase.value, 0) + 1

    return {
        "status": "ready" if _startup_complete else "not_ready",
        "sessions": {
            "active": len(sessions),
            "max": registry.max_sessions,
            "idle_timeout_seconds": registry.idle_timeout_seconds,
            "by_phase": phases,
        },
        "services": {
            "stt": settings.stt_url,
            "llm": settings.llm_url,
            "tts": settings.tts_url,
        },
        "uptime_seconds": _uptime_seconds(),
    }
