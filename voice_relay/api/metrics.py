"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..observability.metrics import update_session_metrics

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics(request: Request) -> PlainTextResponse:
    """Metrics in exposition format; active sessions are read at scrape time."""
    registry = getattr(request.app.state, "registry", None)
    if registry is not None:
        update_session_metrics(registry.active_sessions)

    return PlainTextResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
