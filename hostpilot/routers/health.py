"""Health-check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from hostpilot import __version__
from hostpilot.models.responses import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health(request: Request) -> HealthResponse:
    """Basic liveness probe (no auth required)."""
    state = request.app.state
    return HealthResponse(
        status="ok",
        version=__version__,
        servers=len(state.servers),
        terminal_sessions=len(state.terminals.registry),
        poller_running=state.poller.running,
    )
