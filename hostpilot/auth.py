"""API key authentication dependency."""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, Security, WebSocket, status
from fastapi.security import APIKeyHeader

from hostpilot.config import Settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _key_matches(cfg: Settings, supplied: str | None) -> bool:
    if not cfg.hostpilot_api_key:
        return True
    return supplied is not None and secrets.compare_digest(supplied, cfg.hostpilot_api_key)


async def require_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """FastAPI dependency that enforces X-API-Key header.

    If HOSTPILOT_API_KEY is blank the check is skipped (dev convenience).
    """
    cfg: Settings = request.app.state.settings
    if not cfg.hostpilot_api_key:
        return "no-key-configured"
    if not _key_matches(cfg, api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return api_key


def websocket_authorized(websocket: WebSocket) -> bool:
    """Header or ``api_key`` query parameter, same rule as the REST dependency."""
    cfg: Settings = websocket.app.state.settings
    supplied = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
    return _key_matches(cfg, supplied)
