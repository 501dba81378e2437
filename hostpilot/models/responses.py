"""Common API response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from hostpilot.models.commands import ConnectionState
from hostpilot.models.metrics import MetricsHistoryPoint


class HealthResponse(BaseModel):
    status: str
    version: str
    servers: int = 0
    terminal_sessions: int = 0
    poller_running: bool = False


class ServerStatusResponse(BaseModel):
    server_id: str
    status: ConnectionState
    error: Optional[str] = None
    duration: float = 0.0


class MetricsResponse(BaseModel):
    server_id: str
    timestamp: datetime
    cached: bool = False
    metrics: dict[str, Any]


class MetricsHistoryResponse(BaseModel):
    server_id: str
    hours: float
    interval_minutes: int
    points: list[MetricsHistoryPoint]


class InstallRequest(BaseModel):
    version: Optional[str] = None
