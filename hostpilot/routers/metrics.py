"""Metrics snapshot and history endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query

from hostpilot.auth import require_api_key
from hostpilot.config import Settings
from hostpilot.deps import get_metrics_store, get_sampler, get_server, get_settings
from hostpilot.models.responses import MetricsHistoryResponse, MetricsResponse
from hostpilot.models.servers import ServerRecord
from hostpilot.services.metrics_sampler import MetricsSampler
from hostpilot.services.store import MetricsStore, bucket_minutes

router = APIRouter(
    prefix="/servers/{server_id}/metrics",
    tags=["metrics"],
    dependencies=[Depends(require_api_key)],
)


async def _fresh_sample(
    server: ServerRecord, sampler: MetricsSampler, store: MetricsStore,
) -> MetricsResponse:
    record = await sampler.sample(server.credential())
    sample = store.append(server.id, record)
    return MetricsResponse(
        server_id=server.id, timestamp=sample.timestamp, metrics=record.to_api(),
    )


@router.get("", response_model=MetricsResponse)
async def current_metrics(
    server: ServerRecord = Depends(get_server),
    sampler: MetricsSampler = Depends(get_sampler),
    store: MetricsStore = Depends(get_metrics_store),
    cfg: Settings = Depends(get_settings),
) -> MetricsResponse:
    """Latest stored sample when recent enough, otherwise sample now."""
    latest = store.latest(server.id)
    if latest is not None:
        age = (datetime.now(timezone.utc) - latest.timestamp).total_seconds()
        if age < cfg.metrics_cache_seconds:
            return MetricsResponse(
                server_id=server.id,
                timestamp=latest.timestamp,
                cached=True,
                metrics=latest.metrics.to_api(),
            )
    return await _fresh_sample(server, sampler, store)


@router.post("/refresh", response_model=MetricsResponse)
async def refresh_metrics(
    server: ServerRecord = Depends(get_server),
    sampler: MetricsSampler = Depends(get_sampler),
    store: MetricsStore = Depends(get_metrics_store),
) -> MetricsResponse:
    return await _fresh_sample(server, sampler, store)


@router.get("/history", response_model=MetricsHistoryResponse)
async def metrics_history(
    hours: float = Query(24, gt=0, le=24 * 30),
    server: ServerRecord = Depends(get_server),
    store: MetricsStore = Depends(get_metrics_store),
) -> MetricsHistoryResponse:
    return MetricsHistoryResponse(
        server_id=server.id,
        hours=hours,
        interval_minutes=bucket_minutes(hours),
        points=store.history(server.id, hours),
    )
