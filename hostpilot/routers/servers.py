"""Server registration, connect-test and OS detection endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from hostpilot.auth import require_api_key
from hostpilot.config import Settings
from hostpilot.deps import (
    get_executor,
    get_metrics_store,
    get_server,
    get_server_store,
    get_settings,
)
from hostpilot.models.responses import ServerStatusResponse
from hostpilot.models.servers import ServerCreateRequest, ServerRecord, ServerResponse
from hostpilot.models.services import OsProfile
from hostpilot.services.os_detect import detect_os
from hostpilot.services.ssh_executor import SSHExecutor
from hostpilot.services.store import MetricsStore, ServerStore
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

router = APIRouter(
    prefix="/servers", tags=["servers"], dependencies=[Depends(require_api_key)],
)


@router.get("", response_model=list[ServerResponse])
async def list_servers(
    store: ServerStore = Depends(get_server_store),
) -> list[ServerResponse]:
    return [ServerResponse.from_record(s) for s in store.all()]


@router.post("", response_model=ServerResponse, status_code=status.HTTP_201_CREATED)
async def register_server(
    req: ServerCreateRequest,
    store: ServerStore = Depends(get_server_store),
    cfg: Settings = Depends(get_settings),
) -> ServerResponse:
    record = store.add(
        ServerRecord(
            name=req.name or req.ip,
            ip=req.ip,
            port=req.port,
            username=req.username or cfg.ssh_default_username,
            private_key_path=req.private_key_path,
        ),
    )
    return ServerResponse.from_record(record)


@router.get("/{server_id}", response_model=ServerResponse)
async def get_server_detail(server: ServerRecord = Depends(get_server)) -> ServerResponse:
    return ServerResponse.from_record(server)


@router.delete("/{server_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_server(
    server: ServerRecord = Depends(get_server),
    store: ServerStore = Depends(get_server_store),
    metrics: MetricsStore = Depends(get_metrics_store),
) -> Response:
    store.remove(server.id)
    metrics.forget(server.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{server_id}/status", response_model=ServerStatusResponse)
async def check_server_status(
    server: ServerRecord = Depends(get_server),
    store: ServerStore = Depends(get_server_store),
    executor: SSHExecutor = Depends(get_executor),
) -> ServerStatusResponse:
    """Connect-test; the only path that writes the reachability flag."""
    result = await executor.check(server.credential())
    store.update_status(server.id, result.status, result.error)
    log.info("servers.status_checked", server_id=server.id, status=result.status.value)
    return ServerStatusResponse(
        server_id=server.id,
        status=result.status,
        error=result.error,
        duration=round(result.duration, 3),
    )


@router.get("/{server_id}/os-info", response_model=OsProfile)
async def get_os_info(
    server: ServerRecord = Depends(get_server),
    executor: SSHExecutor = Depends(get_executor),
) -> OsProfile:
    return await detect_os(executor, server.credential())
