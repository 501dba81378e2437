"""Service status, install and lifecycle endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends

from hostpilot.auth import require_api_key
from hostpilot.deps import get_server, get_service_manager
from hostpilot.models.responses import InstallRequest
from hostpilot.models.servers import ServerRecord
from hostpilot.models.services import ServiceActionResult, ServiceStatus
from hostpilot.services.service_manager import ServiceManager

router = APIRouter(
    prefix="/servers/{server_id}/services",
    tags=["services"],
    dependencies=[Depends(require_api_key)],
)


@router.get("", response_model=list[ServiceStatus])
async def list_common_services(
    server: ServerRecord = Depends(get_server),
    services: ServiceManager = Depends(get_service_manager),
) -> list[ServiceStatus]:
    return await services.status_many(server.credential())


@router.get("/{service}/status", response_model=ServiceStatus)
async def service_status(
    service: str,
    server: ServerRecord = Depends(get_server),
    services: ServiceManager = Depends(get_service_manager),
) -> ServiceStatus:
    return await services.status(server.credential(), service)


@router.post("/{service}/install", response_model=ServiceActionResult)
async def install_service(
    service: str,
    req: Optional[InstallRequest] = Body(default=None),
    server: ServerRecord = Depends(get_server),
    services: ServiceManager = Depends(get_service_manager),
) -> ServiceActionResult:
    """Blocking install; the realtime socket offers a streamed variant."""
    version = req.version if req else None
    return await services.install(server.credential(), service, version=version)


@router.post("/{service}/{action}", response_model=ServiceActionResult)
async def manage_service(
    service: str,
    action: str,
    server: ServerRecord = Depends(get_server),
    services: ServiceManager = Depends(get_service_manager),
) -> ServiceActionResult:
    return await services.manage(server.credential(), service, action)
