"""FastAPI application entry-point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hostpilot import __version__
from hostpilot.config import Settings, settings
from hostpilot.errors import HostError
from hostpilot.routers import files, health, metrics, realtime, servers, services
from hostpilot.services.file_bridge import FileBridge
from hostpilot.services.metrics_sampler import MetricsSampler
from hostpilot.services.poller import MetricsPoller
from hostpilot.services.service_manager import ServiceManager
from hostpilot.services.ssh_executor import SSHExecutor
from hostpilot.services.store import MetricsStore, ServerStore
from hostpilot.services.terminal import TerminalMultiplexer, TerminalRegistry
from hostpilot.utils.logging import get_logger, setup_logging

log = get_logger(__name__)


async def host_error_handler(request: Request, exc: HostError) -> JSONResponse:
    log.info(
        "api.host_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.message})


def create_app(
    cfg: Optional[Settings] = None,
    executor: Optional[SSHExecutor] = None,
    *,
    server_store: Optional[ServerStore] = None,
    metrics_store: Optional[MetricsStore] = None,
) -> FastAPI:
    """Build the app and wire the engine components onto ``app.state``."""
    cfg = cfg or settings
    executor = executor or SSHExecutor(cfg)
    server_store = server_store if server_store is not None else ServerStore()
    metrics_store = metrics_store if metrics_store is not None else MetricsStore()
    sampler = MetricsSampler(executor)
    poller = MetricsPoller(
        sampler,
        server_store,
        metrics_store,
        interval=cfg.metrics_interval_seconds,
        retention_days=cfg.metrics_retention_days,
        cleanup_interval=cfg.metrics_cleanup_interval_seconds,
    )
    terminals = TerminalMultiplexer(
        executor,
        TerminalRegistry(),
        term=cfg.terminal_term_type,
        max_sessions=cfg.terminal_max_sessions,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown hooks."""
        setup_logging(cfg.hostpilot_log_level, cfg.hostpilot_log_json)
        if cfg.inventory_file:
            server_store.load_inventory(
                cfg.inventory_file,
                default_username=cfg.ssh_default_username,
                default_port=cfg.ssh_default_port,
            )
        if cfg.metrics_poller_enabled:
            poller.start()
        yield
        # Shutdown: stop sampling, then drop every live shell
        await poller.stop()
        await terminals.close_all()
        terminals.shutdown()
        executor.close()

    app = FastAPI(
        title="HostPilot API",
        description="Agentless remote execution and telemetry for Linux hosts",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.executor = executor
    app.state.servers = server_store
    app.state.metrics = metrics_store
    app.state.files = FileBridge(executor, cfg)
    app.state.services = ServiceManager(executor)
    app.state.sampler = sampler
    app.state.poller = poller
    app.state.terminals = terminals

    app.add_exception_handler(HostError, host_error_handler)

    app.include_router(health.router)
    app.include_router(servers.router)
    app.include_router(files.router)
    app.include_router(services.router)
    app.include_router(metrics.router)
    app.include_router(realtime.router)
    return app


app = create_app()
