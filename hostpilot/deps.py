"""Accessors for the engine components wired onto ``app.state``."""

from __future__ import annotations

from fastapi import Request

from hostpilot.config import Settings
from hostpilot.models.servers import ServerRecord
from hostpilot.services.file_bridge import FileBridge
from hostpilot.services.metrics_sampler import MetricsSampler
from hostpilot.services.poller import MetricsPoller
from hostpilot.services.service_manager import ServiceManager
from hostpilot.services.ssh_executor import SSHExecutor
from hostpilot.services.store import MetricsStore, ServerStore
from hostpilot.services.terminal import TerminalMultiplexer


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_executor(request: Request) -> SSHExecutor:
    return request.app.state.executor


def get_server_store(request: Request) -> ServerStore:
    return request.app.state.servers


def get_metrics_store(request: Request) -> MetricsStore:
    return request.app.state.metrics


def get_file_bridge(request: Request) -> FileBridge:
    return request.app.state.files


def get_service_manager(request: Request) -> ServiceManager:
    return request.app.state.services


def get_sampler(request: Request) -> MetricsSampler:
    return request.app.state.sampler


def get_poller(request: Request) -> MetricsPoller:
    return request.app.state.poller


def get_terminals(request: Request) -> TerminalMultiplexer:
    return request.app.state.terminals


def get_server(server_id: str, request: Request) -> ServerRecord:
    """Path-parameter dependency: the registered server or 404."""
    return request.app.state.servers.get(server_id)
