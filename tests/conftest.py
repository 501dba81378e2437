"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Force settings to use test-safe defaults before any import
os.environ.setdefault("HOSTPILOT_API_KEY", "")
os.environ.setdefault("METRICS_POLLER_ENABLED", "false")
os.environ.setdefault("INVENTORY_FILE", "")

import pytest
from httpx import ASGITransport, AsyncClient

from hostpilot.models.commands import ConnectionState, HostCredential
from hostpilot.models.servers import ServerRecord
from hostpilot.services.store import MetricsStore, ServerStore
from tests.mock_ssh import MockExecutor


@pytest.fixture
def mock_ssh():
    """Provide a fresh MockExecutor."""
    return MockExecutor()


@pytest.fixture
def credential():
    return HostCredential(host="10.0.0.5", username="deploy", key_path="/keys/id_ed25519")


@pytest.fixture
def test_settings():
    from hostpilot.config import Settings

    return Settings(
        hostpilot_api_key="",
        metrics_poller_enabled=False,
        inventory_file="",
        ssh_connect_timeout_seconds=0.5,
        ssh_connect_grace_seconds=0.2,
    )


@pytest.fixture
def server_store():
    store = ServerStore()
    store.add(
        ServerRecord(
            id="web-01",
            name="web-01",
            ip="10.0.0.5",
            username="deploy",
            private_key_path="/keys/id_ed25519",
            status=ConnectionState.online,
        ),
    )
    return store


@pytest.fixture
def metrics_store():
    return MetricsStore()


@pytest.fixture
def app(test_settings, mock_ssh, server_store, metrics_store):
    from hostpilot.main import create_app

    return create_app(
        test_settings,
        mock_ssh,
        server_store=server_store,
        metrics_store=metrics_store,
    )


@pytest.fixture
async def client(app):
    """Async test client with the mock executor injected."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
