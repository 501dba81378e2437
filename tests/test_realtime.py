"""Tests for the realtime socket (terminal and streamed installs)."""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from hostpilot.config import Settings
from hostpilot.main import create_app
from tests.mock_ssh import OS_RELEASE_ALPINE, wait_for


@pytest.fixture
def ws_client(app):
    return TestClient(app)


def _receive_until(ws, event):
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["event"] == event:
            return frames


class TestTerminal:
    def test_terminal_round_trip(self, ws_client, mock_ssh, app):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "start-terminal", "data": {"serverId": "web-01", "cols": 100, "rows": 30}})
            assert ws.receive_json() == {"event": "status", "data": {"message": "Connected to server"}}

            channel = mock_ssh.channels[0]
            assert channel.sizes == [(100, 30)]

            channel.feed(b"deploy@web-01:~$ ")
            assert ws.receive_json() == {"event": "data", "data": "deploy@web-01:~$ "}

            ws.send_json({"event": "data", "data": "uptime\r"})
            assert wait_for(lambda: channel.sent == [b"uptime\r"])

            ws.send_json({"event": "resize", "data": {"rows": 50, "cols": 160}})
            assert wait_for(lambda: channel.sizes[-1] == (160, 50))

        # disconnect tears the shell down
        assert wait_for(lambda: channel.closed)
        assert wait_for(lambda: len(app.state.terminals.registry) == 0)
        assert mock_ssh.clients[0].closed

    def test_remote_close_is_reported(self, ws_client, mock_ssh, app):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "start-terminal", "data": {"serverId": "web-01"}})
            ws.receive_json()

            mock_ssh.channels[0].remote_close()

            assert ws.receive_json() == {"event": "status", "data": {"message": "Terminal closed"}}
            assert wait_for(lambda: len(app.state.terminals.registry) == 0)

    def test_unknown_server(self, ws_client, mock_ssh):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "start-terminal", "data": {"serverId": "ghost"}})
            frame = ws.receive_json()
        assert frame["event"] == "error"
        assert "ghost" in frame["data"]["message"]
        assert mock_ssh.channels == []

    def test_unreachable_server(self, ws_client, mock_ssh):
        mock_ssh.online = False
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "start-terminal", "data": {"serverId": "web-01"}})
            frame = ws.receive_json()
        assert frame["event"] == "error"
        assert "not ready" in frame["data"]["message"]

    def test_bad_resize(self, ws_client):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "start-terminal", "data": {"serverId": "web-01"}})
            ws.receive_json()
            ws.send_json({"event": "resize", "data": {"rows": "tall"}})
            frame = ws.receive_json()
        assert frame == {"event": "error", "data": {"message": "invalid resize request"}}


class TestProtocol:
    def test_unknown_event(self, ws_client):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "reboot", "data": {}})
            frame = ws.receive_json()
        assert frame == {"event": "error", "data": {"message": "unknown event: reboot"}}

    def test_malformed_frame(self, ws_client):
        with ws_client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["data"]["message"] == "malformed message"
            ws.send_text('{"data": "no event"}')
            assert ws.receive_json()["event"] == "error"

    def test_api_key_enforced(self, mock_ssh, server_store, metrics_store):
        cfg = Settings(hostpilot_api_key="s3cret", metrics_poller_enabled=False, inventory_file="")
        client = TestClient(
            create_app(cfg, mock_ssh, server_store=server_store, metrics_store=metrics_store),
        )

        with pytest.raises(WebSocketDisconnect) as info:
            with client.websocket_connect("/ws"):
                pass
        assert info.value.code == 1008

        with client.websocket_connect("/ws?api_key=s3cret") as ws:
            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "error"


class TestInstall:
    def test_streamed_install(self, ws_client, mock_ssh):
        mock_ssh.respond("apt-get install -y nginx", "Setting up nginx (1.24.0)\n")

        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "install-service", "data": {"serverId": "web-01", "service": "nginx"}})
            frames = _receive_until(ws, "install-complete")

        output = [f["data"]["data"] for f in frames if f["event"] == "install-output"]
        assert output[0] == ">>> Connecting to server 10.0.0.5...\n"
        assert output[1].startswith(">>> Detected OS: Ubuntu 24.04.1 LTS")
        assert output[-1] == "Setting up nginx (1.24.0)\n"
        assert frames[-1]["data"] == {
            "success": True,
            "exitCode": 0,
            "message": "nginx installed successfully!",
        }

    def test_failed_install_reports_exit_code(self, ws_client, mock_ssh):
        mock_ssh.respond("apt-get install -y nginx", "", "E: dpkg was interrupted\n", exit_code=100)

        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "install-service", "data": {"serverId": "web-01", "service": "nginx"}})
            frames = _receive_until(ws, "install-complete")

        complete = frames[-1]["data"]
        assert complete["success"] is False
        assert complete["exitCode"] == 100
        assert any("dpkg was interrupted" in f["data"]["data"] for f in frames[:-1])

    def test_unsupported_pair_is_install_error(self, ws_client, mock_ssh):
        mock_ssh.respond("/etc/os-release 2>/dev/null ||", OS_RELEASE_ALPINE)

        with ws_client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "install-service", "data": {"serverId": "web-01", "service": "mysql"}})
            frames = _receive_until(ws, "install-error")

        error = frames[-1]["data"]
        assert error["success"] is False
        assert error["exitCode"] is None
        assert "mysql" in error["message"]
        assert not any("apk add" in c for c in mock_ssh.commands)
