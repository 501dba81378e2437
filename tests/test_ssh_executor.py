"""Tests for the SSH connection executor against fake paramiko objects."""

from __future__ import annotations

import asyncio
import time

import paramiko
import pytest

import hostpilot.services.ssh_executor as ssh_mod
from hostpilot.config import Settings
from hostpilot.errors import AuthFailure, ConnectTimeout, NotFound, RemoteError
from hostpilot.models.commands import ConnectionState, ExecStatus, ExecutionResult, HostCredential
from hostpilot.services.ssh_executor import SSHExecutor

CRED = HostCredential(host="10.0.0.9", username="deploy", key_path="/keys/id_ed25519")


class FakeExecChannel:
    def __init__(self, stdout=(), stderr=(), exit_status=0):
        self._stdout = list(stdout)
        self._stderr = list(stderr)
        self._exit_status = exit_status
        self.command = None
        self.closed = False

    def exec_command(self, command):
        self.command = command

    def recv_ready(self):
        return bool(self._stdout)

    def recv(self, nbytes):
        return self._stdout.pop(0)

    def recv_stderr_ready(self):
        return bool(self._stderr)

    def recv_stderr(self, nbytes):
        return self._stderr.pop(0)

    def exit_status_ready(self):
        return not self._stdout and not self._stderr

    def recv_exit_status(self):
        return self._exit_status

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, channel, active=True):
        self._channel = channel
        self._active = active

    def is_active(self):
        return self._active

    def open_session(self):
        return self._channel


class FakeSSHClient:
    def __init__(self, channel=None):
        self.channel = channel or FakeExecChannel(stdout=[b"ok\n"])
        self.closed = False

    def get_transport(self):
        return FakeTransport(self.channel)

    def close(self):
        self.closed = True


@pytest.fixture
def cfg():
    return Settings(ssh_connect_timeout_seconds=0.3, ssh_connect_grace_seconds=0.2)


@pytest.fixture
def executor(cfg):
    ex = SSHExecutor(cfg)
    yield ex
    ex.close()


def _connect_returning(client):
    def connect(credential, timeout):
        return client

    return connect


class TestRun:
    @pytest.mark.asyncio
    async def test_success_closes_connection(self, executor, monkeypatch):
        client = FakeSSHClient(FakeExecChannel(stdout=[b"Linux 6.8.0\n"]))
        monkeypatch.setattr(ssh_mod, "_connect_sync", _connect_returning(client))

        result = await executor.run(CRED, "uname -srm")

        assert result.status is ExecStatus.success
        assert result.exit_code == 0
        assert result.stdout == "Linux 6.8.0\n"
        assert client.channel.command == "uname -srm"
        assert client.channel.closed
        assert client.closed

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_remote_error(self, executor, monkeypatch):
        channel = FakeExecChannel(stderr=[b"ls: cannot access '/x'\n"], exit_status=2)
        client = FakeSSHClient(channel)
        monkeypatch.setattr(ssh_mod, "_connect_sync", _connect_returning(client))

        result = await executor.run(CRED, "ls /x")

        assert result.status is ExecStatus.remote_error
        assert result.exit_code == 2
        assert "cannot access" in result.stderr
        assert client.closed
        with pytest.raises(RemoteError) as info:
            result.raise_for_status()
        assert info.value.exit_code == 2

    @pytest.mark.asyncio
    async def test_exec_failure_still_closes(self, executor, monkeypatch):
        client = FakeSSHClient()
        monkeypatch.setattr(ssh_mod, "_connect_sync", _connect_returning(client))

        def broken(client, command, on_chunk):
            raise paramiko.SSHException("channel closed")

        monkeypatch.setattr(ssh_mod, "_exec_sync", broken)

        result = await executor.run(CRED, "uptime")

        assert result.status is ExecStatus.remote_error
        assert result.exit_code is None
        assert "channel closed" in result.error
        assert client.closed

    @pytest.mark.asyncio
    async def test_unreachable_host_resolves_within_bound(self, executor, monkeypatch, cfg):
        late_client = FakeSSHClient()

        def hang(credential, timeout):
            time.sleep(1.0)
            return late_client

        monkeypatch.setattr(ssh_mod, "_connect_sync", hang)

        started = time.monotonic()
        result = await executor.run(CRED, "uptime")
        elapsed = time.monotonic() - started

        assert result.status is ExecStatus.timeout
        assert elapsed < cfg.ssh_connect_timeout_seconds + cfg.ssh_connect_grace_seconds + 0.3
        # the handshake that finishes late is closed, not leaked
        deadline = time.monotonic() + 3
        while not late_client.closed and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        assert late_client.closed

    @pytest.mark.asyncio
    async def test_queue_time_is_not_charged_to_readiness(self, monkeypatch):
        cfg = Settings(
            ssh_max_workers=1,
            ssh_connect_timeout_seconds=0.3,
            ssh_connect_grace_seconds=0.4,
        )
        executor = SSHExecutor(cfg)
        dead = {"10.0.0.66", "10.0.0.67"}

        def connect(credential, timeout):
            if credential.host in dead:
                time.sleep(0.45)
                raise ConnectTimeout(f"{credential.host}:22 not ready after 0.3s")
            return FakeSSHClient()

        monkeypatch.setattr(ssh_mod, "_connect_sync", connect)
        creds = [CRED.model_copy(update={"host": h}) for h in ("10.0.0.66", "10.0.0.67")]
        try:
            first, second, healthy = await asyncio.gather(
                executor.run(creds[0], "uptime"),
                executor.run(creds[1], "uptime"),
                executor.run(CRED, "uptime"),
            )
        finally:
            executor.close()

        assert first.status is ExecStatus.timeout
        assert second.status is ExecStatus.timeout
        assert healthy.status is ExecStatus.success
        assert healthy.stdout == "ok\n"

    @pytest.mark.asyncio
    async def test_check_flag_raises_typed_error(self, executor, monkeypatch):
        def reject(credential, timeout):
            raise AuthFailure("authentication failed for deploy@10.0.0.9")

        monkeypatch.setattr(ssh_mod, "_connect_sync", reject)

        result = await executor.run(CRED, "uptime")
        assert result.status is ExecStatus.remote_error
        assert result.error_type == "AuthFailure"
        assert "authentication failed" in result.error

        with pytest.raises(AuthFailure):
            await executor.run(CRED, "uptime", check=True)


class TestBatchAndStreaming:
    @pytest.mark.asyncio
    async def test_batch_uses_one_connection(self, executor, monkeypatch):
        connects = []
        client = FakeSSHClient()

        def connect(credential, timeout):
            connects.append(credential.host)
            return client

        def fake_exec(client, command, on_chunk):
            if command == "false":
                return 1, b"", b""
            return 0, command.encode(), b""

        monkeypatch.setattr(ssh_mod, "_connect_sync", connect)
        monkeypatch.setattr(ssh_mod, "_exec_sync", fake_exec)

        results = await executor.run_batch(CRED, ["hostname", "false", "nproc"])

        assert connects == ["10.0.0.9"]
        assert [r.ok for r in results] == [True, False, True]
        assert results[2].stdout == "nproc"
        assert client.closed

    @pytest.mark.asyncio
    async def test_batch_connect_failure_raises(self, executor, monkeypatch):
        def refuse(credential, timeout):
            raise RemoteError("ssh connection to 10.0.0.9 failed: Connection refused")

        monkeypatch.setattr(ssh_mod, "_connect_sync", refuse)

        with pytest.raises(RemoteError):
            await executor.run_batch(CRED, ["hostname"])

    @pytest.mark.asyncio
    async def test_streaming_decodes_split_characters(self, executor, monkeypatch):
        client = FakeSSHClient()
        payload = "Setting up nginx (1.24.0) … done\n".encode()
        cut = payload.index("…".encode()) + 1

        def fake_exec(client, command, on_chunk):
            on_chunk("stdout", payload[:cut])
            on_chunk("stdout", payload[cut:])
            on_chunk("stderr", b"warning\n")
            return 0, payload, b"warning\n"

        monkeypatch.setattr(ssh_mod, "_connect_sync", _connect_returning(client))
        monkeypatch.setattr(ssh_mod, "_exec_sync", fake_exec)

        chunks = []

        async def collect(text):
            chunks.append(text)

        result = await executor.run_streaming(CRED, "apt-get install -y nginx", collect)

        assert result.ok
        assert "".join(chunks) == "Setting up nginx (1.24.0) … done\nwarning\n"
        assert all("�" not in c for c in chunks)

    @pytest.mark.asyncio
    async def test_streaming_survives_failing_consumer(self, executor, monkeypatch):
        client = FakeSSHClient()

        def fake_exec(client, command, on_chunk):
            on_chunk("stdout", b"one\n")
            on_chunk("stdout", b"two\n")
            return 0, b"one\ntwo\n", b""

        monkeypatch.setattr(ssh_mod, "_connect_sync", _connect_returning(client))
        monkeypatch.setattr(ssh_mod, "_exec_sync", fake_exec)

        async def explode(text):
            raise RuntimeError("socket closed")

        result = await executor.run_streaming(CRED, "true", explode)
        assert result.ok
        assert client.closed


class TestCheck:
    @pytest.mark.asyncio
    async def test_online(self, executor, monkeypatch):
        client = FakeSSHClient()
        monkeypatch.setattr(ssh_mod, "_connect_sync", _connect_returning(client))

        result = await executor.check(CRED)

        assert result.status is ConnectionState.online
        assert client.closed

    @pytest.mark.asyncio
    async def test_offline_reports_error(self, executor, monkeypatch):
        def refuse(credential, timeout):
            raise ConnectTimeout("10.0.0.9:22 not ready after 0.3s")

        monkeypatch.setattr(ssh_mod, "_connect_sync", refuse)

        result = await executor.check(CRED)

        assert result.status is ConnectionState.offline
        assert "not ready" in result.error


class TestSyncHelpers:
    def test_exec_sync_collects_both_streams(self):
        channel = FakeExecChannel(stdout=[b"a", b"b"], stderr=[b"e"], exit_status=3)
        seen = []

        code, out, err = ssh_mod._exec_sync(
            FakeSSHClient(channel), "cmd", lambda stream, data: seen.append(stream),
        )

        assert (code, out, err) == (3, b"ab", b"e")
        assert sorted(seen) == ["stderr", "stdout", "stdout"]
        assert channel.closed

    def test_exec_sync_inactive_transport(self):
        class DeadClient(FakeSSHClient):
            def get_transport(self):
                return FakeTransport(self.channel, active=False)

        with pytest.raises(RemoteError):
            ssh_mod._exec_sync(DeadClient(), "cmd", None)

    def test_unreadable_key_is_auth_failure(self, tmp_path):
        with pytest.raises(AuthFailure):
            ssh_mod._load_private_key(str(tmp_path / "missing_key"))

    def test_garbage_key_is_auth_failure(self, tmp_path):
        key = tmp_path / "id_bogus"
        key.write_text("not a key\n")
        with pytest.raises(AuthFailure):
            ssh_mod._load_private_key(str(key))

    def test_connect_maps_authentication_error(self, monkeypatch):
        created = []

        class RejectingClient:
            def __init__(self):
                self.closed = False
                created.append(self)

            def set_missing_host_key_policy(self, policy):
                pass

            def connect(self, **kwargs):
                raise paramiko.AuthenticationException("Authentication failed.")

            def close(self):
                self.closed = True

        monkeypatch.setattr(ssh_mod, "_load_private_key", lambda path: object())
        monkeypatch.setattr(ssh_mod.paramiko, "SSHClient", RejectingClient)

        with pytest.raises(AuthFailure) as info:
            ssh_mod._connect_sync(CRED, 1.0)

        assert "Authentication failed" in info.value.message
        assert created[0].closed

    def test_sftp_missing_file_is_not_found(self):
        class Sftp:
            closed = False

            def stat(self, path):
                raise FileNotFoundError(2, "No such file", path)

            def close(self):
                Sftp.closed = True

        class Client:
            def open_sftp(self):
                return Sftp()

        with pytest.raises(NotFound):
            ssh_mod._sftp_sync(Client(), lambda sftp: sftp.stat("/nope"))
        assert Sftp.closed


class TestRaiseForStatus:
    def test_preserves_error_class(self):
        result = ExecutionResult(
            command="<sftp>", status=ExecStatus.remote_error, error="gone", error_type="NotFound",
        )
        with pytest.raises(NotFound) as info:
            result.raise_for_status()
        assert info.value.http_status == 404

    def test_auth_failure_keeps_exit_details(self):
        result = ExecutionResult(
            command="uptime",
            status=ExecStatus.remote_error,
            error="authentication failed",
            error_type="AuthFailure",
        )
        with pytest.raises(AuthFailure) as info:
            result.raise_for_status()
        assert info.value.exit_code is None

    def test_nonzero_exit_defaults_to_remote_error(self):
        result = ExecutionResult(
            command="false", status=ExecStatus.remote_error, exit_code=1, stderr="boom\n",
        )
        with pytest.raises(RemoteError) as info:
            result.raise_for_status()
        assert type(info.value) is RemoteError
        assert info.value.message == "boom"

    def test_unknown_error_type_is_remote_error(self):
        result = ExecutionResult(
            command="x", status=ExecStatus.remote_error, error="odd", error_type="EOFError",
        )
        with pytest.raises(RemoteError):
            result.raise_for_status()

    def test_success_returns_self(self):
        result = ExecutionResult(command="true", status=ExecStatus.success, exit_code=0)
        assert result.raise_for_status() is result
