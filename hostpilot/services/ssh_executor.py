"""SSH Connection Executor.

Every logical operation opens its own paramiko connection, does exactly one
unit of work (a command, a fixed command battery, an SFTP call or a PTY
shell handed to the caller) and closes the connection before returning, on
every path.  Blocking paramiko calls run inside a bounded thread pool so the
FastAPI event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import codecs
import io
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import paramiko

from hostpilot.config import Settings, settings
from hostpilot.errors import (
    AuthFailure,
    ConnectTimeout,
    HostError,
    NotFound,
    RemoteError,
)
from hostpilot.models.commands import (
    ConnectionCheck,
    ConnectionState,
    ExecStatus,
    ExecutionResult,
    HostCredential,
)
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")
OutputCallback = Callable[[str], Awaitable[None]]
ChunkSink = Callable[[str, bytes], None]

_CHUNK = 32768
_POLL_INTERVAL = 0.05
_KEY_TYPES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)
_TRANSPORT_ERRORS = (HostError, paramiko.SSHException, OSError, EOFError)


class SSHExecutor:
    """Opens one SSH connection per logical operation; never reuses or retries."""

    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._timeout = self._cfg.ssh_connect_timeout_seconds
        self._grace = self._cfg.ssh_connect_grace_seconds
        self._pool = ThreadPoolExecutor(
            max_workers=self._cfg.ssh_max_workers, thread_name_prefix="ssh",
        )

    # ── helpers ───────────────────────────────────────────────────────

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._pool, fn, *args)

    async def _connect(self, credential: HostCredential) -> paramiko.SSHClient:
        """Open a ready connection or raise within ``timeout + grace``.

        The bound is measured from the moment a pool worker picks the attempt
        up, so time spent queued behind other hosts is not charged to it.
        """
        loop = asyncio.get_running_loop()
        picked_up = loop.create_future()

        def attempt() -> paramiko.SSHClient:
            loop.call_soon_threadsafe(_mark_done, picked_up)
            return _connect_sync(credential, self._timeout)

        fut = loop.run_in_executor(self._pool, attempt)
        try:
            await asyncio.wait({fut, picked_up}, return_when=asyncio.FIRST_COMPLETED)
            return await asyncio.wait_for(
                asyncio.shield(fut), timeout=self._timeout + self._grace,
            )
        except asyncio.TimeoutError:
            # The worker may still finish the handshake later; close it then.
            fut.add_done_callback(_close_late_client)
            log.warning("ssh.connect_timeout", host=credential.host)
            raise ConnectTimeout(
                f"{credential.host}:{credential.port} not ready "
                f"after {self._timeout:g}s",
            ) from None
        except asyncio.CancelledError:
            fut.add_done_callback(_close_late_client)
            raise

    async def _disconnect(self, client: paramiko.SSHClient) -> None:
        await self._run(_close_client, client)

    # ── public: commands ──────────────────────────────────────────────

    async def run(
        self,
        credential: HostCredential,
        command: str,
        *,
        check: bool = False,
        _on_chunk: Optional[ChunkSink] = None,
    ) -> ExecutionResult:
        """Run one command on a fresh connection.

        Transport failures are reported in the result; pass ``check=True`` to
        raise the typed error instead.
        """
        started = time.monotonic()
        try:
            client = await self._connect(credential)
        except HostError as exc:
            result = _failed(command, exc, started)
        else:
            try:
                code, out, err = await self._run(
                    _exec_sync, client, command, _on_chunk,
                )
            except _TRANSPORT_ERRORS as exc:
                result = _failed(command, exc, started)
            else:
                result = _completed(command, code, out, err, started)
            finally:
                await self._disconnect(client)

        log.debug(
            "ssh.exec",
            host=credential.host,
            status=result.status.value,
            rc=result.exit_code,
            elapsed=round(result.duration, 3),
        )
        if check:
            result.raise_for_status()
        return result

    async def run_streaming(
        self,
        credential: HostCredential,
        command: str,
        on_output: OutputCallback,
    ) -> ExecutionResult:
        """Run a command, handing decoded output chunks to *on_output* as they arrive."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Optional[tuple[str, bytes]]] = asyncio.Queue()

        def forward(stream: str, data: bytes) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, (stream, data))

        job = asyncio.ensure_future(
            self.run(credential, command, _on_chunk=forward),
        )
        job.add_done_callback(lambda _: queue.put_nowait(None))

        decoders = {
            "stdout": codecs.getincrementaldecoder("utf-8")(errors="replace"),
            "stderr": codecs.getincrementaldecoder("utf-8")(errors="replace"),
        }
        forwarding = True
        while (item := await queue.get()) is not None:
            if not forwarding:
                continue
            stream, data = item
            text = decoders[stream].decode(data)
            if not text:
                continue
            try:
                await on_output(text)
            except Exception as exc:
                # The remote command keeps running; stop forwarding only.
                forwarding = False
                log.warning("ssh.stream_consumer_failed", error=str(exc))
        return await job

    async def run_batch(
        self,
        credential: HostCredential,
        commands: list[str],
    ) -> list[ExecutionResult]:
        """Run *commands* in order over a single connection.

        A connection failure raises; a failing command only marks its own
        result and the remaining commands still run.
        """
        client = await self._connect(credential)
        results: list[ExecutionResult] = []
        try:
            for command in commands:
                started = time.monotonic()
                try:
                    code, out, err = await self._run(
                        _exec_sync, client, command, None,
                    )
                except _TRANSPORT_ERRORS as exc:
                    results.append(_failed(command, exc, started))
                else:
                    results.append(_completed(command, code, out, err, started))
        finally:
            await self._disconnect(client)
        log.debug("ssh.batch", host=credential.host, commands=len(commands))
        return results

    # ── public: SFTP ──────────────────────────────────────────────────

    async def sftp(
        self,
        credential: HostCredential,
        operation: Callable[[paramiko.SFTPClient], T],
    ) -> T:
        """Run *operation* against an SFTP client on a fresh connection."""
        client = await self._connect(credential)
        try:
            return await self._run(_sftp_sync, client, operation)
        finally:
            await self._disconnect(client)

    # ── public: connect-test and shells ───────────────────────────────

    async def check(self, credential: HostCredential) -> ConnectionCheck:
        """Connect, then immediately close."""
        started = time.monotonic()
        try:
            client = await self._connect(credential)
        except HostError as exc:
            log.info("ssh.check_failed", host=credential.host, error=str(exc))
            return ConnectionCheck(
                status=ConnectionState.offline,
                error=exc.message,
                duration=time.monotonic() - started,
            )
        await self._disconnect(client)
        return ConnectionCheck(
            status=ConnectionState.online,
            duration=time.monotonic() - started,
        )

    async def open_shell(
        self,
        credential: HostCredential,
        *,
        term: str = "xterm-color",
        cols: int = 80,
        rows: int = 24,
    ) -> tuple[paramiko.SSHClient, paramiko.Channel]:
        """Open a PTY shell; the caller owns and must close both objects."""
        client = await self._connect(credential)
        opened = False
        try:
            channel = await self._run(_invoke_shell_sync, client, term, cols, rows)
            opened = True
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteError(f"could not open shell: {exc}") from exc
        finally:
            if not opened:
                await self._disconnect(client)
        log.info("ssh.shell_opened", host=credential.host, term=term)
        return client, channel

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)


# ── module-level sync wrappers (run inside the thread pool) ───────────────

def _load_private_key(path: str) -> paramiko.PKey:
    try:
        data = Path(path).expanduser().read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise AuthFailure(f"private key {path} is not readable: {exc}") from exc
    for key_cls in _KEY_TYPES:
        try:
            return key_cls.from_private_key(io.StringIO(data))
        except (paramiko.SSHException, ValueError):
            continue
    raise AuthFailure(f"private key {path} is not a supported key type")


def _connect_sync(credential: HostCredential, timeout: float) -> paramiko.SSHClient:
    pkey = _load_private_key(credential.key_path)
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    ready = False
    try:
        client.connect(
            hostname=credential.host,
            port=credential.port,
            username=credential.username,
            pkey=pkey,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        ready = True
        return client
    except paramiko.AuthenticationException as exc:
        raise AuthFailure(
            f"authentication failed for {credential.username}@{credential.host}: {exc}",
        ) from exc
    except TimeoutError as exc:
        raise ConnectTimeout(
            f"{credential.host}:{credential.port} not ready after {timeout:g}s",
        ) from exc
    except (paramiko.SSHException, OSError, EOFError) as exc:
        raise RemoteError(f"ssh connection to {credential.host} failed: {exc}") from exc
    finally:
        if not ready:
            client.close()


def _close_client(client: paramiko.SSHClient) -> None:
    try:
        client.close()
    except Exception as exc:
        log.debug("ssh.close_failed", error=str(exc))


def _mark_done(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


def _close_late_client(fut: Future) -> None:
    if fut.cancelled() or fut.exception() is not None:
        return
    _close_client(fut.result())


def _exec_sync(
    client: paramiko.SSHClient,
    command: str,
    on_chunk: Optional[ChunkSink],
) -> tuple[int, bytes, bytes]:
    transport = client.get_transport()
    if transport is None or not transport.is_active():
        raise RemoteError("ssh transport is not active")
    chan = transport.open_session()
    out = bytearray()
    err = bytearray()
    try:
        chan.exec_command(command)
        while True:
            progressed = False
            if chan.recv_ready():
                data = chan.recv(_CHUNK)
                out += data
                progressed = True
                if on_chunk is not None and data:
                    on_chunk("stdout", data)
            if chan.recv_stderr_ready():
                data = chan.recv_stderr(_CHUNK)
                err += data
                progressed = True
                if on_chunk is not None and data:
                    on_chunk("stderr", data)
            if progressed:
                continue
            if chan.exit_status_ready():
                break
            time.sleep(_POLL_INTERVAL)
        code = chan.recv_exit_status()
    finally:
        chan.close()
    return code, bytes(out), bytes(err)


def _sftp_sync(
    client: paramiko.SSHClient,
    operation: Callable[[paramiko.SFTPClient], T],
) -> T:
    try:
        sftp = client.open_sftp()
    except (paramiko.SSHException, OSError) as exc:
        raise RemoteError(f"sftp subsystem unavailable: {exc}") from exc
    try:
        return operation(sftp)
    except FileNotFoundError as exc:
        raise NotFound(f"no such file or directory: {exc.filename or exc}") from exc
    except PermissionError as exc:
        raise RemoteError(f"permission denied: {exc.filename or exc}") from exc
    except (paramiko.SSHException, OSError) as exc:
        raise RemoteError(f"sftp operation failed: {exc}") from exc
    finally:
        sftp.close()


def _invoke_shell_sync(
    client: paramiko.SSHClient, term: str, cols: int, rows: int,
) -> paramiko.Channel:
    return client.invoke_shell(term=term, width=cols, height=rows)


def _failed(command: str, exc: BaseException, started: float) -> ExecutionResult:
    status = (
        ExecStatus.timeout if isinstance(exc, ConnectTimeout) else ExecStatus.remote_error
    )
    return ExecutionResult(
        command=command,
        status=status,
        error=str(exc),
        error_type=type(exc).__name__ if isinstance(exc, HostError) else None,
        duration=time.monotonic() - started,
    )


def _completed(
    command: str, code: int, out: bytes, err: bytes, started: float,
) -> ExecutionResult:
    return ExecutionResult(
        command=command,
        status=ExecStatus.success if code == 0 else ExecStatus.remote_error,
        exit_code=code,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
        duration=time.monotonic() - started,
    )
