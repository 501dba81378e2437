"""Terminal Session Multiplexer.

One persistent PTY shell per realtime connection.  The multiplexer owns
the SSH client and channel of every session; nothing else writes to them.
A session ends on client disconnect, remote close or SSH error, whichever
comes first, and ending it twice is a no-op.
"""

from __future__ import annotations

import asyncio
import codecs
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Optional

import paramiko

from hostpilot.errors import UnsupportedOperation
from hostpilot.models.commands import HostCredential
from hostpilot.services.ssh_executor import SSHExecutor
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

Emit = Callable[[str, Any], Awaitable[None]]

_CHUNK = 4096
_CHANNEL_ERRORS = (paramiko.SSHException, OSError, EOFError)


@dataclass(eq=False)
class TerminalSession:
    key: str
    server_id: str
    client: paramiko.SSHClient
    channel: paramiko.Channel
    emit: Emit
    reader: Optional[asyncio.Task] = None
    closed: bool = False
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace"),
    )


class TerminalRegistry:
    """Live sessions keyed by realtime connection id."""

    def __init__(self) -> None:
        self._sessions: dict[str, TerminalSession] = {}

    def add(self, session: TerminalSession) -> None:
        self._sessions[session.key] = session

    def get(self, key: str) -> Optional[TerminalSession]:
        return self._sessions.get(key)

    def discard(self, session: TerminalSession) -> bool:
        """Remove *session* only if it is still the one registered under its key."""
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]
            return True
        return False

    def sessions(self) -> Iterator[TerminalSession]:
        return iter(list(self._sessions.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


class TerminalMultiplexer:
    def __init__(
        self,
        executor: SSHExecutor,
        registry: TerminalRegistry,
        *,
        term: str = "xterm-color",
        max_sessions: int = 64,
    ) -> None:
        self._executor = executor
        self.registry = registry
        self._term = term
        self._max_sessions = max_sessions
        # shells being opened count against the limit until registered
        self._pending = 0
        # One blocking recv per live session, plus a small pool for writes and closes.
        self._readers = ThreadPoolExecutor(
            max_workers=max_sessions, thread_name_prefix="pty-read",
        )
        self._io = ThreadPoolExecutor(max_workers=4, thread_name_prefix="pty-io")

    async def _in_io(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._io, fn, *args)

    # ── lifecycle ─────────────────────────────────────────────────────

    async def start(
        self,
        key: str,
        server_id: str,
        credential: HostCredential,
        emit: Emit,
        *,
        cols: int = 80,
        rows: int = 24,
    ) -> TerminalSession:
        """Open a shell for *key*, replacing any session it already has."""
        if key in self.registry:
            log.info("terminal.replacing", key=key)
            await self.close(key)
        if len(self.registry) + self._pending >= self._max_sessions:
            raise UnsupportedOperation("terminal session limit reached")

        self._pending += 1
        try:
            client, channel = await self._executor.open_shell(
                credential, term=self._term, cols=cols, rows=rows,
            )
        finally:
            self._pending -= 1
        session = TerminalSession(
            key=key, server_id=server_id, client=client, channel=channel, emit=emit,
        )
        self.registry.add(session)
        log.info("terminal.started", key=key, server_id=server_id, host=credential.host)
        await _safe_emit(session, "status", {"message": "Connected to server"})
        session.reader = asyncio.create_task(self._pump(session))
        return session

    async def _pump(self, session: TerminalSession) -> None:
        """Forward remote output until the shell closes or errors."""
        loop = asyncio.get_running_loop()
        try:
            while True:
                data = await loop.run_in_executor(
                    self._readers, session.channel.recv, _CHUNK,
                )
                if not data:
                    break
                text = session.decoder.decode(data)
                if text:
                    await session.emit("data", text)
            if not session.closed:
                await _safe_emit(session, "status", {"message": "Terminal closed"})
        except _CHANNEL_ERRORS as exc:
            if not session.closed:
                log.warning("terminal.ssh_error", key=session.key, error=str(exc))
                await _safe_emit(session, "error", {"message": f"SSH error: {exc}"})
        except Exception as exc:
            # The socket went away under us.
            log.info("terminal.emit_failed", key=session.key, error=str(exc))
        finally:
            await self._teardown(session)

    async def _teardown(self, session: TerminalSession) -> None:
        if session.closed:
            return
        session.closed = True
        self.registry.discard(session)
        reader = session.reader
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        await self._in_io(_close_session_sync, session.channel, session.client)
        log.info("terminal.closed", key=session.key, server_id=session.server_id)

    async def close(self, key: str) -> bool:
        """End the session for *key*; False when there was none."""
        session = self.registry.get(key)
        if session is None:
            return False
        await self._teardown(session)
        return True

    async def close_all(self) -> None:
        for session in self.registry.sessions():
            await self._teardown(session)

    def shutdown(self) -> None:
        self._readers.shutdown(wait=False, cancel_futures=True)
        self._io.shutdown(wait=False, cancel_futures=True)

    # ── input ─────────────────────────────────────────────────────────

    async def write(self, key: str, data: str) -> bool:
        """Send keystrokes verbatim to the remote shell."""
        session = self.registry.get(key)
        if session is None or session.closed:
            return False
        try:
            await self._in_io(session.channel.sendall, data.encode("utf-8"))
        except _CHANNEL_ERRORS as exc:
            log.warning("terminal.write_failed", key=key, error=str(exc))
            await _safe_emit(session, "error", {"message": f"SSH error: {exc}"})
            await self._teardown(session)
            return False
        return True

    async def resize(self, key: str, rows: int, cols: int) -> bool:
        session = self.registry.get(key)
        if session is None or session.closed:
            return False
        if rows <= 0 or cols <= 0:
            raise UnsupportedOperation(f"invalid terminal size {cols}x{rows}")
        try:
            await self._in_io(_resize_sync, session.channel, rows, cols)
        except _CHANNEL_ERRORS as exc:
            log.warning("terminal.resize_failed", key=key, error=str(exc))
            return False
        return True


async def _safe_emit(session: TerminalSession, event: str, data: Any) -> None:
    try:
        await session.emit(event, data)
    except Exception as exc:
        log.debug("terminal.emit_dropped", key=session.key, event_name=event, error=str(exc))


def _resize_sync(channel: paramiko.Channel, rows: int, cols: int) -> None:
    channel.resize_pty(width=cols, height=rows)


def _close_session_sync(channel: paramiko.Channel, client: paramiko.SSHClient) -> None:
    for closeable in (channel, client):
        try:
            closeable.close()
        except Exception as exc:
            log.debug("terminal.close_failed", error=str(exc))
