"""Typed failures raised by the remote execution engine.

Every error carries the HTTP status the REST layer answers with, so routers
can let them propagate to the application-level handler.
"""

from __future__ import annotations

from typing import Optional


class HostError(Exception):
    """Base class for failures talking to a managed host."""

    http_status = 502

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConnectTimeout(HostError):
    """The SSH connection did not become ready within the bound."""

    http_status = 504


class RemoteError(HostError):
    """SSH-level rejection, or a command that exited nonzero."""

    http_status = 502

    def __init__(
        self,
        message: str,
        *,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class AuthFailure(RemoteError):
    """The host was reachable but refused our key (or the key is unreadable)."""


class NotFound(HostError):
    """A remote path or service does not exist."""

    http_status = 404


class UnsupportedOperation(HostError):
    """Rejected before contacting the host (bad action, unmapped OS, ...)."""

    http_status = 400


class ParseFailure(HostError):
    """Command output did not have the expected shape."""

    http_status = 502
