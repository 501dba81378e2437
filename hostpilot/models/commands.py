"""Credential and execution-result data structures."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from hostpilot.errors import (
    AuthFailure,
    ConnectTimeout,
    HostError,
    NotFound,
    ParseFailure,
    RemoteError,
    UnsupportedOperation,
)

# error classes a failed result can be re-raised as, keyed by class name
_ERROR_TYPES: dict[str, type[HostError]] = {
    cls.__name__: cls
    for cls in (AuthFailure, NotFound, ParseFailure, RemoteError, UnsupportedOperation)
}


class HostCredential(BaseModel):
    """Everything needed to open an SSH connection to one host."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 22
    username: str
    key_path: str


class ExecStatus(str, Enum):
    success = "success"
    timeout = "timeout"
    remote_error = "remote_error"


class ExecutionResult(BaseModel):
    """Internal result of one Connection Executor invocation."""

    model_config = ConfigDict(frozen=True)

    command: str
    status: ExecStatus
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ExecStatus.success

    def raise_for_status(self) -> "ExecutionResult":
        """Raise the typed error for a failed result, else return self."""
        if self.status is ExecStatus.timeout:
            raise ConnectTimeout(self.error or "connection timed out")
        if self.status is ExecStatus.remote_error:
            message = self.error or self.stderr.strip() or (
                f"command exited with status {self.exit_code}"
            )
            cls = _ERROR_TYPES.get(self.error_type or "", RemoteError)
            if issubclass(cls, RemoteError):
                raise cls(message, exit_code=self.exit_code, stderr=self.stderr)
            raise cls(message)
        return self


class ConnectionState(str, Enum):
    online = "online"
    offline = "offline"
    unknown = "unknown"


class ConnectionCheck(BaseModel):
    """Outcome of a connect-test."""

    status: ConnectionState
    error: Optional[str] = None
    duration: float = 0.0
