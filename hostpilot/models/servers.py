"""Managed server records (owned by the inventory store)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from hostpilot.models.commands import ConnectionState, HostCredential


class ServerRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    ip: str
    port: int = 22
    username: str
    private_key_path: str
    status: ConnectionState = ConnectionState.unknown
    last_error: Optional[str] = None
    last_checked: Optional[datetime] = None

    def credential(self) -> HostCredential:
        return HostCredential(
            host=self.ip,
            port=self.port,
            username=self.username,
            key_path=self.private_key_path,
        )


class ServerCreateRequest(BaseModel):
    """Request body for POST /servers."""

    name: str = ""
    ip: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    username: Optional[str] = None
    private_key_path: str = Field(min_length=1)


class ServerResponse(BaseModel):
    """Public view of a server (no key path)."""

    id: str
    name: str
    ip: str
    port: int
    username: str
    status: ConnectionState
    last_error: Optional[str] = None
    last_checked: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ServerRecord) -> "ServerResponse":
        return cls(**record.model_dump(exclude={"private_key_path"}))
