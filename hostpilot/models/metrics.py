"""Metrics snapshot and history models.

Every field is optional: a command in the sampling battery that fails or
prints something unexpected simply leaves its field out of the record.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CpuMetrics(BaseModel):
    usage: Optional[float] = None
    cores: Optional[int] = None
    model: Optional[str] = None
    temperature: Optional[float] = None


class MemoryMetrics(BaseModel):
    used: int
    total: int
    free: int
    percentage: int


class DiskMetrics(BaseModel):
    total: str
    used: str
    available: str
    percentage: Optional[int] = None


class LoadAverage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    one: float = Field(alias="1min")
    five: float = Field(alias="5min")
    fifteen: float = Field(alias="15min")


class MetricsRecord(BaseModel):
    """Point-in-time snapshot of one host, never updated in place."""

    model_config = ConfigDict(frozen=True)

    cpu: Optional[CpuMetrics] = None
    memory: Optional[MemoryMetrics] = None
    disk: Optional[DiskMetrics] = None
    load: Optional[LoadAverage] = None
    os: Optional[str] = None
    hostname: Optional[str] = None
    uptime: Optional[str] = None
    total_ram: Optional[str] = None

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class MetricsSample(BaseModel):
    """A stored record with its collection time."""

    server_id: str
    timestamp: datetime
    metrics: MetricsRecord


class MetricsHistoryPoint(BaseModel):
    """Flattened (and possibly averaged) point for charts."""

    timestamp: datetime
    cpu_usage: Optional[float] = None
    cpu_temperature: Optional[float] = None
    memory_percentage: Optional[float] = None
    memory_used: Optional[float] = None
    disk_percentage: Optional[float] = None
    load_1min: Optional[float] = None
    load_5min: Optional[float] = None
    load_15min: Optional[float] = None
    sample_count: int = 1
