"""In-memory server inventory and metrics history.

These stand in for the relational storage layer: credential resolution,
the reachability flag, and an append-only metrics sink with lookback
queries.  Everything here runs on the event loop, so no locking.
"""

from __future__ import annotations

import json
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from hostpilot.errors import NotFound
from hostpilot.models.commands import ConnectionState
from hostpilot.models.metrics import MetricsHistoryPoint, MetricsRecord, MetricsSample
from hostpilot.models.servers import ServerRecord
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------

class ServerStore:
    def __init__(self) -> None:
        self._servers: dict[str, ServerRecord] = {}

    def add(self, record: ServerRecord) -> ServerRecord:
        self._servers[record.id] = record
        log.info("servers.registered", server_id=record.id, ip=record.ip)
        return record

    def get(self, server_id: str) -> ServerRecord:
        try:
            return self._servers[server_id]
        except KeyError:
            raise NotFound(f"server {server_id} not found") from None

    def all(self) -> list[ServerRecord]:
        return sorted(self._servers.values(), key=lambda s: (s.name, s.ip))

    def list_by_status(self, status: ConnectionState) -> list[ServerRecord]:
        return [s for s in self.all() if s.status is status]

    def update_status(
        self,
        server_id: str,
        status: ConnectionState,
        error: Optional[str] = None,
    ) -> ServerRecord:
        record = self.get(server_id).model_copy(
            update={"status": status, "last_error": error, "last_checked": _utcnow()},
        )
        self._servers[server_id] = record
        return record

    def remove(self, server_id: str) -> None:
        self.get(server_id)
        del self._servers[server_id]
        log.info("servers.removed", server_id=server_id)

    def load_inventory(self, path: str, *, default_username: str, default_port: int = 22) -> int:
        """Register every server listed in a JSON inventory file."""
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(entries, list):
            raise ValueError(f"inventory {path} must contain a JSON list")
        for entry in entries:
            entry.setdefault("username", default_username)
            entry.setdefault("port", default_port)
            self.add(ServerRecord(**entry))
        log.info("servers.inventory_loaded", path=path, count=len(entries))
        return len(entries)

    def __len__(self) -> int:
        return len(self._servers)


# ---------------------------------------------------------------------------
# Metrics history
# ---------------------------------------------------------------------------

def bucket_minutes(hours: float) -> int:
    """Aggregation interval for a lookback window; 0 means raw samples."""
    if hours <= 1:
        return 0
    if hours <= 6:
        return 5
    if hours <= 12:
        return 10
    if hours <= 24:
        return 15
    if hours <= 72:
        return 30
    return 60


def flatten(sample: MetricsSample) -> MetricsHistoryPoint:
    m = sample.metrics
    return MetricsHistoryPoint(
        timestamp=sample.timestamp,
        cpu_usage=m.cpu.usage if m.cpu else None,
        cpu_temperature=m.cpu.temperature if m.cpu else None,
        memory_percentage=m.memory.percentage if m.memory else None,
        memory_used=m.memory.used if m.memory else None,
        disk_percentage=m.disk.percentage if m.disk else None,
        load_1min=m.load.one if m.load else None,
        load_5min=m.load.five if m.load else None,
        load_15min=m.load.fifteen if m.load else None,
    )


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 2)


_AVERAGED = (
    "cpu_usage",
    "cpu_temperature",
    "memory_percentage",
    "memory_used",
    "disk_percentage",
    "load_1min",
    "load_5min",
    "load_15min",
)


def downsample(points: list[MetricsHistoryPoint], minutes: int) -> list[MetricsHistoryPoint]:
    """Average points into fixed buckets aligned to the epoch."""
    if minutes <= 0:
        return points
    width = minutes * 60
    buckets: dict[int, list[MetricsHistoryPoint]] = defaultdict(list)
    for point in points:
        buckets[int(point.timestamp.timestamp()) // width * width].append(point)
    result = []
    for start in sorted(buckets):
        group = buckets[start]
        values = {name: _mean(getattr(p, name) for p in group) for name in _AVERAGED}
        result.append(
            MetricsHistoryPoint(
                timestamp=datetime.fromtimestamp(start, tz=timezone.utc),
                sample_count=len(group),
                **values,
            ),
        )
    return result


class MetricsStore:
    """Append-only per-server sample log."""

    def __init__(self) -> None:
        self._samples: dict[str, list[MetricsSample]] = defaultdict(list)

    def append(
        self,
        server_id: str,
        record: MetricsRecord,
        timestamp: Optional[datetime] = None,
    ) -> MetricsSample:
        sample = MetricsSample(
            server_id=server_id, timestamp=timestamp or _utcnow(), metrics=record,
        )
        self._samples[server_id].append(sample)
        return sample

    def latest(self, server_id: str) -> Optional[MetricsSample]:
        samples = self._samples.get(server_id)
        return samples[-1] if samples else None

    def history(
        self,
        server_id: str,
        hours: float = 24,
        *,
        now: Optional[datetime] = None,
    ) -> list[MetricsHistoryPoint]:
        since = (now or _utcnow()) - timedelta(hours=hours)
        points = [
            flatten(s) for s in self._samples.get(server_id, []) if s.timestamp >= since
        ]
        return downsample(points, bucket_minutes(hours))

    def delete_older_than(self, days: float, *, now: Optional[datetime] = None) -> int:
        cutoff = (now or _utcnow()) - timedelta(days=days)
        removed = 0
        for server_id, samples in self._samples.items():
            kept = [s for s in samples if s.timestamp >= cutoff]
            removed += len(samples) - len(kept)
            self._samples[server_id] = kept
        return removed

    def forget(self, server_id: str) -> None:
        self._samples.pop(server_id, None)

    def count(self, server_id: str) -> int:
        return len(self._samples.get(server_id, []))
