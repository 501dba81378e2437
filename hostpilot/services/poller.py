"""Background Telemetry Poller.

Every tick samples each server currently flagged online, concurrently, and
appends the successful records to the history.  A failed host only loses
its sample for that tick: no retry, and its reachability flag is left
alone (only the explicit status check writes it).
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from hostpilot.models.commands import ConnectionState
from hostpilot.models.servers import ServerRecord
from hostpilot.services.metrics_sampler import MetricsSampler
from hostpilot.services.store import MetricsStore, ServerStore
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)


class MetricsPoller:
    def __init__(
        self,
        sampler: MetricsSampler,
        servers: ServerStore,
        metrics: MetricsStore,
        *,
        interval: float = 5.0,
        retention_days: float = 7,
        cleanup_interval: float = 3600,
    ) -> None:
        self._sampler = sampler
        self._servers = servers
        self._metrics = metrics
        self._interval = interval
        self._retention_days = retention_days
        self._cleanup_interval = cleanup_interval
        self._task: Optional[asyncio.Task] = None
        self._last_cleanup = 0.0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="metrics-poller")
        log.info("poller.started", interval=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("poller.stopped")

    async def _loop(self) -> None:
        # First collection happens immediately.
        while True:
            started = time.monotonic()
            try:
                await self.collect_once()
                self.cleanup_if_due()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.error("poller.tick_failed", error=str(exc))
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self._interval - elapsed))

    async def _sample_one(self, server: ServerRecord) -> None:
        record = await self._sampler.sample(server.credential())
        self._metrics.append(server.id, record)

    async def collect_once(self) -> int:
        """Sample every online server; returns how many samples were stored."""
        servers = self._servers.list_by_status(ConnectionState.online)
        if not servers:
            return 0
        outcomes = await asyncio.gather(
            *(self._sample_one(s) for s in servers), return_exceptions=True,
        )
        stored = 0
        for server, outcome in zip(servers, outcomes):
            if isinstance(outcome, BaseException):
                log.warning(
                    "poller.sample_failed",
                    server_id=server.id,
                    host=server.ip,
                    error=str(outcome),
                )
            else:
                stored += 1
        log.debug("poller.tick", servers=len(servers), stored=stored)
        return stored

    def cleanup_if_due(self) -> int:
        now = time.monotonic()
        if self._last_cleanup and now - self._last_cleanup < self._cleanup_interval:
            return 0
        self._last_cleanup = now
        removed = self._metrics.delete_older_than(self._retention_days)
        if removed:
            log.info("poller.pruned", removed=removed)
        return removed
