"""Tests for the server inventory and metrics history stores."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from hostpilot.errors import NotFound
from hostpilot.models.commands import ConnectionState
from hostpilot.models.metrics import CpuMetrics, MemoryMetrics, MetricsRecord
from hostpilot.services.store import MetricsStore, ServerStore, bucket_minutes

NOW = datetime(2024, 3, 3, 12, 0, tzinfo=timezone.utc)


def _record(cpu, mem=None):
    memory = None
    if mem is not None:
        memory = MemoryMetrics(used=mem * 10, total=1000, free=1000 - mem * 10, percentage=mem)
    return MetricsRecord(cpu=CpuMetrics(usage=cpu), memory=memory)


class TestServerStore:
    def test_get_missing(self):
        with pytest.raises(NotFound):
            ServerStore().get("nope")

    def test_update_status_stamps_check_time(self, server_store):
        record = server_store.update_status("web-01", ConnectionState.offline, "timed out")
        assert record.status is ConnectionState.offline
        assert record.last_error == "timed out"
        assert record.last_checked is not None
        assert server_store.list_by_status(ConnectionState.online) == []

    def test_remove(self, server_store):
        server_store.remove("web-01")
        assert len(server_store) == 0
        with pytest.raises(NotFound):
            server_store.remove("web-01")

    def test_load_inventory(self, tmp_path):
        path = tmp_path / "servers.json"
        path.write_text(json.dumps([
            {"id": "app-1", "name": "app-1", "ip": "10.1.0.1", "private_key_path": "/k"},
            {"name": "app-2", "ip": "10.1.0.2", "username": "admin", "port": 2222,
             "private_key_path": "/k"},
        ]))
        store = ServerStore()

        assert store.load_inventory(str(path), default_username="ubuntu") == 2

        first, second = store.all()
        assert (first.username, first.port) == ("ubuntu", 22)
        assert (second.username, second.port) == ("admin", 2222)
        assert second.id

    def test_inventory_must_be_a_list(self, tmp_path):
        path = tmp_path / "servers.json"
        path.write_text('{"ip": "10.1.0.1"}')
        with pytest.raises(ValueError):
            ServerStore().load_inventory(str(path), default_username="root")


class TestBuckets:
    @pytest.mark.parametrize(
        "hours,minutes",
        [(0.5, 0), (1, 0), (6, 5), (12, 10), (24, 15), (48, 30), (72, 30), (168, 60)],
    )
    def test_bucket_for_window(self, hours, minutes):
        assert bucket_minutes(hours) == minutes


class TestHistory:
    def test_raw_points_within_an_hour(self):
        store = MetricsStore()
        store.append("web-01", _record(10.0), NOW - timedelta(minutes=90))
        store.append("web-01", _record(20.0), NOW - timedelta(minutes=30))
        store.append("web-01", _record(30.0), NOW - timedelta(minutes=1))

        points = store.history("web-01", hours=1, now=NOW)

        assert [p.cpu_usage for p in points] == [20.0, 30.0]
        assert all(p.sample_count == 1 for p in points)

    def test_averages_into_aligned_buckets(self):
        store = MetricsStore()
        base = datetime(2024, 3, 3, 11, 0, tzinfo=timezone.utc)
        store.append("web-01", _record(10.0, 40), base + timedelta(minutes=1))
        store.append("web-01", _record(20.0, 41), base + timedelta(minutes=4))
        store.append("web-01", _record(40.0), base + timedelta(minutes=7))

        points = store.history("web-01", hours=6, now=NOW)

        assert len(points) == 2
        first, second = points
        assert first.timestamp == base
        assert first.sample_count == 2
        assert first.cpu_usage == 15.0
        assert first.memory_percentage == 40.5
        assert second.timestamp == base + timedelta(minutes=5)
        assert second.memory_percentage is None

    def test_unknown_server(self):
        assert MetricsStore().history("ghost", now=NOW) == []

    def test_delete_older_than(self):
        store = MetricsStore()
        store.append("web-01", _record(1.0), NOW - timedelta(days=10))
        store.append("db-01", _record(1.0), NOW - timedelta(days=8))
        store.append("web-01", _record(2.0), NOW - timedelta(days=1))

        assert store.delete_older_than(7, now=NOW) == 2
        assert store.count("web-01") == 1
        assert store.count("db-01") == 0
        assert store.latest("web-01").metrics.cpu.usage == 2.0

    def test_forget(self):
        store = MetricsStore()
        store.append("web-01", _record(1.0), NOW)
        store.forget("web-01")
        assert store.latest("web-01") is None
