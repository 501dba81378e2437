"""Utilities for parsing Linux command output.

Every parser is pure and tolerant: output that does not have the expected
shape yields ``None`` (or an empty collection) instead of raising, so a
single odd host never breaks a whole metrics record.
"""

from __future__ import annotations

import math
import posixpath
import re
from datetime import datetime, timezone
from typing import NamedTuple, Optional

from hostpilot.errors import ParseFailure
from hostpilot.models.files import FileEntry, SearchResult
from hostpilot.models.metrics import DiskMetrics, LoadAverage, MemoryMetrics


def round_half_up(value: float) -> int:
    """Round like the admins' own tools do (0.5 goes up)."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# uname / hostname / nproc
# ---------------------------------------------------------------------------

def parse_single_line(output: str) -> Optional[str]:
    """First non-empty line, stripped (``uname -srm``, ``hostname``)."""
    for line in output.splitlines():
        if line.strip():
            return line.strip()
    return None


def parse_nproc(output: str) -> Optional[int]:
    line = parse_single_line(output)
    if line is None or not line.isdigit():
        return None
    return int(line)


# ---------------------------------------------------------------------------
# uptime
# ---------------------------------------------------------------------------

_UPTIME_USERS_RE = re.compile(r"up\s+(.+?),\s+\d+\s+users?")
_UPTIME_LOAD_RE = re.compile(r"up\s+(.+?),\s+load averages?:")
_LOAD_RE = re.compile(
    r"load averages?:\s+([\d.]+),?\s+([\d.]+),?\s+([\d.]+)",
)


def parse_uptime(output: str) -> Optional[str]:
    """Human uptime fragment, e.g. ``3 days, 4:05``."""
    m = _UPTIME_USERS_RE.search(output) or _UPTIME_LOAD_RE.search(output)
    return m.group(1).strip() if m else None


def parse_load_average(output: str) -> Optional[LoadAverage]:
    m = _LOAD_RE.search(output)
    if not m:
        return None
    return LoadAverage.model_validate({
        "1min": float(m.group(1)),
        "5min": float(m.group(2)),
        "15min": float(m.group(3)),
    })


# ---------------------------------------------------------------------------
# free -m / /proc/meminfo
# ---------------------------------------------------------------------------

def parse_free(output: str) -> Optional[MemoryMetrics]:
    """Parse the ``Mem:`` row of ``free -m`` (total, used, free in MiB)."""
    for line in output.splitlines():
        if not line.startswith("Mem:"):
            continue
        parts = line.split()
        try:
            total, used, free = int(parts[1]), int(parts[2]), int(parts[3])
        except (IndexError, ValueError):
            return None
        percentage = round_half_up(used / total * 100) if total > 0 else 0
        return MemoryMetrics(
            total=total, used=used, free=free, percentage=percentage,
        )
    return None


_MEMTOTAL_RE = re.compile(r"MemTotal:\s+(\d+)")


def parse_meminfo_total(output: str) -> Optional[str]:
    """``MemTotal`` from /proc/meminfo as a ``"<n> MB"`` string."""
    m = _MEMTOTAL_RE.search(output)
    if not m:
        return None
    return f"{round_half_up(int(m.group(1)) / 1024)} MB"


# ---------------------------------------------------------------------------
# df -h /
# ---------------------------------------------------------------------------

def parse_df(output: str) -> Optional[DiskMetrics]:
    """Parse ``df -h /``; tolerates the filesystem column wrapping onto its own line."""
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2 or not lines[0].lower().startswith("filesystem"):
        return None
    parts = " ".join(lines[1:]).split()
    if len(parts) < 5:
        return None
    pct = parts[4].rstrip("%")
    return DiskMetrics(
        total=parts[1],
        used=parts[2],
        available=parts[3],
        percentage=int(pct) if pct.isdigit() else None,
    )


# ---------------------------------------------------------------------------
# /proc/cpuinfo, thermal zones
# ---------------------------------------------------------------------------

_MODEL_RE = re.compile(r"model name\s*:\s*(.+)")


def parse_cpu_model(output: str) -> Optional[str]:
    m = _MODEL_RE.search(output)
    return m.group(1).strip() if m else None


def parse_temperature(output: str) -> Optional[float]:
    """Thermal zone reading in °C (sysfs reports millidegrees)."""
    line = parse_single_line(output)
    if line is None:
        return None
    try:
        value = float(line.lstrip("+"))
    except ValueError:
        return None
    if value > 1000:
        value /= 1000
    return round(value, 1)


# ---------------------------------------------------------------------------
# /proc/stat
# ---------------------------------------------------------------------------

class CpuSample(NamedTuple):
    """Cumulative jiffies since boot from the aggregate ``cpu`` line."""

    active: int
    idle: int


def parse_cpu_sample(line: str) -> CpuSample:
    """Parse ``cpu user nice system idle iowait irq softirq ...``."""
    parts = line.split()
    if len(parts) < 5 or parts[0] != "cpu":
        raise ParseFailure(f"not a /proc/stat cpu line: {line!r}")
    try:
        fields = [int(p) for p in parts[1:8]]
    except ValueError as exc:
        raise ParseFailure(f"non-numeric /proc/stat counters: {line!r}") from exc
    fields += [0] * (7 - len(fields))
    user, nice, system, idle, iowait, irq, softirq = fields
    return CpuSample(
        active=user + nice + system + irq + softirq,
        idle=idle + iowait,
    )


def compute_cpu_usage(first: CpuSample, second: CpuSample) -> float:
    """Busy share between two samples, in percent with one decimal."""
    active = second.active - first.active
    idle = second.idle - first.idle
    total = active + idle
    if total <= 0:
        return 0.0
    return round(active / total * 100, 1)


def parse_cpu_usage(output: str) -> Optional[float]:
    """Usage from two ``cpu`` lines taken one interval apart."""
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    try:
        first = parse_cpu_sample(lines[0])
        second = parse_cpu_sample(lines[1])
    except ParseFailure:
        return None
    return compute_cpu_usage(first, second)


# ---------------------------------------------------------------------------
# /etc/os-release, /etc/lsb-release
# ---------------------------------------------------------------------------

_RELEASE_LINE_RE = re.compile(r"""^([A-Z_][A-Z0-9_]*)=["']?(.*?)["']?$""")


def parse_release_file(output: str) -> dict[str, str]:
    """``KEY="value"`` lines into a mapping; other lines are ignored."""
    data: dict[str, str] = {}
    for line in output.splitlines():
        m = _RELEASE_LINE_RE.match(line.strip())
        if m and m.group(2):
            data[m.group(1)] = m.group(2)
    return data


def parse_pretty_os(output: str) -> Optional[str]:
    """Distribution display name, e.g. ``Ubuntu 24.04.1 LTS``."""
    info = parse_release_file(output)
    if "PRETTY_NAME" in info:
        return info["PRETTY_NAME"]
    if "NAME" in info and "VERSION" in info:
        return f"{info['NAME']} {info['VERSION']}"
    if "DISTRIB_DESCRIPTION" in info:
        return info["DISTRIB_DESCRIPTION"]
    return info.get("NAME")


# ---------------------------------------------------------------------------
# ls -la
# ---------------------------------------------------------------------------

def sort_entries(entries):
    """Directories first, then case-sensitive order of name."""
    return sorted(entries, key=lambda e: (not e.is_directory, e.name))


def join_remote(directory: str, name: str) -> str:
    return directory + name if directory.endswith("/") else f"{directory}/{name}"


def parse_ls_la(
    output: str,
    dir_path: str,
    now: Optional[datetime] = None,
) -> list[FileEntry]:
    """Parse ``ls -la`` by column position.

    ``ls`` gives no machine-readable mtime here, so ``modified`` is the
    time of parsing.
    """
    stamp = now or datetime.now(timezone.utc)
    entries: list[FileEntry] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 9:
            continue
        permissions = parts[0]
        name = " ".join(parts[8:])
        if name in (".", ".."):
            continue
        is_dir = permissions.startswith("d")
        size = int(parts[4]) if parts[4].isdigit() else 0
        entries.append(
            FileEntry(
                name=name,
                path=join_remote(dir_path, name),
                is_directory=is_dir,
                size=0 if is_dir else size,
                permissions=permissions,
                modified=stamp,
            ),
        )
    return sort_entries(entries)


def ls_reports_missing(output: str) -> bool:
    return "cannot access" in output or "No such file" in output


# ---------------------------------------------------------------------------
# find -printf 'f|%p\n'
# ---------------------------------------------------------------------------

def parse_find_output(output: str, search_path: str) -> list[SearchResult]:
    """Parse ``<f|d>|<path>`` lines produced by the search command."""
    results: list[SearchResult] = []
    for line in output.splitlines():
        kind, sep, path = line.partition("|")
        if not sep or kind not in ("f", "d") or not path:
            continue
        if path.rstrip("/") == search_path.rstrip("/"):
            continue
        is_dir = kind == "d"
        results.append(
            SearchResult(
                name=posixpath.basename(path.rstrip("/")) or path,
                path=path,
                directory=posixpath.dirname(path) or "/",
                is_directory=is_dir,
                is_file=not is_dir,
            ),
        )
    return sort_entries(results)


# ---------------------------------------------------------------------------
# KEY:value marker output (service probes)
# ---------------------------------------------------------------------------

def parse_markers(output: str) -> dict[str, str]:
    """Collect ``KEY:value`` lines printed by probe scripts."""
    markers: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.isupper() and key.isalpha():
            markers[key] = value.strip()
    return markers
