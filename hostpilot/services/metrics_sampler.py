"""Metrics Sampler: one SSH session, a fixed command battery, one record."""

from __future__ import annotations

from hostpilot.models.commands import ExecutionResult, HostCredential
from hostpilot.models.metrics import CpuMetrics, MetricsRecord
from hostpilot.services.ssh_executor import SSHExecutor
from hostpilot.utils.linux_parser import (
    parse_cpu_model,
    parse_cpu_usage,
    parse_df,
    parse_free,
    parse_load_average,
    parse_meminfo_total,
    parse_nproc,
    parse_pretty_os,
    parse_single_line,
    parse_temperature,
    parse_uptime,
)
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

# Order matters: results are read back by position.
BATTERY: tuple[str, ...] = (
    "uname -srm",
    "uptime",
    "free -m",
    "df -h /",
    "nproc",
    'grep -m1 "model name" /proc/cpuinfo',
    "grep MemTotal /proc/meminfo",
    "hostname",
    "grep '^cpu ' /proc/stat && sleep 1 && grep '^cpu ' /proc/stat",
    "cat /etc/os-release 2>/dev/null",
    "cat /sys/class/thermal/thermal_zone0/temp 2>/dev/null",
)

(
    _UNAME,
    _UPTIME,
    _FREE,
    _DF,
    _NPROC,
    _CPUINFO,
    _MEMINFO,
    _HOSTNAME,
    _PROC_STAT,
    _OS_RELEASE,
    _THERMAL,
) = range(len(BATTERY))


def _stdout(results: list[ExecutionResult], index: int) -> str:
    """Output of a command that succeeded, else an empty string."""
    if index >= len(results) or not results[index].ok:
        return ""
    return results[index].stdout


def reduce_results(results: list[ExecutionResult]) -> MetricsRecord:
    """Parse each battery output independently; a bad one only drops its field."""

    def out(index: int) -> str:
        return _stdout(results, index)

    usage = parse_cpu_usage(out(_PROC_STAT))
    cores = parse_nproc(out(_NPROC))
    model = parse_cpu_model(out(_CPUINFO))
    temperature = parse_temperature(out(_THERMAL))
    cpu = None
    if any(v is not None for v in (usage, cores, model, temperature)):
        cpu = CpuMetrics(usage=usage, cores=cores, model=model, temperature=temperature)

    uptime_output = out(_UPTIME)
    return MetricsRecord(
        cpu=cpu,
        memory=parse_free(out(_FREE)),
        disk=parse_df(out(_DF)),
        load=parse_load_average(uptime_output),
        os=parse_pretty_os(out(_OS_RELEASE)) or parse_single_line(out(_UNAME)),
        hostname=parse_single_line(out(_HOSTNAME)),
        uptime=parse_uptime(uptime_output),
        total_ram=parse_meminfo_total(out(_MEMINFO)),
    )


class MetricsSampler:
    def __init__(self, executor: SSHExecutor) -> None:
        self._executor = executor

    async def sample(self, credential: HostCredential) -> MetricsRecord:
        """Run the battery over one connection and reduce it to a record.

        Connection failures raise; individual command failures do not.
        """
        results = await self._executor.run_batch(credential, list(BATTERY))
        failed = [r.command for r in results if not r.ok]
        if failed:
            log.debug("metrics.partial", host=credential.host, failed=failed)
        return reduce_results(results)
