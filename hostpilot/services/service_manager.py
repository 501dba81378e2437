"""Service Lifecycle Manager: probe, install and manage system services."""

from __future__ import annotations

import asyncio
import re
import shlex
from typing import Optional

from hostpilot.errors import UnsupportedOperation
from hostpilot.models.commands import ExecutionResult, HostCredential
from hostpilot.models.services import ManageAction, ServiceActionResult, ServiceStatus
from hostpilot.services import templates
from hostpilot.services.os_detect import detect_os
from hostpilot.services.ssh_executor import OutputCallback, SSHExecutor
from hostpilot.utils.linux_parser import parse_markers
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

COMMON_SERVICES = ("nginx", "docker", "nodejs", "npm", "git")

# Tools with no daemon: installed and active both mean "binary on PATH".
TOOL_SERVICES = frozenset({"nodejs", "npm", "git"})

_SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9@._+-]+$")
_NODE_VERSION_RE = re.compile(r"^\d{1,3}$")

# service -> (binary, version flag)
_BINARIES: dict[str, tuple[str, str]] = {
    "nginx": ("nginx", "-v"),
    "nodejs": ("node", "--version"),
    "postgresql": ("psql", "--version"),
    "redis": ("redis-server", "--version"),
    "mysql": ("mysql", "--version"),
}

_PROBE_SCRIPT = """\
svc={svc}; bin={bin}
if command -v systemctl >/dev/null 2>&1; then
  echo "MANAGER:systemd"
  if systemctl list-unit-files "$svc.service" 2>/dev/null | grep -q "$svc.service"; then echo "INSTALLED:yes"; else echo "INSTALLED:no"; fi
  if systemctl is-active --quiet "$svc" 2>/dev/null; then echo "ACTIVE:yes"; else echo "ACTIVE:no"; fi
  if systemctl is-enabled --quiet "$svc" 2>/dev/null; then echo "ENABLED:yes"; else echo "ENABLED:no"; fi
elif command -v service >/dev/null 2>&1; then
  echo "MANAGER:sysv"
  if [ -f "/etc/init.d/$svc" ]; then echo "INSTALLED:yes"; else echo "INSTALLED:no"; fi
  if service "$svc" status >/dev/null 2>&1; then echo "ACTIVE:yes"; else echo "ACTIVE:no"; fi
  if command -v rc-update >/dev/null 2>&1 && rc-update show default 2>/dev/null | grep -qw "$svc"; then echo "ENABLED:yes"; else echo "ENABLED:no"; fi
else
  echo "MANAGER:none"
fi
if command -v "$bin" >/dev/null 2>&1; then
  echo "BIN:yes"
  echo "VERSION:$("$bin" {flag} 2>&1 | head -n 1)"
else
  echo "BIN:no"
fi
"""


def validate_service_name(service: str) -> str:
    if not _SERVICE_NAME_RE.match(service or ""):
        raise UnsupportedOperation(f"invalid service name: {service!r}")
    return service


def parse_action(action: str) -> ManageAction:
    try:
        return ManageAction(action)
    except ValueError:
        allowed = ", ".join(a.value for a in ManageAction)
        raise UnsupportedOperation(
            f"invalid action {action!r}; expected one of: {allowed}",
        ) from None


def build_probe_script(service: str) -> str:
    binary, flag = _BINARIES.get(service.lower(), (service, "--version"))
    return _PROBE_SCRIPT.format(
        svc=shlex.quote(service), bin=shlex.quote(binary), flag=flag,
    )


def build_manage_command(service: str, action: ManageAction) -> str:
    """systemctl when present, else ``service`` or ``rc-update``."""
    svc = shlex.quote(service)
    if action is ManageAction.enable:
        fallback = f"$SUDO rc-update add {svc} default"
    elif action is ManageAction.disable:
        fallback = f"$SUDO rc-update del {svc} default"
    else:
        fallback = f"$SUDO service {svc} {action.value}"
    return (
        f"{templates.SUDO_PROLOGUE}; "
        f"if command -v systemctl >/dev/null 2>&1; "
        f"then $SUDO systemctl {action.value} {svc}; "
        f"else {fallback}; fi"
    )


def status_from_markers(service: str, output: str) -> ServiceStatus:
    markers = parse_markers(output)
    has_binary = markers.get("BIN") == "yes"
    if service.lower() in TOOL_SERVICES:
        installed = active = has_binary
        enabled = False
    else:
        installed = markers.get("INSTALLED") == "yes" or has_binary
        active = markers.get("ACTIVE") == "yes"
        enabled = markers.get("ENABLED") == "yes"

    if active:
        label = "running"
    elif installed:
        label = "stopped"
    else:
        label = "not-installed"
    return ServiceStatus(
        service=service,
        installed=installed,
        active=active,
        enabled=enabled,
        status=label,
        version=markers.get("VERSION", "") if has_binary else "",
    )


def _action_result(service: str, action: str, result: ExecutionResult) -> ServiceActionResult:
    return ServiceActionResult(
        service=service,
        action=action,
        success=result.ok,
        exit_code=result.exit_code,
        output=result.stdout,
        error_output=result.stderr,
        error=None if result.ok else result.error,
    )


class ServiceManager:
    def __init__(self, executor: SSHExecutor) -> None:
        self._executor = executor

    async def _execute(
        self,
        credential: HostCredential,
        command: str,
        on_output: Optional[OutputCallback],
    ) -> ExecutionResult:
        if on_output is None:
            result = await self._executor.run(credential, command)
        else:
            result = await self._executor.run_streaming(credential, command, on_output)
        # A nonzero exit is a result; a transport failure is an error.
        if result.exit_code is None:
            result.raise_for_status()
        return result

    # ── status ────────────────────────────────────────────────────────

    async def status(self, credential: HostCredential, service: str) -> ServiceStatus:
        """Probe installed / active / enabled independently."""
        validate_service_name(service)
        result = await self._executor.run(
            credential, build_probe_script(service), check=True,
        )
        return status_from_markers(service, result.stdout)

    async def status_many(
        self,
        credential: HostCredential,
        services: tuple[str, ...] = COMMON_SERVICES,
    ) -> list[ServiceStatus]:
        """Probe several services concurrently; failures become ``unknown``."""
        outcomes = await asyncio.gather(
            *(self.status(credential, name) for name in services),
            return_exceptions=True,
        )
        statuses: list[ServiceStatus] = []
        for name, outcome in zip(services, outcomes):
            if isinstance(outcome, BaseException):
                log.warning(
                    "services.status_failed",
                    host=credential.host, service=name, error=str(outcome),
                )
                statuses.append(ServiceStatus(service=name))
            else:
                statuses.append(outcome)
        return statuses

    # ── install ───────────────────────────────────────────────────────

    async def install(
        self,
        credential: HostCredential,
        service: str,
        on_output: Optional[OutputCallback] = None,
        *,
        version: Optional[str] = None,
    ) -> ServiceActionResult:
        """Install *service* with the template for the host's package manager."""
        validate_service_name(service)
        if version is not None and not _NODE_VERSION_RE.match(version):
            raise UnsupportedOperation(f"invalid version: {version!r}")

        profile = await detect_os(self._executor, credential)
        if not profile.supported:
            raise UnsupportedOperation(
                f"installing services is not supported on {profile.pretty_name}",
            )
        template = templates.lookup(service, profile.package_manager)
        if template is None:
            raise UnsupportedOperation(
                f"installation of {service} is not supported "
                f"with {profile.package_manager.value}",
            )

        if on_output is not None:
            await on_output(
                f">>> Detected OS: {profile.pretty_name}\n"
                f">>> Package manager: {profile.package_manager.value}\n\n",
            )
        log.info(
            "services.install_started",
            host=credential.host,
            service=service,
            package_manager=profile.package_manager.value,
        )
        result = await self._execute(
            credential, templates.render(template, version=version), on_output,
        )
        log.info(
            "services.install_finished",
            host=credential.host, service=service, rc=result.exit_code,
        )
        return _action_result(service, "install", result)

    # ── manage ────────────────────────────────────────────────────────

    async def manage(
        self,
        credential: HostCredential,
        service: str,
        action: str,
        on_output: Optional[OutputCallback] = None,
    ) -> ServiceActionResult:
        """start / stop / restart / enable / disable; anything else is rejected."""
        parsed = parse_action(action)
        validate_service_name(service)
        result = await self._execute(
            credential, build_manage_command(service, parsed), on_output,
        )
        log.info(
            "services.managed",
            host=credential.host,
            service=service,
            action=parsed.value,
            rc=result.exit_code,
        )
        return _action_result(service, parsed.value, result)
