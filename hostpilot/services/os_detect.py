"""OS and package-manager detection."""

from __future__ import annotations

from hostpilot.models.commands import HostCredential
from hostpilot.models.services import OsFamily, OsProfile, PackageManager
from hostpilot.services.ssh_executor import SSHExecutor
from hostpilot.utils.linux_parser import parse_release_file, parse_single_line
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

OS_DETECT_COMMAND = (
    "cat /etc/os-release 2>/dev/null"
    " || cat /etc/lsb-release 2>/dev/null"
    " || uname -a"
)

# Checked in order; the first substring found in the distro id wins.
_FAMILY_RULES: list[tuple[tuple[str, ...], OsFamily, PackageManager]] = [
    (("ubuntu", "debian"), OsFamily.debian, PackageManager.apt),
    (("centos", "rhel", "fedora"), OsFamily.rhel, PackageManager.yum),
    (("arch",), OsFamily.arch, PackageManager.pacman),
    (("alpine",), OsFamily.alpine, PackageManager.apk),
]


def classify(distro_id: str) -> tuple[OsFamily, PackageManager]:
    """Map a distro id (or ID_LIKE list) onto an OS family and package manager."""
    value = distro_id.lower()
    for needles, family, manager in _FAMILY_RULES:
        if any(needle in value for needle in needles):
            return family, manager
    return OsFamily.unknown, PackageManager.unknown


def build_profile(output: str) -> OsProfile:
    """Build an OsProfile from os-release, lsb-release or ``uname -a`` output."""
    info = parse_release_file(output)
    if not info:
        # uname -a fallback: nothing to classify
        banner = parse_single_line(output) or "Unknown"
        return OsProfile(name=banner, pretty_name=banner)

    distro_id = info.get("ID") or info.get("DISTRIB_ID") or "unknown"
    family, manager = classify(distro_id)
    if family is OsFamily.unknown and "ID_LIKE" in info:
        family, manager = classify(info["ID_LIKE"])

    return OsProfile(
        id=distro_id.lower(),
        name=info.get("NAME") or info.get("DISTRIB_ID") or info.get("PRETTY_NAME") or "Unknown",
        version=(
            info.get("VERSION")
            or info.get("VERSION_ID")
            or info.get("DISTRIB_RELEASE")
            or "Unknown"
        ),
        pretty_name=(
            info.get("PRETTY_NAME") or info.get("DISTRIB_DESCRIPTION") or "Unknown OS"
        ),
        os_family=family,
        package_manager=manager,
    )


async def detect_os(executor: SSHExecutor, credential: HostCredential) -> OsProfile:
    """Probe the host's release files and classify them."""
    result = await executor.run(credential, OS_DETECT_COMMAND, check=True)
    profile = build_profile(result.stdout)
    log.info(
        "os.detected",
        host=credential.host,
        os_id=profile.id,
        package_manager=profile.package_manager.value,
    )
    return profile
