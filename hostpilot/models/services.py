"""OS profile and service lifecycle models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OsFamily(str, Enum):
    debian = "debian"
    rhel = "rhel"
    arch = "arch"
    alpine = "alpine"
    unknown = "unknown"


class PackageManager(str, Enum):
    apt = "apt"
    yum = "yum"
    pacman = "pacman"
    apk = "apk"
    unknown = "unknown"


class OsProfile(BaseModel):
    id: str = "unknown"
    name: str = "Unknown"
    version: str = "Unknown"
    pretty_name: str = "Unknown OS"
    os_family: OsFamily = OsFamily.unknown
    package_manager: PackageManager = PackageManager.unknown

    @property
    def supported(self) -> bool:
        return self.package_manager is not PackageManager.unknown


class ManageAction(str, Enum):
    start = "start"
    stop = "stop"
    restart = "restart"
    enable = "enable"
    disable = "disable"


class ServiceStatus(BaseModel):
    """The three flags are probed independently and may disagree."""

    service: str
    installed: bool = False
    active: bool = False
    enabled: bool = False
    status: str = "unknown"
    version: str = ""


class ServiceActionResult(BaseModel):
    service: str
    action: str
    success: bool
    exit_code: Optional[int] = None
    output: str = ""
    error_output: str = ""
    error: Optional[str] = None
