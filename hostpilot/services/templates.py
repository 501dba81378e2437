"""Install script table keyed by (service, package manager).

The table is read-only.  A pair that is missing here is unsupported; the
service manager refuses it instead of guessing a generic install.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional

from hostpilot.models.services import PackageManager

# Runs first in every install script; $SUDO is empty for root.
SUDO_PROLOGUE = 'if [ "$(id -u)" -ne 0 ]; then SUDO="sudo -n"; else SUDO=""; fi'

DEFAULT_NODE_VERSION = "20"

_APT, _YUM, _PACMAN, _APK = (
    PackageManager.apt,
    PackageManager.yum,
    PackageManager.pacman,
    PackageManager.apk,
)


def _steps(*lines: str) -> str:
    return " && ".join(lines)


_DOCKER_APT = _steps(
    'echo ">>> Installing prerequisites..."',
    "$SUDO apt-get update",
    "$SUDO apt-get install -y ca-certificates curl",
    "$SUDO install -m 0755 -d /etc/apt/keyrings",
    '. /etc/os-release',
    '$SUDO curl -fsSL "https://download.docker.com/linux/$ID/gpg" -o /etc/apt/keyrings/docker.asc',
    "$SUDO chmod a+r /etc/apt/keyrings/docker.asc",
    'echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.asc]'
    ' https://download.docker.com/linux/$ID $VERSION_CODENAME stable"'
    " | $SUDO tee /etc/apt/sources.list.d/docker.list > /dev/null",
    'echo ">>> Installing Docker..."',
    "$SUDO apt-get update",
    "$SUDO apt-get install -y docker-ce docker-ce-cli containerd.io"
    " docker-buildx-plugin docker-compose-plugin",
    "$SUDO systemctl enable --now docker",
    'echo ">>> Docker installation complete!"',
)

_DOCKER_YUM = _steps(
    'echo ">>> Installing yum-utils..."',
    "$SUDO yum install -y yum-utils",
    "$SUDO yum-config-manager --add-repo https://download.docker.com/linux/centos/docker-ce.repo",
    'echo ">>> Installing Docker..."',
    "$SUDO yum install -y docker-ce docker-ce-cli containerd.io"
    " docker-buildx-plugin docker-compose-plugin",
    "$SUDO systemctl enable --now docker",
    'echo ">>> Docker installation complete!"',
)


def _package_install(
    manager: PackageManager,
    label: str,
    packages: str,
    unit: Optional[str] = None,
) -> str:
    install = {
        _APT: f"$SUDO apt-get update && $SUDO apt-get install -y {packages}",
        _YUM: f"$SUDO yum install -y {packages}",
        _PACMAN: f"$SUDO pacman -Sy --noconfirm {packages}",
        _APK: f"$SUDO apk add --no-cache {packages}",
    }[manager]
    steps = [f'echo ">>> Installing {label}..."', install]
    if unit is not None:
        if manager is _APK:
            steps += [f"$SUDO rc-update add {unit} default", f"$SUDO rc-service {unit} start"]
        else:
            steps.append(f"$SUDO systemctl enable --now {unit}")
    steps.append(f'echo ">>> {label} installation complete!"')
    return _steps(*steps)


_NODE_APT = _steps(
    'echo ">>> Adding NodeSource repository for Node.js v{version}..."',
    "curl -fsSL https://deb.nodesource.com/setup_{version}.x | $SUDO bash -",
    "$SUDO apt-get install -y nodejs",
    'echo ">>> Node.js installation complete!"',
    "node --version",
)

_NODE_YUM = _steps(
    'echo ">>> Adding NodeSource repository for Node.js v{version}..."',
    "curl -fsSL https://rpm.nodesource.com/setup_{version}.x | $SUDO bash -",
    "$SUDO yum install -y nodejs",
    'echo ">>> Node.js installation complete!"',
    "node --version",
)

# nodejs scripts take a ``{version}`` placeholder (major version digits only).
INSTALL_TEMPLATES: Mapping[tuple[str, PackageManager], str] = MappingProxyType({
    ("nginx", _APT): _package_install(_APT, "Nginx", "nginx", "nginx"),
    ("nginx", _YUM): _package_install(_YUM, "Nginx", "nginx", "nginx"),
    ("nginx", _PACMAN): _package_install(_PACMAN, "Nginx", "nginx", "nginx"),
    ("nginx", _APK): _package_install(_APK, "Nginx", "nginx", "nginx"),
    ("docker", _APT): _DOCKER_APT,
    ("docker", _YUM): _DOCKER_YUM,
    ("docker", _PACMAN): _package_install(_PACMAN, "Docker", "docker", "docker"),
    ("docker", _APK): _package_install(_APK, "Docker", "docker", "docker"),
    ("nodejs", _APT): _NODE_APT,
    ("nodejs", _YUM): _NODE_YUM,
    ("nodejs", _PACMAN): _package_install(_PACMAN, "Node.js", "nodejs npm"),
    ("nodejs", _APK): _package_install(_APK, "Node.js", "nodejs npm"),
    ("npm", _APT): _package_install(_APT, "npm", "npm"),
    ("npm", _YUM): _package_install(_YUM, "npm", "npm"),
    ("npm", _PACMAN): _package_install(_PACMAN, "npm", "npm"),
    ("npm", _APK): _package_install(_APK, "npm", "npm"),
    ("git", _APT): _package_install(_APT, "Git", "git"),
    ("git", _YUM): _package_install(_YUM, "Git", "git"),
    ("git", _PACMAN): _package_install(_PACMAN, "Git", "git"),
    ("git", _APK): _package_install(_APK, "Git", "git"),
    ("mysql", _APT): _package_install(_APT, "MySQL", "mysql-server", "mysql"),
    ("mysql", _YUM): _package_install(_YUM, "MySQL", "mysql-server", "mysqld"),
    ("postgresql", _APT): _package_install(
        _APT, "PostgreSQL", "postgresql postgresql-contrib", "postgresql",
    ),
    ("postgresql", _YUM): _steps(
        'echo ">>> Installing PostgreSQL..."',
        "$SUDO yum install -y postgresql-server postgresql-contrib",
        "$SUDO postgresql-setup --initdb",
        "$SUDO systemctl enable --now postgresql",
        'echo ">>> PostgreSQL installation complete!"',
    ),
    ("redis", _APT): _package_install(_APT, "Redis", "redis-server", "redis-server"),
    ("redis", _YUM): _package_install(_YUM, "Redis", "redis", "redis"),
    ("redis", _APK): _package_install(_APK, "Redis", "redis", "redis"),
})

SUPPORTED_SERVICES = frozenset(service for service, _ in INSTALL_TEMPLATES)


def lookup(service: str, manager: PackageManager) -> Optional[str]:
    """Raw template for the pair, or None when unmapped."""
    return INSTALL_TEMPLATES.get((service.lower(), manager))


def render(template: str, *, version: Optional[str] = None) -> str:
    """Prefix the sudo prologue and fill the version placeholder."""
    body = template.replace("{version}", version or DEFAULT_NODE_VERSION)
    return f"{SUDO_PROLOGUE}; {body}"
