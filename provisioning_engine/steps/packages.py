# provisioning_engine/steps/packages.py
"""Package-manager detection and non-interactive installs."""

import logging
from typing import Iterable, Optional

from provisioning_engine.core.errors import PreconditionFailed

logger = logging.getLogger(__name__)

DETECT_COMMAND = (
    "if command -v apt-get >/dev/null 2>&1; then echo apt; "
    "elif command -v dnf >/dev/null 2>&1; then echo dnf; "
    "elif command -v yum >/dev/null 2>&1; then echo yum; "
    "else echo unknown; fi"
)

INSTALL_TIMEOUT = 360


def detect_package_manager(remote) -> str:
    manager = remote.run(DETECT_COMMAND, label="detect package manager", timeout=10).stdout.strip()
    if manager not in ("apt", "dnf", "yum"):
        raise PreconditionFailed("Unsupported OS: no apt-get, dnf or yum found")
    logger.info(f"[packages] using {manager}")
    return manager


def _base(manager: str):
    if manager == "apt":
        return ["sudo", "-n", "env", "DEBIAN_FRONTEND=noninteractive", "apt-get"]
    return ["sudo", "-n", manager]


def refresh_index(remote, manager: str, timeout: float = 180) -> None:
    args = ["update", "-y"] if manager == "apt" else ["makecache", "-y"]
    remote.run(_base(manager) + args, label=f"{manager} refresh", timeout=timeout)


def install(
    remote,
    manager: str,
    packages: Iterable[str],
    *,
    label: Optional[str] = None,
    timeout: float = INSTALL_TIMEOUT,
) -> None:
    """Already-installed packages are no-ops for every supported manager."""
    packages = list(packages)
    remote.run(
        _base(manager) + ["install", "-y", *packages],
        label=label or f"install {' '.join(packages)}",
        timeout=timeout,
    )


def command_output(remote, command: str, label: str) -> Optional[str]:
    """First line of a version probe, None when the tool is missing."""
    result = remote.run(command, label=label, timeout=15, allow_non_zero=True)
    if not result.ok:
        return None
    text = (result.stdout or result.stderr).strip()
    return text.splitlines()[0] if text else None
