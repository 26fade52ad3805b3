"""Host privilege and dependency checks for FreeBSD-VM-Runner."""

from __future__ import annotations

import os
import shutil
import subprocess
from typing import Dict, List

from bsdvm.constants import QEMU_IMG, QEMU_PACKAGE
from bsdvm.exceptions import DependencyMissing, ManagerError
from bsdvm.utils import log, run


def require_root() -> None:
    if os.geteuid() != 0:
        raise ManagerError("You must be root (or use sudo) to run freebsd-vm-runner")


def _pkg_installed(name: str) -> bool:
    try:
        result = run(["pkg", "info", name], check=False, capture_output=True)
    except FileNotFoundError:
        return False
    return result.returncode == 0


def _pkg_install(names: List[str]) -> None:
    log("INFO", f"Installing {', '.join(names)}...")
    try:
        run(["pkg", "install", "-y"] + names)
    except (FileNotFoundError, subprocess.CalledProcessError) as exc:
        raise DependencyMissing(f"Failed to install {', '.join(names)}: {exc}")


def missing_dependencies(profile: Dict, console_mode: str = "none") -> List[str]:
    """Return the packages needed for ``profile`` that are not present on the host."""
    missing: List[str] = []
    if shutil.which(profile["binary"]) is None or shutil.which(QEMU_IMG) is None:
        missing.append(QEMU_PACKAGE)
    for package in profile["packages"]:
        if not _pkg_installed(package):
            missing.append(package)
    if console_mode in ("telnet", "tmux") and shutil.which("telnet") is None:
        missing.append("telnet")
    if console_mode == "tmux" and shutil.which("tmux") is None:
        missing.append("tmux")
    return missing


def check_dependencies(profile: Dict, auto_install: bool = False, console_mode: str = "none") -> None:
    missing = missing_dependencies(profile, console_mode)
    if not missing:
        log("DEBUG", f"All dependencies present for {profile['binary']}")
        return
    if not auto_install:
        raise DependencyMissing(
            f"Missing required packages: {', '.join(missing)}. "
            f"Install them with 'pkg install -y {' '.join(missing)}' or set AUTO_INSTALL=1."
        )
    _pkg_install(missing)
    still_missing = missing_dependencies(profile, console_mode)
    if still_missing:
        raise DependencyMissing(f"Packages still missing after install: {', '.join(still_missing)}")
