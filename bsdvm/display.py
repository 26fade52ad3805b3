"""VNC display credential handling."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Callable

from bsdvm.exceptions import ManagerError
from bsdvm.models import DisplayConfig
from bsdvm.utils import generate_password, log

PASSWORD_MODE = 0o600


def ensure_password_file(path: Path, generator: Callable[[], str] = generate_password) -> Path:
    """Make sure a VNC password file exists and is readable by the owner only.

    A new file is created exclusively with mode 0600 before any secret is
    written. The password itself is never logged.
    """
    path = Path(path)
    if path.exists():
        mode = stat.S_IMODE(path.stat().st_mode)
        if mode & 0o077:
            log("WARN", f"Tightening permissions on {path} (was {oct(mode)})")
            path.chmod(PASSWORD_MODE)
        if path.stat().st_size == 0:
            raise ManagerError(f"VNC password file {path} is empty")
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PASSWORD_MODE)
    with os.fdopen(fd, "w") as f:
        f.write(generator())
    log("INFO", f"Generated VNC password in {path} (mode 0600)")
    return path


def display_config(password_file: Path, listen: str = "localhost") -> DisplayConfig:
    return DisplayConfig(password_file=ensure_password_file(password_file), listen=listen)
