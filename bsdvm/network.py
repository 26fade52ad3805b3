"""Tap networking setup for FreeBSD-VM-Runner."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Tuple

from bsdvm.utils import log, run


def render_ifup_scripts(bridge: str) -> Tuple[str, str]:
    """Return the qemu-ifup and qemu-ifdown scripts that attach taps to ``bridge``."""
    ifup = f"#!/bin/sh\nifconfig {bridge} addm $1 up\nifconfig $1 up\n"
    ifdown = f"#!/bin/sh\nifconfig $1 down\nifconfig {bridge} deletem $1\n"
    return ifup, ifdown


def ensure_ifup_scripts(bridge: str, directory: Path) -> None:
    """Write qemu-ifup/qemu-ifdown when they are missing or empty.

    QEMU creates the tap interface itself and runs these scripts on start and
    stop.
    """
    ifup, ifdown = render_ifup_scripts(bridge)
    for name, content in (("qemu-ifup", ifup), ("qemu-ifdown", ifdown)):
        script = Path(directory) / name
        if script.exists() and script.stat().st_size > 0:
            continue
        log("INFO", f"Writing {script} (bridge {bridge})")
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(content)
        script.chmod(0o755)


def cleanup_stale_tap(name: str = "tap0") -> bool:
    """Destroy ``name`` when no process has it open. Returns True if destroyed."""
    try:
        result = run(["ifconfig", name], check=False, capture_output=True)
    except FileNotFoundError:
        return False
    if result.returncode != 0 or "Opened by PID" in result.stdout:
        return False
    try:
        run(["ifconfig", name, "destroy"], capture_output=True)
    except subprocess.CalledProcessError:
        log("DEBUG", f"Could not destroy stale {name}")
        return False
    log("INFO", f"Destroyed stale interface {name}")
    return True
