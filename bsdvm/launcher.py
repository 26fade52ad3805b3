"""Hypervisor process start-up."""

from __future__ import annotations

import subprocess

from bsdvm.exceptions import DependencyMissing, LaunchFailed
from bsdvm.models import LaunchPlan
from bsdvm.network import cleanup_stale_tap
from bsdvm.utils import log


class Launcher:
    def __init__(self, cleanup_tap: bool = True) -> None:
        self.cleanup_tap = cleanup_tap

    def start(self, plan: LaunchPlan) -> None:
        """Run the plan. QEMU daemonizes once the guest is set up, so a non-zero
        exit here means the instance never started."""
        if self.cleanup_tap:
            cleanup_stale_tap("tap0")
        log("INFO", f"Starting {plan.binary} in background...")
        log("DEBUG", f"Command: {plan.display()}")
        try:
            result = subprocess.run(list(plan.argv), capture_output=True, text=True, check=False)
        except FileNotFoundError:
            raise DependencyMissing(f"Hypervisor binary not found: {plan.binary}")
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip().splitlines()[-5:]
            message = f"{plan.binary} exited with status {result.returncode}"
            if detail:
                message += ":\n  " + "\n  ".join(detail)
            raise LaunchFailed(message)
        log("SUCCESS", f"{plan.binary} started")
