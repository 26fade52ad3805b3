"""Host process table access."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List

try:
    import psutil  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("psutil is required but not installed") from exc

from bsdvm.constants import HYPERVISOR_PREFIX
from bsdvm.models import ProcessInfo
from bsdvm.utils import log


_PATH_OPTIONS = {"-hda", "-hdb", "-hdc", "-hdd", "-cdrom"}


def is_hypervisor(info: ProcessInfo) -> bool:
    if info.name.startswith(HYPERVISOR_PREFIX):
        return True
    if info.cmdline:
        return os.path.basename(info.cmdline[0]).startswith(HYPERVISOR_PREFIX)
    return False


def referenced_paths(cmdline: Iterable[str]) -> List[str]:
    """Return the image paths named on a QEMU command line.

    Covers ``file=`` components of comma-separated options (``-drive``,
    ``-blockdev``) and the bare path following ``-hda``/``-cdrom`` style flags.
    """
    paths: List[str] = []
    previous = ""
    for arg in cmdline:
        if previous in _PATH_OPTIONS:
            paths.append(arg)
        for part in arg.split(","):
            if part.startswith("file="):
                paths.append(part[len("file="):])
        previous = arg
    return paths


def references_path(info: ProcessInfo, path: Path) -> bool:
    target = os.path.realpath(path)
    for candidate in referenced_paths(info.cmdline):
        if not os.path.isabs(candidate) and info.cwd:
            candidate = os.path.join(info.cwd, candidate)
        if os.path.realpath(candidate) == target:
            return True
    return False


class ProcessTableReader:
    """Snapshot queries against the live process table (via psutil)."""

    def processes(self) -> List[ProcessInfo]:
        snapshot: List[ProcessInfo] = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            try:
                cmdline = tuple(proc.info.get("cmdline") or ())
                try:
                    cwd = proc.cwd()
                except (psutil.AccessDenied, psutil.ZombieProcess):
                    cwd = None
                snapshot.append(
                    ProcessInfo(pid=proc.info["pid"], name=proc.info.get("name") or "", cmdline=cmdline, cwd=cwd)
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return snapshot

    def hypervisors(self) -> List[ProcessInfo]:
        return [info for info in self.processes() if is_hypervisor(info)]

    def holders(self, path: Path) -> List[int]:
        """Return pids of processes that currently hold ``path`` open."""
        target = os.path.realpath(path)
        pids: List[int] = []
        for proc in psutil.process_iter(["pid"]):
            try:
                for opened in proc.open_files():
                    if os.path.realpath(opened.path) == target:
                        pids.append(proc.info["pid"])
                        break
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            except OSError as exc:
                log("DEBUG", f"Cannot inspect open files of pid {proc.info.get('pid')}: {exc}")
                continue
        return pids

    def users(self, path: Path) -> List[int]:
        """Pids holding ``path`` open or naming it on a hypervisor command line."""
        pids = self.holders(path)
        for info in self.hypervisors():
            if info.pid not in pids and references_path(info, path):
                pids.append(info.pid)
        return pids
