"""Per-instance port allocation and the single-instance-per-image guard."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Optional, Set

from bsdvm.constants import DISPLAY_PORT_BASE, SERIAL_PORT_BASE, VNC_BASE_PORT
from bsdvm.exceptions import AlreadyRunning
from bsdvm.models import InstanceSlot, ProcessInfo
from bsdvm.process_table import ProcessTableReader, references_path
from bsdvm.utils import log

_TELNET_PORT_RE = re.compile(r"^telnet:[^:]*:(\d+)")
_VNC_DISPLAY_RE = re.compile(r"^[^,]*:(\d+)(?:,|$)")


def console_port(cmdline: Iterable[str], option: str) -> Optional[int]:
    """Return the telnet port bound by ``option`` (``-serial``/``-monitor``) on a command line."""
    args = list(cmdline)
    for flag, value in zip(args, args[1:]):
        if flag == option:
            match = _TELNET_PORT_RE.match(value)
            if match:
                return int(match.group(1))
    return None


def vnc_port(cmdline: Iterable[str]) -> Optional[int]:
    args = list(cmdline)
    for flag, value in zip(args, args[1:]):
        if flag == "-vnc":
            match = _VNC_DISPLAY_RE.match(value)
            if match:
                return VNC_BASE_PORT + int(match.group(1))
    return None


def occupied_ports(live: Iterable[ProcessInfo]) -> Set[int]:
    """Ports bound by the consoles and displays of live hypervisors."""
    ports: Set[int] = set()
    for info in live:
        for port in (
            console_port(info.cmdline, "-serial"),
            console_port(info.cmdline, "-monitor"),
            vnc_port(info.cmdline),
        ):
            if port is not None:
                ports.add(port)
    return ports


class InstanceCoordinator:
    """Derive a collision-free slot for a new hypervisor instance.

    There is no central registry: the live process table is the only shared
    state. Two invocations started at the same moment can both observe the
    same table and pick the same ordinal; QEMU then fails to bind the serial
    port and the second launch is reported as a launch failure.
    """

    def __init__(
        self,
        reader: Optional[ProcessTableReader] = None,
        serial_base: int = SERIAL_PORT_BASE,
        display_base: int = DISPLAY_PORT_BASE,
    ) -> None:
        self.reader = reader or ProcessTableReader()
        self.serial_base = serial_base
        self.display_base = display_base

    def _guard(self, image_path: Path, live: List[ProcessInfo]) -> None:
        held = set(self.reader.holders(image_path))
        for info in live:
            if info.pid in held or references_path(info, image_path):
                raise AlreadyRunning(
                    f"QEMU (pid {info.pid}) is already running with {image_path}. "
                    "Attach to its console or shut the guest down first.",
                    pid=info.pid,
                    serial_port=console_port(info.cmdline, "-serial"),
                    monitor_port=console_port(info.cmdline, "-monitor"),
                    image_path=Path(image_path),
                )

    def _ports(self, ordinal: int):
        serial_port = self.serial_base + 2 * ordinal
        return serial_port, serial_port + 1, self.display_base + ordinal

    def compute_slot(self, image_path: Path) -> InstanceSlot:
        live = self.reader.hypervisors()
        self._guard(image_path, live)
        # Start at the live count and skip ordinals whose ports a survivor still holds.
        taken = occupied_ports(live)
        ordinal = len(live)
        while taken.intersection(self._ports(ordinal)):
            ordinal += 1
        serial_port, monitor_port, display_port = self._ports(ordinal)
        slot = InstanceSlot(
            ordinal=ordinal,
            serial_port=serial_port,
            monitor_port=monitor_port,
            display_port=display_port,
            session_label=f"{Path(image_path).stem}-{ordinal}",
        )
        log(
            "INFO",
            f"Instance #{ordinal}: serial {slot.serial_port}, monitor {slot.monitor_port}, "
            f"display {slot.display_port}",
        )
        return slot
