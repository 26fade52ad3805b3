"""Host USB device lookup for guest passthrough."""

from __future__ import annotations

import re
import subprocess
from typing import Callable, List, Optional

from bsdvm.exceptions import DependencyMissing, ManagerError
from bsdvm.models import UsbDevice
from bsdvm.utils import log, run, sanitize_device_id

_UGEN_RE = re.compile(r"^\s*ugen(\d+)\.(\d+):\s*(.*)$")


def list_usb_devices() -> List[str]:
    try:
        result = run(["usbconfig"], capture_output=True)
    except FileNotFoundError:
        raise DependencyMissing("usbconfig not found; USB passthrough requires a FreeBSD host")
    except subprocess.CalledProcessError as exc:
        raise ManagerError(f"usbconfig failed with status {exc.returncode}")
    return [line for line in result.stdout.splitlines() if line.strip()]


def find_usb_device(query: str, lister: Optional[Callable[[], List[str]]] = None) -> UsbDevice:
    """Resolve ``query`` to exactly one host USB device."""
    lines = (lister or list_usb_devices)()
    needle = query.lower()
    matches = [line for line in lines if needle in line.lower()]
    if len(matches) != 1:
        listing = "\n    ".join(lines) or "<no devices>"
        raise ManagerError(
            f"USB query '{query}' matched {len(matches)} devices; it must match exactly one.\n"
            f"  Devices:\n    {listing}"
        )
    match = _UGEN_RE.match(matches[0])
    if not match:
        raise ManagerError(f"Cannot parse usbconfig line: {matches[0]}")
    device = UsbDevice(
        bus=int(match.group(1)),
        address=int(match.group(2)),
        label=sanitize_device_id(query),
        description=match.group(3).strip(),
    )
    log("INFO", f"Mapping USB device {matches[0].strip()} into the guest")
    log(
        "INFO",
        f"In the QEMU monitor use \"info usb\" to inspect guest devices or \"device_del {device.label}\" to detach",
    )
    return device
