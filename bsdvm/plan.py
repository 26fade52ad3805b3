"""Hypervisor command line assembly."""

from __future__ import annotations

from typing import List, Optional

from bsdvm.exceptions import InvalidSelector
from bsdvm.models import (
    ArtifactHandle,
    DiskImage,
    DisplayConfig,
    HardwareConfig,
    InstanceSlot,
    LaunchPlan,
    ReleaseSelector,
    UsbDevice,
)


def _telnet_console(port: int) -> str:
    return f"telnet:localhost:{port},mux=on,server,wait=off"


class LaunchPlanBuilder:
    """Turn prepared resources into a QEMU invocation.

    Pure: no filesystem or network access. Everything architecture specific
    comes from the ``SUPPORTED_ARCHES`` table through ``selector.profile``.
    """

    def __init__(self, hardware: HardwareConfig) -> None:
        self.hardware = hardware

    def build(
        self,
        disk_image: DiskImage,
        slot: InstanceSlot,
        selector: ReleaseSelector,
        boot_media: Optional[ArtifactHandle] = None,
        usb: Optional[UsbDevice] = None,
        display: Optional[DisplayConfig] = None,
    ) -> LaunchPlan:
        profile = selector.profile
        args: List[str] = [
            "-m", self.hardware.memory,
            "-cpu", "max",
            "-smp", f"cpus={self.hardware.cpus}",
            "-M", profile["machine"],
        ]
        args.extend(profile["firmware"])

        if boot_media is not None:
            boot_media.require_verified()
            args.extend(["-boot", "order=d", "-cdrom", str(boot_media.local_path.absolute())])

        args.extend(profile["extra_args"])
        args.extend(["-serial", _telnet_console(slot.serial_port)])
        args.extend(["-monitor", _telnet_console(slot.monitor_port)])
        args.extend(["-display", "none"])

        if display is not None:
            if not profile["display"]:
                raise InvalidSelector(f"VNC display is not supported on {selector.arch}")
            args.extend(["-object", f"secret,id=vnc0,file={display.password_file}"])
            if profile["display_device"]:
                args.extend(["-device", profile["display_device"]])
            args.extend(["-vnc", f"{display.listen}:{slot.display_number},password-secret=vnc0"])

        args.extend([
            "-drive", f"if=none,file={disk_image.path.absolute()},id=hd0",
            "-device", "virtio-blk-pci,drive=hd0",
            "-device", "virtio-net-pci,netdev=net0",
            "-netdev", "tap,id=net0",
            "-usb",
            "-device", "qemu-xhci,id=xhci",
        ])
        if usb is not None:
            args.extend(["-device", f"usb-host,hostbus={usb.bus},hostaddr={usb.address},id={usb.label}"])
        args.append("-daemonize")
        return LaunchPlan(binary=profile["binary"], args=tuple(args))
