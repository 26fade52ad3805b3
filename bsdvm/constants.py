"""Global constants and static tables for FreeBSD-VM-Runner."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CONFIG_PATH = Path("/usr/local/etc/freebsd-vm-runner.yaml")
DEFAULT_DOWNLOAD_URI = "https://download.freebsd.org/releases/"
DEFAULT_IFUP_DIR = Path("/usr/local/etc")
USER_AGENT = "freebsd-vm-runner/1.0"

TRUTHY = {"1", "true", "yes", "on"}

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}

RELEASE_CLASSES = ("ALPHA", "BETA", "RC", "RELEASE")
MEDIA_KINDS = ("VM_IMAGE", "ISO")
MEDIA_ALIASES = {"VM": "VM_IMAGE", "VM_IMAGE": "VM_IMAGE", "ISO": "ISO"}

PRODUCT = "FreeBSD"
VM_IMAGES_INDEX = "VM-IMAGES/"
ISO_IMAGES_INDEX = "ISO-IMAGES/"
CHECKSUM_PREFIX = "CHECKSUM.SHA512"

# <major>.<minor>-<CLASS><optional sequence>, e.g. 15.0-RELEASE, 14.3-RC2
VERSION_TOKEN_RE = re.compile(r"(?<![\d.])(\d+(?:\.\d+)+)-([A-Z]+)(\d*)(?![A-Za-z0-9])")
SHA512_HEX_RE = re.compile(r"(?<![0-9A-Fa-f])[0-9A-Fa-f]{128}(?![0-9A-Fa-f])")

DISK_SIZE_RE = re.compile(r"^\d+[KMGTkmgt]?$")
MEMORY_RE = re.compile(r"^\d+[KMGTkmgt]?$")

# Serial/monitor pairs step by two per running instance.
# VNC display N listens on VNC_BASE_PORT + N.
SERIAL_PORT_BASE = 4444
VNC_BASE_PORT = 5900
DISPLAY_PORT_BASE = VNC_BASE_PORT
HYPERVISOR_PREFIX = "qemu-system"

SUPPORTED_ARCHES = {
    "amd64": {
        "dir": "amd64",
        "variant": "amd64",
        "binary": "qemu-system-x86_64",
        "machine": "q35",
        "firmware": ("-bios", "/usr/local/share/edk2-qemu/QEMU_UEFI-x86_64.fd"),
        "packages": ("edk2-qemu-x64",),
        "extra_args": (),
        "display_device": None,
        "vm_image": True,
        "display": True,
    },
    "arm64": {
        "dir": "aarch64",
        "variant": "arm64-aarch64",
        "binary": "qemu-system-aarch64",
        "machine": "virt",
        "firmware": ("-bios", "edk2-aarch64-code.fd"),
        "packages": (),
        "extra_args": (),
        "display_device": "ramfb",
        "vm_image": True,
        "display": True,
    },
    "riscv64": {
        "dir": "riscv64",
        "variant": "riscv-riscv64",
        "binary": "qemu-system-riscv64",
        "machine": "virt",
        "firmware": (
            "-bios",
            "/usr/local/share/opensbi/lp64/generic/firmware/fw_jump.elf",
            "-kernel",
            "/usr/local/share/u-boot/u-boot-qemu-riscv64/u-boot.bin",
        ),
        "packages": ("opensbi", "u-boot-qemu-riscv64"),
        "extra_args": (),
        "display_device": "ramfb",
        "vm_image": True,
        "display": True,
    },
    "ppc64": {
        "dir": "powerpc64",
        "variant": "powerpc-powerpc64",
        "binary": "qemu-system-ppc64",
        # https://wiki.freebsd.org/powerpc/QEMU
        "machine": "pseries,cap-cfpc=broken,cap-sbbc=broken,cap-ibs=broken",
        "firmware": (),
        "packages": (),
        "extra_args": ("-vga", "none"),
        "display_device": None,
        "vm_image": False,
        "display": False,
    },
}

ARCH_ALIASES = {
    "x86_64": "amd64",
    "aarch64": "arm64",
    "riscv": "riscv64",
    "powerpc64": "ppc64",
}

QEMU_IMG = "qemu-img"
QEMU_PACKAGE = "qemu-nox11"
