"""Data models for FreeBSD-VM-Runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from bsdvm.constants import (
    ARCH_ALIASES,
    MEDIA_ALIASES,
    RELEASE_CLASSES,
    SUPPORTED_ARCHES,
    VERSION_TOKEN_RE,
    VNC_BASE_PORT,
)
from bsdvm.exceptions import HashMismatch, InvalidSelector


@dataclass(frozen=True)
class ReleaseSelector:
    arch: str
    release_class: str = "RELEASE"
    media_kind: str = "VM_IMAGE"

    def __post_init__(self):
        arch = ARCH_ALIASES.get(self.arch.lower(), self.arch.lower())
        if arch not in SUPPORTED_ARCHES:
            supported = ", ".join(sorted(SUPPORTED_ARCHES))
            raise InvalidSelector(f"Unsupported architecture '{self.arch}'. Supported: {supported}")
        release_class = self.release_class.upper()
        if release_class not in RELEASE_CLASSES:
            raise InvalidSelector(
                f"Unsupported release class '{self.release_class}'. Supported: {', '.join(RELEASE_CLASSES)}"
            )
        media_kind = MEDIA_ALIASES.get(self.media_kind.upper())
        if media_kind is None:
            raise InvalidSelector(f"Unsupported media kind '{self.media_kind}'. Supported: VM, ISO")
        if media_kind == "VM_IMAGE" and not SUPPORTED_ARCHES[arch]["vm_image"]:
            raise InvalidSelector(
                f"No VM image is published for {arch}; use the ISO media kind (-t ISO) instead"
            )
        object.__setattr__(self, "arch", arch)
        object.__setattr__(self, "release_class", release_class)
        object.__setattr__(self, "media_kind", media_kind)

    @property
    def profile(self) -> Dict:
        return SUPPORTED_ARCHES[self.arch]

    @property
    def is_iso(self) -> bool:
        return self.media_kind == "ISO"


@dataclass(frozen=True)
class VersionIdentifier:
    """A release version such as ``15.0-RELEASE`` or ``15.0-BETA2``.

    Ordering compares the numeric components first, then the sequence number.
    The release class never takes part in ordering because the resolver only
    compares candidates of a single class.
    """

    numbers: Tuple[int, ...]
    release_class: str
    sequence: Optional[int] = None

    @classmethod
    def parse(cls, text: str) -> "VersionIdentifier":
        match = VERSION_TOKEN_RE.fullmatch(text.strip().strip("/"))
        if not match:
            raise ValueError(f"Not a version identifier: '{text}'")
        numbers = tuple(int(part) for part in match.group(1).split("."))
        sequence = int(match.group(3)) if match.group(3) else None
        return cls(numbers=numbers, release_class=match.group(2), sequence=sequence)

    @property
    def directory(self) -> str:
        return ".".join(str(n) for n in self.numbers)

    @property
    def sort_key(self) -> Tuple[Tuple[int, ...], int]:
        return (self.numbers, self.sequence or 0)

    def __str__(self) -> str:
        suffix = str(self.sequence) if self.sequence is not None else ""
        return f"{self.directory}-{self.release_class}{suffix}"


@dataclass(frozen=True)
class ArtifactHandle:
    logical_name: str
    local_path: Path
    remote_uri: str
    checksum_manifest_uri: str
    manifest_path: Path
    verified: bool = False

    @property
    def manifest_glob(self) -> str:
        return f"{self.manifest_path.name}*"

    def require_verified(self) -> None:
        if not self.verified:
            raise HashMismatch(f"Artifact {self.local_path} has not passed checksum verification")


@dataclass(frozen=True)
class DiskImage:
    path: Path
    size_bytes: int
    exists: bool
    in_use_by: Optional[int] = None

    @property
    def in_use(self) -> bool:
        return self.in_use_by is not None


@dataclass(frozen=True)
class InstanceSlot:
    ordinal: int
    serial_port: int
    monitor_port: int
    display_port: int
    session_label: str

    @property
    def display_number(self) -> int:
        """VNC display number; QEMU listens on 5900 + display."""
        return self.display_port - VNC_BASE_PORT

    @property
    def monitor_session(self) -> str:
        return f"{self.session_label}-monitor"

    @property
    def ports(self) -> Tuple[int, int, int]:
        return (self.serial_port, self.monitor_port, self.display_port)


@dataclass(frozen=True)
class UsbDevice:
    bus: int
    address: int
    label: str
    description: str = ""


@dataclass(frozen=True)
class DisplayConfig:
    password_file: Path
    listen: str = "localhost"


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cmdline: Tuple[str, ...] = ()
    cwd: Optional[str] = None


@dataclass(frozen=True)
class HardwareConfig:
    memory: str = "4g"
    cpus: int = 8
    disk_size: str = "45G"
    bridge: str = "bridge0"


@dataclass(frozen=True)
class RunnerConfig:
    work_dir: Path
    download_uri: str
    hardware: HardwareConfig
    serial_port_base: int
    display_port_base: int
    vnc_listen: str
    vnc_password_file: Path
    http_timeout: int
    auto_install: bool
    ifup_dir: Path


@dataclass(frozen=True)
class LaunchPlan:
    binary: str
    args: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def argv(self) -> Tuple[str, ...]:
        return (self.binary,) + self.args

    def display(self) -> str:
        return " ".join(self.argv)
