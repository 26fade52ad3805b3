"""Custom exceptions for FreeBSD-VM-Runner."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""

    stage = "runner"
    exit_code = 1


class ResolutionFailed(ManagerError):
    """No version in the remote listing matched the requested release class."""

    stage = "resolve"
    exit_code = 3


class DownloadFailed(ManagerError):
    stage = "fetch"
    exit_code = 4


class HashMismatch(ManagerError):
    """The artifact digest does not match its manifest entry."""

    stage = "verify"
    exit_code = 5


class ManifestMissing(HashMismatch):
    """No manifest line lists the artifact being verified."""

    exit_code = 6


class DestructiveRefused(ManagerError):
    """A destructive operation on a disk image was refused."""

    stage = "prepare"
    exit_code = 7


class AlreadyRunning(ManagerError):
    """A live hypervisor process already uses the target disk image."""

    stage = "coordinate"
    exit_code = 8

    def __init__(
        self,
        message: str,
        pid: Optional[int] = None,
        serial_port: Optional[int] = None,
        monitor_port: Optional[int] = None,
        image_path: Optional[Path] = None,
    ) -> None:
        super().__init__(message)
        self.pid = pid
        self.serial_port = serial_port
        self.monitor_port = monitor_port
        self.image_path = image_path


class DependencyMissing(ManagerError):
    stage = "host"
    exit_code = 9


class InvalidSelector(ManagerError):
    """Unsupported architecture, release class or media kind combination."""

    stage = "select"
    exit_code = 10


class LaunchFailed(ManagerError):
    stage = "launch"
    exit_code = 11
