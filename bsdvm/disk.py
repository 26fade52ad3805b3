"""Disk image preparation for VM-image and installer (ISO) modes."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from bsdvm.checksum import ChecksumVerifier
from bsdvm.exceptions import DestructiveRefused, ManagerError
from bsdvm.fetcher import disk_image_name
from bsdvm.models import ArtifactHandle, DiskImage, ReleaseSelector, VersionIdentifier
from bsdvm.process_table import ProcessTableReader
from bsdvm.utils import create_blank_image, log, prompt_yes_no


class DiskImagePreparer:
    def __init__(
        self,
        work_dir: Path,
        disk_size: str,
        reader: Optional[ProcessTableReader] = None,
        verifier: Optional[ChecksumVerifier] = None,
        confirm: Callable[[str], bool] = prompt_yes_no,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.disk_size = disk_size
        self.reader = reader or ProcessTableReader()
        self.verifier = verifier or ChecksumVerifier()
        self.confirm = confirm

    def _holder(self, path: Path) -> Optional[int]:
        pids = self.reader.users(path)
        return pids[0] if pids else None

    def prepare(
        self,
        artifact: Optional[ArtifactHandle],
        version: VersionIdentifier,
        selector: ReleaseSelector,
        size_bytes: int,
        boot_media: Optional[ArtifactHandle] = None,
    ) -> DiskImage:
        if not selector.is_iso:
            if artifact is None:
                raise ManagerError("VM image mode requires a fetched artifact")
            artifact.require_verified()
            return DiskImage(
                path=artifact.local_path,
                size_bytes=size_bytes,
                exists=True,
                in_use_by=self._holder(artifact.local_path),
            )

        boot_media = boot_media or artifact
        if boot_media is None:
            raise ManagerError("ISO mode requires the installer ISO")
        boot_media.require_verified()

        path = self.work_dir / disk_image_name(version, selector)
        if not path.exists():
            self._create(path, boot_media)
            return DiskImage(path=path, size_bytes=size_bytes, exists=True)
        if path.stat().st_size == 0:
            log("WARN", f"Disk image {path} is empty; recreating it")
            self._recreate(path, boot_media)
            return DiskImage(path=path, size_bytes=size_bytes, exists=True)

        holder = self._holder(path)
        if holder is not None:
            log("INFO", f"Disk image {path} is in use by pid {holder}; leaving it untouched")
            return DiskImage(path=path, size_bytes=size_bytes, exists=True, in_use_by=holder)

        question = (
            f"You selected ISO install with an existing disk image {path.name}. "
            "Remove it and recreate a blank disk?"
        )
        if self.confirm(question):
            self._recreate(path, boot_media)
        else:
            log("INFO", f"Keeping existing disk image {path}")
        return DiskImage(path=path, size_bytes=size_bytes, exists=True)

    def _create(self, path: Path, boot_media: ArtifactHandle) -> None:
        self.verifier.verify(boot_media.local_path, boot_media.manifest_glob)
        create_blank_image(path, self.disk_size)

    def _recreate(self, path: Path, boot_media: ArtifactHandle) -> None:
        holder = self._holder(path)
        if holder is not None:
            raise DestructiveRefused(f"Refusing to recreate {path}: it is in use by pid {holder}")
        log("INFO", f"Removing existing disk image {path}")
        path.unlink()
        self._create(path, boot_media)
