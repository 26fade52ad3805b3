"""Artifact naming, download, verification and decompression."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

from bsdvm.checksum import ChecksumVerifier
from bsdvm.constants import CHECKSUM_PREFIX, ISO_IMAGES_INDEX, PRODUCT, VM_IMAGES_INDEX
from bsdvm.models import ArtifactHandle, ReleaseSelector, VersionIdentifier
from bsdvm.utils import decompress_xz, download_file, grow_image, log


def artifact_name(version: VersionIdentifier, selector: ReleaseSelector) -> str:
    variant = selector.profile["variant"]
    if selector.is_iso:
        return f"{PRODUCT}-{version}-{variant}-bootonly.iso"
    return f"{PRODUCT}-{version}-{variant}-ufs.qcow2"


def disk_image_name(version: VersionIdentifier, selector: ReleaseSelector) -> str:
    return f"{PRODUCT}-{version}-{selector.profile['variant']}-ufs.qcow2"


def manifest_name(version: VersionIdentifier, selector: ReleaseSelector) -> str:
    return f"{CHECKSUM_PREFIX}-{PRODUCT}-{version}-{selector.profile['variant']}"


class ArtifactFetcher:
    def __init__(
        self,
        work_dir: Path,
        base_uri: str,
        disk_size: str,
        verifier: Optional[ChecksumVerifier] = None,
        downloader: Callable[..., None] = download_file,
        session=None,
        timeout: int = 60,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.base_uri = base_uri if base_uri.endswith("/") else base_uri + "/"
        self.disk_size = disk_size
        self.verifier = verifier or ChecksumVerifier()
        self.downloader = downloader
        self.session = session
        self.timeout = timeout

    def describe(self, version: VersionIdentifier, selector: ReleaseSelector) -> ArtifactHandle:
        """Build the (unverified) handle for an artifact without touching disk or network."""
        name = artifact_name(version, selector)
        if selector.is_iso:
            remote_dir = f"{self.base_uri}{ISO_IMAGES_INDEX}{version.directory}/"
            manifest_uri = remote_dir + manifest_name(version, selector)
        else:
            remote_dir = f"{self.base_uri}{VM_IMAGES_INDEX}{version}/{selector.profile['dir']}/Latest/"
            manifest_uri = remote_dir + CHECKSUM_PREFIX
        return ArtifactHandle(
            logical_name=name,
            local_path=self.work_dir / name,
            remote_uri=f"{remote_dir}{name}.xz",
            checksum_manifest_uri=manifest_uri,
            manifest_path=self.work_dir / manifest_name(version, selector),
        )

    def _download(self, url: str, destination: Path, label: str) -> None:
        self.downloader(url, destination, session=self.session, timeout=self.timeout, label=label)

    def fetch(self, version: VersionIdentifier, selector: ReleaseSelector) -> ArtifactHandle:
        handle = self.describe(version, selector)
        final = handle.local_path
        if final.exists() and final.stat().st_size > 0:
            log("INFO", f"Using existing {final}")
            return replace(handle, verified=True)

        self.work_dir.mkdir(parents=True, exist_ok=True)
        compressed = final.with_name(final.name + ".xz")
        partial = final.with_name(final.name + ".partial")
        for stale in (compressed, partial):
            stale.unlink(missing_ok=True)

        if not selector.is_iso:
            log("INFO", f"Fetching VM image: {handle.logical_name}")
        else:
            log("INFO", f"Fetching installer ISO: {handle.logical_name}")
        self._download(handle.remote_uri, compressed, label="Downloading artifact")
        self._download(handle.checksum_manifest_uri, handle.manifest_path, label="Downloading checksums")

        self.verifier.verify(compressed, handle.manifest_glob)
        try:
            decompress_xz(compressed, partial)
            if selector.is_iso:
                # Installer manifests also list the uncompressed ISO.
                self.verifier.verify(partial, handle.manifest_glob, name=final.name)
            else:
                # VM images ship at minimal size.
                grow_image(partial, self.disk_size)
            partial.replace(final)
        except Exception:
            partial.unlink(missing_ok=True)
            raise
        compressed.unlink(missing_ok=True)
        log("SUCCESS", f"Artifact ready: {final}")
        return replace(handle, verified=True)
