"""The sequential resolve, fetch, prepare, coordinate and launch pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from bsdvm.checksum import ChecksumVerifier
from bsdvm.disk import DiskImagePreparer
from bsdvm.display import display_config
from bsdvm.exceptions import InvalidSelector
from bsdvm.fetcher import ArtifactFetcher, disk_image_name
from bsdvm.instances import InstanceCoordinator
from bsdvm.launcher import Launcher
from bsdvm.listing import DirectoryLister, VersionResolver
from bsdvm.models import (
    ArtifactHandle,
    DiskImage,
    InstanceSlot,
    LaunchPlan,
    ReleaseSelector,
    RunnerConfig,
    VersionIdentifier,
)
from bsdvm.plan import LaunchPlanBuilder
from bsdvm.process_table import ProcessTableReader
from bsdvm.usb import find_usb_device
from bsdvm.utils import download_file, new_session, parse_size_to_bytes, prompt_yes_no


@dataclass(frozen=True)
class LaunchResult:
    selector: ReleaseSelector
    version: VersionIdentifier
    artifact: ArtifactHandle
    disk_path: Path
    slot: InstanceSlot
    disk: Optional[DiskImage] = None
    plan: Optional[LaunchPlan] = None


class Pipeline:
    """Run one provisioning invocation. Each stage starts only after the
    previous one succeeded; any error aborts the whole run."""

    def __init__(
        self,
        config: RunnerConfig,
        lister: Optional[DirectoryLister] = None,
        reader: Optional[ProcessTableReader] = None,
        verifier: Optional[ChecksumVerifier] = None,
        downloader: Callable[..., None] = download_file,
        launcher: Optional[Launcher] = None,
        confirm: Callable[[str], bool] = prompt_yes_no,
        usb_lister: Optional[Callable[[], List[str]]] = None,
    ) -> None:
        self.config = config
        session = new_session()
        reader = reader or ProcessTableReader()
        verifier = verifier or ChecksumVerifier()
        self.resolver = VersionResolver(
            lister or DirectoryLister(session=session, timeout=config.http_timeout),
            config.download_uri,
        )
        self.fetcher = ArtifactFetcher(
            config.work_dir,
            config.download_uri,
            config.hardware.disk_size,
            verifier=verifier,
            downloader=downloader,
            session=session,
            timeout=config.http_timeout,
        )
        self.preparer = DiskImagePreparer(
            config.work_dir, config.hardware.disk_size, reader=reader, verifier=verifier, confirm=confirm
        )
        self.coordinator = InstanceCoordinator(
            reader, serial_base=config.serial_port_base, display_base=config.display_port_base
        )
        self.builder = LaunchPlanBuilder(config.hardware)
        self.launcher = launcher or Launcher()
        self.usb_lister = usb_lister

    def run(
        self,
        selector: ReleaseSelector,
        usb_query: Optional[str] = None,
        display: bool = False,
        dry_run: bool = False,
    ) -> LaunchResult:
        if display and not selector.profile["display"]:
            raise InvalidSelector(f"VNC display is not supported on {selector.arch}")

        version = self.resolver.resolve(selector)

        if dry_run:
            artifact = self.fetcher.describe(version, selector)
            disk_path = self._disk_path(version, selector, artifact)
            slot = self.coordinator.compute_slot(disk_path)
            return LaunchResult(selector, version, artifact, disk_path, slot)

        artifact = self.fetcher.fetch(version, selector)
        usb = find_usb_device(usb_query, self.usb_lister) if usb_query else None
        size_bytes = parse_size_to_bytes(self.config.hardware.disk_size)
        disk = self.preparer.prepare(artifact, version, selector, size_bytes)
        slot = self.coordinator.compute_slot(disk.path)
        display_cfg = display_config(self.config.vnc_password_file, self.config.vnc_listen) if display else None
        boot_media = artifact if selector.is_iso else None
        plan = self.builder.build(disk, slot, selector, boot_media=boot_media, usb=usb, display=display_cfg)
        self.launcher.start(plan)
        return LaunchResult(selector, version, artifact, disk.path, slot, disk=disk, plan=plan)

    def _disk_path(self, version: VersionIdentifier, selector: ReleaseSelector, artifact: ArtifactHandle) -> Path:
        if selector.is_iso:
            return self.config.work_dir / disk_image_name(version, selector)
        return artifact.local_path
