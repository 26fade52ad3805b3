"""Tests for bsdvm.fetcher module."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from bsdvm.exceptions import DownloadFailed, HashMismatch
from bsdvm.fetcher import ArtifactFetcher, artifact_name, disk_image_name, manifest_name
from bsdvm.models import ReleaseSelector, VersionIdentifier
from conftest import FakeDownloader, sha512, xz

BASE = "https://download.example.org/releases/"
VERSION = VersionIdentifier.parse("15.0-RELEASE")
IMAGE = b"qcow2 image bytes" * 100
ISO = b"bootonly iso bytes" * 100


def _vm_bodies(selector, payload=IMAGE, manifest_payload=None):
    name = artifact_name(VERSION, selector)
    compressed = xz(payload)
    listed = xz(manifest_payload) if manifest_payload is not None else compressed
    remote = f"{BASE}VM-IMAGES/15.0-RELEASE/{selector.profile['dir']}/Latest/"
    manifest = f"SHA512 ({name}.xz) = {sha512(listed)}\n".encode()
    return {remote + name + ".xz": compressed, remote + "CHECKSUM.SHA512": manifest}


def _iso_bodies(selector, payload=ISO):
    name = artifact_name(VERSION, selector)
    compressed = xz(payload)
    remote = f"{BASE}ISO-IMAGES/15.0/"
    manifest = (
        f"SHA512 ({name}) = {sha512(payload)}\n"
        f"SHA512 ({name}.xz) = {sha512(compressed)}\n"
    ).encode()
    return {remote + name + ".xz": compressed, remote + manifest_name(VERSION, selector): manifest}


class TestNaming:
    def test_vm_image_name(self):
        sel = ReleaseSelector("arm64")
        assert artifact_name(VERSION, sel) == "FreeBSD-15.0-RELEASE-arm64-aarch64-ufs.qcow2"

    def test_iso_name(self):
        sel = ReleaseSelector("amd64", media_kind="ISO")
        assert artifact_name(VERSION, sel) == "FreeBSD-15.0-RELEASE-amd64-bootonly.iso"
        assert disk_image_name(VERSION, sel) == "FreeBSD-15.0-RELEASE-amd64-ufs.qcow2"

    def test_manifest_name(self):
        sel = ReleaseSelector("riscv64")
        assert manifest_name(VERSION, sel) == "CHECKSUM.SHA512-FreeBSD-15.0-RELEASE-riscv-riscv64"


class TestDescribe:
    def test_vm_image_uris(self, tmp_path):
        sel = ReleaseSelector("arm64")
        handle = ArtifactFetcher(tmp_path, BASE, "45G").describe(VERSION, sel)
        assert handle.remote_uri == (
            f"{BASE}VM-IMAGES/15.0-RELEASE/aarch64/Latest/FreeBSD-15.0-RELEASE-arm64-aarch64-ufs.qcow2.xz"
        )
        assert handle.checksum_manifest_uri == f"{BASE}VM-IMAGES/15.0-RELEASE/aarch64/Latest/CHECKSUM.SHA512"
        assert handle.local_path == tmp_path / "FreeBSD-15.0-RELEASE-arm64-aarch64-ufs.qcow2"
        assert not handle.verified

    def test_iso_uris(self, tmp_path):
        sel = ReleaseSelector("ppc64", media_kind="ISO")
        handle = ArtifactFetcher(tmp_path, BASE, "45G").describe(VERSION, sel)
        assert handle.remote_uri == f"{BASE}ISO-IMAGES/15.0/FreeBSD-15.0-RELEASE-powerpc-powerpc64-bootonly.iso.xz"
        assert handle.checksum_manifest_uri == (
            f"{BASE}ISO-IMAGES/15.0/CHECKSUM.SHA512-FreeBSD-15.0-RELEASE-powerpc-powerpc64"
        )


@patch("bsdvm.fetcher.grow_image", return_value=True)
class TestFetchVmImage:
    def test_downloads_verifies_decompresses_and_grows(self, mock_grow, tmp_path):
        sel = ReleaseSelector("amd64")
        downloader = FakeDownloader(_vm_bodies(sel))
        fetcher = ArtifactFetcher(tmp_path, BASE, "45G", downloader=downloader)
        handle = fetcher.fetch(VERSION, sel)

        assert handle.verified
        assert handle.local_path.read_bytes() == IMAGE
        assert len(downloader.calls) == 2
        mock_grow.assert_called_once()
        assert mock_grow.call_args[0][1] == "45G"
        assert not (tmp_path / (handle.local_path.name + ".xz")).exists()
        assert not (tmp_path / (handle.local_path.name + ".partial")).exists()
        assert handle.manifest_path.exists()

    def test_second_fetch_makes_no_network_calls(self, mock_grow, tmp_path):
        sel = ReleaseSelector("amd64")
        fetcher = ArtifactFetcher(tmp_path, BASE, "45G", downloader=FakeDownloader(_vm_bodies(sel)))
        first = fetcher.fetch(VERSION, sel)

        idle = MagicMock()
        again = ArtifactFetcher(tmp_path, BASE, "45G", downloader=idle).fetch(VERSION, sel)
        idle.assert_not_called()
        assert again.verified
        assert again.local_path == first.local_path
        assert mock_grow.call_count == 1

    def test_corrupt_download_leaves_no_final_file(self, mock_grow, tmp_path):
        sel = ReleaseSelector("amd64")
        downloader = FakeDownloader(_vm_bodies(sel, manifest_payload=b"something else"))
        fetcher = ArtifactFetcher(tmp_path, BASE, "45G", downloader=downloader)
        with pytest.raises(HashMismatch):
            fetcher.fetch(VERSION, sel)
        final = fetcher.describe(VERSION, sel).local_path
        assert not final.exists()
        assert not final.with_name(final.name + ".xz").exists()
        mock_grow.assert_not_called()

    def test_resize_failure_cleans_partial(self, mock_grow, tmp_path):
        sel = ReleaseSelector("amd64")
        mock_grow.side_effect = RuntimeError("qemu-img failed")
        fetcher = ArtifactFetcher(tmp_path, BASE, "45G", downloader=FakeDownloader(_vm_bodies(sel)))
        with pytest.raises(RuntimeError):
            fetcher.fetch(VERSION, sel)
        final = fetcher.describe(VERSION, sel).local_path
        assert not final.exists()
        assert not final.with_name(final.name + ".partial").exists()

    def test_stale_partial_removed(self, mock_grow, tmp_path):
        sel = ReleaseSelector("amd64")
        fetcher = ArtifactFetcher(tmp_path, BASE, "45G", downloader=FakeDownloader(_vm_bodies(sel)))
        final = fetcher.describe(VERSION, sel).local_path
        final.with_name(final.name + ".partial").write_bytes(b"junk from an interrupted run")
        handle = fetcher.fetch(VERSION, sel)
        assert handle.local_path.read_bytes() == IMAGE

    def test_download_failure_propagates(self, mock_grow, tmp_path):
        sel = ReleaseSelector("amd64")
        fetcher = ArtifactFetcher(tmp_path, BASE, "45G", downloader=FakeDownloader({}))
        with pytest.raises(DownloadFailed) as exc:
            fetcher.fetch(VERSION, sel)
        assert exc.value.exit_code == 4


class TestFetchIso:
    def test_iso_verified_twice_and_not_resized(self, tmp_path):
        sel = ReleaseSelector("amd64", media_kind="ISO")
        fetcher = ArtifactFetcher(tmp_path, BASE, "45G", downloader=FakeDownloader(_iso_bodies(sel)))
        with patch("bsdvm.fetcher.grow_image") as mock_grow:
            handle = fetcher.fetch(VERSION, sel)
        mock_grow.assert_not_called()
        assert handle.verified
        assert handle.local_path.read_bytes() == ISO
        assert handle.manifest_path.name == "CHECKSUM.SHA512-FreeBSD-15.0-RELEASE-amd64"
