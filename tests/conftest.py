"""Shared test fixtures for FreeBSD-VM-Runner."""

from __future__ import annotations

import hashlib
import lzma
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from bsdvm.models import HardwareConfig, ProcessInfo, RunnerConfig


class FakeLister:
    """DirectoryLister stand-in serving canned pages keyed by URL."""

    def __init__(self, pages: Dict[str, str]) -> None:
        self.pages = pages
        self.calls: List[str] = []

    def fetch(self, url: str) -> str:
        self.calls.append(url)
        return self.pages[url]


class FakeProcessTable:
    """ProcessTableReader stand-in backed by a fixed list of processes."""

    def __init__(self, processes: Optional[List[ProcessInfo]] = None, open_files: Optional[Dict] = None) -> None:
        self.process_list = list(processes or [])
        self.open_files = dict(open_files or {})

    def processes(self) -> List[ProcessInfo]:
        return list(self.process_list)

    def hypervisors(self) -> List[ProcessInfo]:
        from bsdvm.process_table import is_hypervisor

        return [info for info in self.process_list if is_hypervisor(info)]

    def holders(self, path: Path) -> List[int]:
        return list(self.open_files.get(Path(path), []))

    def users(self, path: Path) -> List[int]:
        from bsdvm.process_table import references_path

        pids = self.holders(path)
        for info in self.hypervisors():
            if info.pid not in pids and references_path(info, path):
                pids.append(info.pid)
        return pids


class FakeDownloader:
    """download_file stand-in serving canned bodies by URL and recording every request."""

    def __init__(self, bodies: Dict[str, bytes]) -> None:
        self.bodies = bodies
        self.calls: List[str] = []

    def __call__(self, url, destination, session=None, timeout=60, label=""):
        from bsdvm.exceptions import DownloadFailed

        self.calls.append(url)
        if url not in self.bodies:
            raise DownloadFailed(f"HTTP error downloading {url}: 404 Not Found")
        destination.write_bytes(self.bodies[url])


def qemu_process(pid: int, disk: Path, serial_port: int = 4444, binary: str = "qemu-system-x86_64") -> ProcessInfo:
    cmdline = (
        f"/usr/local/bin/{binary}",
        "-serial", f"telnet:localhost:{serial_port},mux=on,server,wait=off",
        "-monitor", f"telnet:localhost:{serial_port + 1},mux=on,server,wait=off",
        "-drive", f"if=none,file={disk},id=hd0",
        "-daemonize",
    )
    return ProcessInfo(pid=pid, name=binary, cmdline=cmdline, cwd="/")


def sha512(data: bytes) -> str:
    return hashlib.sha512(data).hexdigest()


def write_manifest(path: Path, entries: Dict[str, bytes]) -> Path:
    """Write a CHECKSUM.SHA512 style manifest for ``entries`` (name -> content)."""
    lines = [f"SHA512 ({name}) = {sha512(content)}" for name, content in entries.items()]
    path.write_text("\n".join(lines) + "\n")
    return path


def xz(data: bytes) -> bytes:
    return lzma.compress(data, format=lzma.FORMAT_XZ)


@pytest.fixture
def fake_lister():
    return FakeLister


@pytest.fixture
def fake_process_table():
    return FakeProcessTable


@pytest.fixture
def runner_config(tmp_path) -> RunnerConfig:
    """Return a RunnerConfig rooted in the test's temporary directory."""
    return RunnerConfig(
        work_dir=tmp_path,
        download_uri="https://download.example.org/releases/",
        hardware=HardwareConfig(memory="4g", cpus=8, disk_size="45G", bridge="bridge0"),
        serial_port_base=4444,
        display_port_base=5900,
        vnc_listen="localhost",
        vnc_password_file=tmp_path / ".vnc-password",
        http_timeout=60,
        auto_install=False,
        ifup_dir=tmp_path / "etc",
    )


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set


# All environment variables that parse_env() reads, cleared for a clean slate.
_PARSE_ENV_VARS = [
    "CONFIG_FILE",
    "WORK_DIR",
    "DOWNLOAD_URI",
    "MEMORY",
    "CPUS",
    "DISK_SIZE",
    "BRIDGE",
    "SERIAL_PORT_BASE",
    "DISPLAY_PORT_BASE",
    "VNC_LISTEN",
    "VNC_PASSWORD_FILE",
    "HTTP_TIMEOUT",
    "AUTO_INSTALL",
    "IFUP_DIR",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear all environment variables that parse_env() reads and hide the system config file."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("bsdvm.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
