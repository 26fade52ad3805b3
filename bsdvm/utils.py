"""Utility functions for FreeBSD-VM-Runner."""

from __future__ import annotations

import json
import lzma
import os
import re
import secrets
import shutil
import string
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional

try:
    import requests
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from bsdvm.constants import (
    _LOG_VERBOSE,
    DISK_SIZE_RE,
    MEMORY_RE,
    QEMU_IMG,
    USER_AGENT,
)
from bsdvm.exceptions import DownloadFailed, ManagerError


def log(level: str, message: str) -> None:
    """Lightweight structured logging with coloured level tags."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def parse_int(name: str, raw: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ManagerError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ManagerError(f"{name} must be <= {max_val} (got {value})")
    return value


def validate_disk_size(raw: str) -> str:
    if not DISK_SIZE_RE.match(raw):
        raise ManagerError(
            f"Invalid DISK_SIZE '{raw}'. Use a number with optional suffix: K, M, G, T (e.g. '45G')"
        )
    return raw


def validate_memory(raw: str) -> str:
    if not MEMORY_RE.match(raw):
        raise ManagerError(f"Invalid MEMORY '{raw}'. Use a number with optional suffix: K, M, G, T (e.g. '4g')")
    return raw


def parse_size_to_bytes(raw: str) -> int:
    """Convert a qemu-img style size ('45G', '512M', '1024') to bytes."""
    validate_disk_size(raw)
    units = {"K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}
    suffix = raw[-1].upper()
    if suffix in units:
        return int(raw[:-1]) * units[suffix]
    return int(raw)


def _print_progress(downloaded: int, total_bytes: Optional[int], start_time: float) -> None:
    elapsed = time.time() - start_time
    speed = downloaded / elapsed if elapsed > 0 else 0
    downloaded_mb = downloaded / (1024 * 1024)
    if total_bytes:
        total_mb = total_bytes / (1024 * 1024)
        pct = downloaded * 100 / total_bytes
        remaining = (total_bytes - downloaded) / speed if speed > 0 else 0
        eta_str = time.strftime("%M:%S", time.gmtime(remaining))
        bar_len = 30
        filled = int(bar_len * downloaded / total_bytes)
        bar = "#" * filled + "-" * (bar_len - filled)
        print(
            f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
            f"({speed / (1024 * 1024):.1f} MiB/s, ETA {eta_str})",
            end="", flush=True,
        )
    else:
        print(
            f"\r  {downloaded_mb:.1f} MiB downloaded ({speed / (1024 * 1024):.1f} MiB/s)",
            end="", flush=True,
        )


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    return session


def download_file(
    url: str,
    destination: Path,
    session: Optional[requests.Session] = None,
    timeout: int = 60,
    label: str = "Downloading",
    show_progress: bool = True,
) -> None:
    """Stream ``url`` into ``destination``.

    The payload is written to a temporary file in the destination directory and
    only renamed into place once the transfer completed, so an interrupted
    download never leaves a truncated file under the final name.
    """
    log("INFO", f"{label}: {url}")
    session = session or new_session()
    try:
        response = session.get(url, stream=True, timeout=timeout)
    except requests.RequestException as exc:
        raise DownloadFailed(f"Failed to download {url}: {exc}")
    if response.status_code >= 400:
        response.close()
        raise DownloadFailed(f"HTTP error downloading {url}: {response.status_code} {response.reason}")

    total = response.headers.get("Content-Length")
    total_bytes = int(total) if total else None
    downloaded = 0
    start_time = time.time()

    destination.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(delete=False, dir=destination.parent, prefix=".download-") as tmp:
        tmp_path = Path(tmp.name)
        try:
            for chunk in response.iter_content(chunk_size=1024 * 256):
                if not chunk:
                    continue
                tmp.write(chunk)
                downloaded += len(chunk)
                if show_progress:
                    _print_progress(downloaded, total_bytes, start_time)
            if show_progress:
                print(flush=True)
            if total_bytes is not None and downloaded != total_bytes:
                raise DownloadFailed(
                    f"Incomplete download of {url}: got {downloaded} of {total_bytes} bytes"
                )
        except requests.RequestException as exc:
            tmp_path.unlink(missing_ok=True)
            raise DownloadFailed(f"Failed to download {url}: {exc}")
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
        finally:
            response.close()
    tmp_path.replace(destination)
    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {destination.name} ({downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s)")


def decompress_xz(source: Path, destination: Path) -> Path:
    """Decompress an .xz file into ``destination`` (the source is left in place)."""
    log("INFO", f"Decompressing {source.name}...")
    try:
        with lzma.open(source, "rb") as src, open(destination, "wb") as dst:
            shutil.copyfileobj(src, dst, length=1024 * 1024)
    except (lzma.LZMAError, EOFError) as exc:
        destination.unlink(missing_ok=True)
        raise ManagerError(f"Failed to decompress {source}: {exc}")
    return destination


def qemu_img_virtual_size(path: Path) -> int:
    info = subprocess.run(
        [QEMU_IMG, "info", "--output=json", str(path)],
        capture_output=True,
        text=True,
    )
    if info.returncode != 0:
        return 0
    return int(json.loads(info.stdout).get("virtual-size", 0))


def grow_image(path: Path, size: str) -> bool:
    """Grow an image's virtual size to ``size``. Never shrinks; returns True if resized."""
    current_vsize = qemu_img_virtual_size(path)
    requested_bytes = parse_size_to_bytes(size)
    if requested_bytes <= current_vsize:
        log("INFO", f"{path.name} already {current_vsize // (1024**3)}G (>= {size}); skip resize")
        return False
    log("INFO", f"Resizing {path.name} to {size}...")
    run([QEMU_IMG, "resize", str(path), size])
    return True


def create_blank_image(path: Path, size: str) -> None:
    log("INFO", f"Creating blank disk {path} ({size})")
    run([QEMU_IMG, "create", "-f", "qcow2", str(path), size])


def has_controlling_tty() -> bool:
    """Return True if both stdin and stdout are attached to a TTY."""
    for stream in (sys.stdin, sys.stdout):
        try:
            if not stream.isatty():
                return False
        except (AttributeError, ValueError):
            return False
    return True


def prompt_yes_no(question: str, input_func: Callable[[str], str] = input) -> bool:
    """Ask a y/n question on the terminal. Without a TTY the answer is no."""
    if not has_controlling_tty():
        log("WARN", f"No TTY available; assuming 'no' for: {question}")
        return False
    try:
        answer = input_func(f"{question} (y/n): ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def generate_password(length: int = 16) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def sanitize_device_id(tag: str) -> str:
    """Return an identifier QEMU accepts for ``id=`` properties."""
    safe = re.sub(r"[^0-9A-Za-z._-]", "-", tag)
    safe = safe.strip("-")
    if not safe or not safe[0].isalpha():
        safe = f"dev-{safe}" if safe else "dev"
    return safe


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
