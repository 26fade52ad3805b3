"""CLI entry points for FreeBSD-VM-Runner."""

from __future__ import annotations

import argparse
import subprocess
from pathlib import Path
from typing import List, Optional

from bsdvm.config import parse_env
from bsdvm.console import access_hint, open_console
from bsdvm.constants import RELEASE_CLASSES, SUPPORTED_ARCHES
from bsdvm.exceptions import AlreadyRunning, ManagerError
from bsdvm.host import check_dependencies, require_root
from bsdvm.models import ReleaseSelector, RunnerConfig
from bsdvm.network import ensure_ifup_scripts
from bsdvm.pipeline import LaunchResult, Pipeline
from bsdvm.utils import ensure_directory, has_controlling_tty, log

MEDIA_CHOICES = ("VM", "ISO")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="freebsd-vm-runner",
        description="Download, verify and boot FreeBSD release images under QEMU",
    )
    parser.add_argument("-a", "--arch", required=True, choices=sorted(SUPPORTED_ARCHES), help="Guest architecture")
    parser.add_argument(
        "-r",
        "--release",
        default="RELEASE",
        choices=RELEASE_CLASSES,
        help="Release class to track (default: RELEASE)",
    )
    parser.add_argument(
        "-t",
        "--type",
        default="VM",
        choices=MEDIA_CHOICES,
        help="Boot a prebuilt VM image or install from the ISO (default: VM)",
    )
    parser.add_argument("-T", "--tmux", action="store_true", help="Open serial and monitor consoles in tmux")
    parser.add_argument("-u", "--usb", metavar="QUERY", help="Pass through the USB device matching QUERY")
    parser.add_argument("-v", "--vnc", action="store_true", help="Enable a password-protected VNC display")
    parser.add_argument("-c", "--config", type=Path, metavar="PATH", help="YAML configuration file")
    parser.add_argument("--dry-run", action="store_true", help="Resolve and plan, then exit without downloading")
    return parser


def choose_console_mode(tmux: bool, is_iso: bool) -> str:
    mode = "tmux" if tmux else ("telnet" if is_iso else "none")
    if mode != "none" and not has_controlling_tty():
        log("INFO", "No TTY detected; running headless. The guest console will not be attached.")
        return "none"
    return mode


def show_dry_run(result: LaunchResult) -> None:
    artifact = result.artifact
    log("INFO", "=== Dry run ===")
    log("INFO", f"Version:     {result.version}")
    log("INFO", f"Artifact:    {artifact.remote_uri}")
    log("INFO", f"Manifest:    {artifact.checksum_manifest_uri}")
    if artifact.local_path.exists() and artifact.local_path.stat().st_size > 0:
        log("SUCCESS", f"Local copy:  {artifact.local_path} (present)")
    else:
        log("INFO", f"Local copy:  {artifact.local_path} (will download)")
    log("INFO", f"Disk image:  {result.disk_path}")
    log(
        "INFO",
        f"Instance #{result.slot.ordinal}: serial {result.slot.serial_port}, "
        f"monitor {result.slot.monitor_port}, display {result.slot.display_port}",
    )
    log("INFO", "=== Dry-run complete (nothing downloaded or started) ===")


def print_startup_banner(result: LaunchResult, cfg: RunnerConfig, vnc: bool) -> None:
    """Print a visually distinct access-info banner after the guest starts."""
    selector = result.selector
    slot = result.slot
    hw = cfg.hardware
    lines: List[str] = []
    lines.append(f"  VM: {result.disk_path.name} ({result.version}, {selector.media_kind})")
    lines.append(f"  Arch: {selector.arch} | Memory: {hw.memory} | CPUs: {hw.cpus} | Disk: {hw.disk_size}")
    lines.append(f"  Serial:  telnet localhost {slot.serial_port}")
    lines.append(f"  Monitor: telnet localhost {slot.monitor_port}")
    if vnc:
        lines.append(f"  VNC:  {cfg.vnc_listen}:{slot.display_port} (password in {cfg.vnc_password_file})")
    if result.plan is not None:
        usb = [arg for arg in result.plan.args if arg.startswith("usb-host,")]
        if usb:
            lines.append(f"  USB:  {usb[0]}")

    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def _report(exc: ManagerError) -> int:
    log("ERROR", f"{exc.stage} failed: {exc}")
    return exc.exit_code


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        selector = ReleaseSelector(args.arch, args.release, args.type)
        cfg = parse_env(args.config)
    except ManagerError as exc:
        return _report(exc)

    console_mode = choose_console_mode(args.tmux, selector.is_iso)

    try:
        if args.dry_run:
            result = Pipeline(cfg).run(selector, usb_query=args.usb, display=args.vnc, dry_run=True)
            show_dry_run(result)
            return 0

        require_root()
        check_dependencies(selector.profile, auto_install=cfg.auto_install, console_mode=console_mode)
        ensure_ifup_scripts(cfg.hardware.bridge, cfg.ifup_dir)
        ensure_directory(cfg.work_dir)
        log(
            "INFO",
            f"FreeBSD {selector.release_class} {selector.media_kind} for {selector.arch} "
            f"| Memory: {cfg.hardware.memory} | CPUs: {cfg.hardware.cpus} | Disk: {cfg.hardware.disk_size}",
        )
        result = Pipeline(cfg).run(selector, usb_query=args.usb, display=args.vnc)
    except AlreadyRunning as exc:
        code = _report(exc)
        label = Path(exc.image_path).stem if exc.image_path else None
        log("INFO", access_hint(exc.serial_port, exc.monitor_port, label))
        return code
    except ManagerError as exc:
        return _report(exc)
    except subprocess.CalledProcessError as exc:
        cmd = exc.cmd if isinstance(exc.cmd, str) else " ".join(str(part) for part in exc.cmd)
        log("ERROR", f"Command failed with status {exc.returncode}: {cmd}")
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1

    print_startup_banner(result, cfg, args.vnc)
    retcode = open_console(console_mode, result.slot)
    if retcode != 0:
        log("WARN", f"Console exited with status {retcode}")
    return retcode
