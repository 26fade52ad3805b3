"""Guest console access over telnet and tmux."""

from __future__ import annotations

import signal
import subprocess
from typing import List, Optional

from bsdvm.models import InstanceSlot
from bsdvm.utils import log, run

CONSOLE_MODES = ("telnet", "tmux", "none")


def _telnet_cmd(port: int) -> List[str]:
    return ["telnet", "localhost", str(port)]


def _wait_foreground(cmd: List[str]) -> int:
    proc = subprocess.Popen(cmd)

    def _terminate(signum, frame):
        proc.terminate()

    prev_sigterm = signal.signal(signal.SIGTERM, _terminate)
    try:
        return proc.wait()
    except KeyboardInterrupt:
        proc.send_signal(signal.SIGINT)
        return proc.wait()
    finally:
        signal.signal(signal.SIGTERM, prev_sigterm)


def attach_telnet(port: int) -> int:
    """Attach to a telnet console on localhost (Ctrl+] then 'quit' to exit)."""
    log("INFO", f"Attaching to guest console on port {port} (Ctrl+] then 'quit' to exit)")
    return _wait_foreground(_telnet_cmd(port))


def tmux_session_exists(label: str) -> bool:
    try:
        result = run(["tmux", "has-session", "-t", label], check=False, capture_output=True)
    except FileNotFoundError:
        return False
    return result.returncode == 0


def start_tmux(slot: InstanceSlot) -> int:
    """Open detached tmux sessions for the monitor and serial console, then attach."""
    run(["tmux", "new-session", "-d", "-s", slot.monitor_session, " ".join(_telnet_cmd(slot.monitor_port))])
    run(["tmux", "new-session", "-d", "-s", slot.session_label, " ".join(_telnet_cmd(slot.serial_port))])
    return _wait_foreground(["tmux", "attach", "-t", slot.session_label])


def access_hint(serial_port: Optional[int], monitor_port: Optional[int], session_label: Optional[str] = None) -> str:
    if session_label and tmux_session_exists(session_label):
        return f"Try: tmux attach -t {session_label}"
    hints = []
    if serial_port is not None:
        hints.append(f"telnet localhost {serial_port}")
    if monitor_port is not None:
        hints.append(f"telnet localhost {monitor_port}")
    if not hints:
        return "Attach to the existing console or shut the guest down."
    return "Try: " + " or ".join(hints)


def open_console(mode: str, slot: InstanceSlot) -> int:
    if mode == "tmux":
        return start_tmux(slot)
    if mode == "telnet":
        return attach_telnet(slot.serial_port)
    log(
        "INFO",
        f"Connect to the guest console (telnet localhost {slot.serial_port}) "
        f"or the QEMU monitor (telnet localhost {slot.monitor_port})",
    )
    return 0
