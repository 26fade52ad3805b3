"""freebsd-vm-runner package."""

__all__ = [
    "checksum",
    "cli",
    "config",
    "console",
    "constants",
    "disk",
    "display",
    "exceptions",
    "fetcher",
    "host",
    "instances",
    "launcher",
    "listing",
    "models",
    "network",
    "pipeline",
    "plan",
    "process_table",
    "usb",
    "utils",
]
