"""Configuration loading and environment variable parsing for FreeBSD-VM-Runner."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from bsdvm.constants import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_DOWNLOAD_URI,
    DEFAULT_IFUP_DIR,
    DISPLAY_PORT_BASE,
    SERIAL_PORT_BASE,
    TRUTHY,
    VNC_BASE_PORT,
)
from bsdvm.exceptions import ManagerError
from bsdvm.models import HardwareConfig, RunnerConfig
from bsdvm.utils import get_env, log, parse_int, validate_disk_size, validate_memory

_DEFAULTS: Dict[str, Optional[str]] = {
    "work_dir": ".",
    "download_uri": DEFAULT_DOWNLOAD_URI,
    "memory": "4g",
    "cpus": "8",
    "disk_size": "45G",
    "bridge": "bridge0",
    "serial_port_base": str(SERIAL_PORT_BASE),
    "display_port_base": str(DISPLAY_PORT_BASE),
    "vnc_listen": "localhost",
    "vnc_password_file": None,
    "http_timeout": "60",
    "auto_install": "0",
    "ifup_dir": str(DEFAULT_IFUP_DIR),
}


def load_config_file(config_path: Optional[Path] = None) -> Dict[str, str]:
    """Read optional YAML settings. Keys are the lower-case environment names."""
    explicit = config_path is not None
    if config_path is None:
        env_path = get_env("CONFIG_FILE")
        if env_path:
            config_path = Path(env_path)
            explicit = True
        else:
            config_path = DEFAULT_CONFIG_PATH
    if not config_path.exists():
        if explicit:
            raise ManagerError(f"Config file missing: {config_path}")
        return {}
    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ManagerError(f"Config file {config_path} contains invalid YAML: {exc}")
    if not isinstance(data, dict):
        raise ManagerError(f"Config file {config_path} must contain a mapping, got {type(data).__name__}")

    values: Dict[str, str] = {}
    for key, value in data.items():
        name = str(key).lower()
        if name not in _DEFAULTS:
            log("WARN", f"Ignoring unknown setting '{key}' in {config_path}")
            continue
        if value is not None:
            values[name] = str(value)
    log("DEBUG", f"Loaded {len(values)} setting(s) from {config_path}")
    return values


def _setting(name: str, file_values: Dict[str, str]) -> Optional[str]:
    env = get_env(name.upper())
    if env is not None and env.strip():
        return env.strip()
    return file_values.get(name, _DEFAULTS[name])


def parse_env(config_path: Optional[Path] = None) -> RunnerConfig:
    file_values = load_config_file(config_path)

    def setting(name: str) -> str:
        value = _setting(name, file_values)
        assert value is not None
        return value

    work_dir = Path(setting("work_dir")).expanduser().resolve()
    download_uri = setting("download_uri")
    if not download_uri.startswith(("http://", "https://")):
        raise ManagerError(f"DOWNLOAD_URI must start with http:// or https:// (got '{download_uri}')")
    if not download_uri.endswith("/"):
        download_uri += "/"

    hardware = HardwareConfig(
        memory=validate_memory(setting("memory")),
        cpus=parse_int("CPUS", setting("cpus"), min_val=1, max_val=1024),
        disk_size=validate_disk_size(setting("disk_size")),
        bridge=setting("bridge"),
    )

    serial_port_base = parse_int("SERIAL_PORT_BASE", setting("serial_port_base"), min_val=1024, max_val=65000)
    display_port_base = parse_int(
        "DISPLAY_PORT_BASE", setting("display_port_base"), min_val=VNC_BASE_PORT, max_val=65000
    )
    if serial_port_base <= display_port_base < serial_port_base + 256:
        log("WARN", "DISPLAY_PORT_BASE is close to SERIAL_PORT_BASE; ports may overlap with many instances")

    password_file = _setting("vnc_password_file", file_values)
    vnc_password_file = Path(password_file).expanduser().resolve() if password_file else work_dir / ".vnc-password"

    return RunnerConfig(
        work_dir=work_dir,
        download_uri=download_uri,
        hardware=hardware,
        serial_port_base=serial_port_base,
        display_port_base=display_port_base,
        vnc_listen=setting("vnc_listen"),
        vnc_password_file=vnc_password_file,
        http_timeout=parse_int("HTTP_TIMEOUT", setting("http_timeout"), min_val=1, max_val=3600),
        auto_install=setting("auto_install").lower() in TRUTHY,
        ifup_dir=Path(setting("ifup_dir")),
    )
