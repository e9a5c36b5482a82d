from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any
import configparser

DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_PORT = 8088
DEFAULT_CADENCE = 5
DEFAULT_ENERGY_TIMEOUT = 30.0

DETAIL_CATEGORIES = ("cpu", "memory", "swap", "storage", "network")


@dataclass(frozen=True)
class ServerConfig:
    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    token: str | None = None


@dataclass(frozen=True)
class EnergySettings:
    # enabled and interval come from probing ipmitool at startup
    enabled: bool = False
    interval: int | None = None
    timeout: float = DEFAULT_ENERGY_TIMEOUT


@dataclass(frozen=True)
class Settings:
    cadence: int = DEFAULT_CADENCE
    interfaces: list[str] = field(default_factory=list)
    mounts: list[str] = field(default_factory=list)
    components: list[str] = field(default_factory=list)
    processes: list[str] = field(default_factory=list)
    ups: list[str] = field(default_factory=list)
    batteries: bool = False
    cpu_details: bool = False
    memory_details: bool = False
    swap_details: bool = False
    storage_details: bool = False
    network_details: bool = False
    all_details: bool = False
    energy: EnergySettings = field(default_factory=EnergySettings)

    def details(self, category: str) -> bool:
        """Return True when the detail families of ``category`` are enabled."""
        if category not in DETAIL_CATEGORIES:
            raise ValueError(f"Unknown detail category: {category}")
        return self.all_details or getattr(self, f"{category}_details")


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig
    monitor: Settings
    log_level: str = "INFO"


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _get_list(value: str | None) -> list[str]:
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load an ``AppConfig`` from a CFG file, or the defaults when no path is given."""
    parser = configparser.ConfigParser()
    if path is not None:
        read_files = parser.read(path)
        if not read_files:
            raise FileNotFoundError(f"Config file not found: {path}")

    server = ServerConfig(
        address=parser.get("server", "address", fallback=DEFAULT_ADDRESS),
        port=parser.getint("server", "port", fallback=DEFAULT_PORT),
        token=_get_optional(parser.get("server", "token", fallback=None)),
    )

    monitor = Settings(
        cadence=max(1, parser.getint("monitor", "cache", fallback=DEFAULT_CADENCE)),
        interfaces=_get_list(parser.get("monitor", "interfaces", fallback=None)),
        mounts=_get_list(parser.get("monitor", "mounts", fallback=None)),
        components=_get_list(parser.get("monitor", "components", fallback=None)),
        processes=_get_list(parser.get("monitor", "processes", fallback=None)),
        ups=_get_list(parser.get("monitor", "ups", fallback=None)),
        batteries=parser.getboolean("monitor", "batteries", fallback=False),
        cpu_details=parser.getboolean("monitor", "cpu_details", fallback=False),
        memory_details=parser.getboolean("monitor", "memory_details", fallback=False),
        swap_details=parser.getboolean("monitor", "swap_details", fallback=False),
        storage_details=parser.getboolean("monitor", "storage_details", fallback=False),
        network_details=parser.getboolean("monitor", "network_details", fallback=False),
        all_details=parser.getboolean("monitor", "all_details", fallback=False),
        energy=EnergySettings(
            timeout=parser.getfloat(
                "monitor", "energy_timeout_s", fallback=DEFAULT_ENERGY_TIMEOUT
            ),
        ),
    )

    return AppConfig(
        server=server,
        monitor=monitor,
        log_level=parser.get("logging", "level", fallback="INFO"),
    )


def apply_cli_overrides(config: AppConfig, args: Any) -> AppConfig:
    """Return a copy of ``config`` with every option given on the command line applied.

    Options left at ``None`` (or ``False`` for switches) keep the file's value.
    Lists given on the command line replace the file's lists.
    """
    server_changes: dict[str, Any] = {}
    if args.address is not None:
        server_changes["address"] = args.address
    if args.port is not None:
        server_changes["port"] = args.port
    if args.token is not None:
        server_changes["token"] = _get_optional(args.token)

    monitor_changes: dict[str, Any] = {}
    if args.cache is not None:
        monitor_changes["cadence"] = max(1, args.cache)
    for name in ("interfaces", "mounts", "components", "processes", "ups"):
        value = getattr(args, name)
        if value is not None:
            monitor_changes[name] = _get_list(value)
    if args.batteries:
        monitor_changes["batteries"] = True
    for category in DETAIL_CATEGORIES:
        if getattr(args, f"{category}_details"):
            monitor_changes[f"{category}_details"] = True
    if args.all_details:
        monitor_changes["all_details"] = True
    if args.energy_timeout is not None:
        monitor_changes["energy"] = replace(
            config.monitor.energy, timeout=args.energy_timeout
        )

    return replace(
        config,
        server=replace(config.server, **server_changes),
        monitor=replace(config.monitor, **monitor_changes),
    )
