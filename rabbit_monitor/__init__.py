"""Rabbit Monitor host metrics exporter."""

__version__ = "5.0.0"

from rabbit_monitor.config import AppConfig, Settings, load_config  # noqa: E402
from rabbit_monitor.metrics import render_metrics  # noqa: E402
from rabbit_monitor.monitor import Monitor  # noqa: E402
from rabbit_monitor.scheduler import RefreshScheduler  # noqa: E402
from rabbit_monitor.store import SnapshotStore  # noqa: E402

__all__ = [
    "AppConfig",
    "Monitor",
    "RefreshScheduler",
    "Settings",
    "SnapshotStore",
    "__version__",
    "load_config",
    "render_metrics",
]
