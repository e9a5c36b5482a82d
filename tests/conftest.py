"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from types import SimpleNamespace
from typing import NamedTuple

import pytest

from rabbit_monitor.config import EnergySettings, Settings
from rabbit_monitor.cpu import CpuCounters
from rabbit_monitor.facts import ComponentReading, DcmiReading, DiskReading, ProcessReading
from rabbit_monitor.models import CpuThread, SystemInfo, Ups
from rabbit_monitor.monitor import Monitor
from rabbit_monitor.store import SnapshotStore

BOOT_TIME = 1_700_000_000.0
START_TIME = 1_700_000_100.0


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "linux: mark test as Linux-specific"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class NetCounters(NamedTuple):
    bytes_sent: int = 0
    bytes_recv: int = 0
    packets_sent: int = 0
    packets_recv: int = 0
    errin: int = 0
    errout: int = 0


class FakeClock:
    """Manually advanced clock usable as both wall and monotonic time."""

    def __init__(self, start: float = 0.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeFacts:
    """In-memory stand-in for PlatformFacts."""

    def __init__(self) -> None:
        self.counters: CpuCounters | None = CpuCounters(user=100.0, idle=900.0)
        self.load = (0.5, 0.25, 0.1)
        self.threads = [
            CpuThread(name="cpu0", brand="Test CPU", usage=10.0, frequency=2400),
            CpuThread(name="cpu1", brand="Test CPU", usage=30.0, frequency=2400),
        ]
        self.mem = SimpleNamespace(total=8000, available=6000, used=2000, free=5000)
        self.swp = SimpleNamespace(total=0, used=0, free=0)
        self.disk_list: list[DiskReading] = []
        self.net: dict[str, NetCounters] = {}
        self.component_list: list[ComponentReading] = []
        self.procs: dict[int, ProcessReading] = {}
        self.kept_handles: set[int] | None = None
        self.dcmi: DcmiReading | None = None
        self.sensor_value: float | None = None
        self.sensor_calls = 0
        self.ups_data: dict[str, Ups] = {}
        self.battery_data: dict = {}

    def system_info(self) -> SystemInfo:
        return SystemInfo(
            name="Debian GNU/Linux",
            kernel_version="6.1.0",
            os_version="12",
            long_os_version="Debian GNU/Linux 12 (bookworm)",
            distribution_id="debian",
            host_name="testhost",
            boot_time=BOOT_TIME,
        )

    def cpu_arch(self) -> str:
        return "x86_64"

    def cpu_count(self) -> int:
        return len(self.threads)

    def cpu_counters(self) -> CpuCounters | None:
        return self.counters

    def load_average(self):
        return self.load

    def cpu_threads(self):
        return list(self.threads)

    def memory(self):
        return self.mem

    def swap(self):
        return self.swp

    def disks(self):
        return list(self.disk_list)

    def network(self):
        return dict(self.net)

    def components(self):
        return list(self.component_list)

    def pid_exists(self, pid: int) -> bool:
        return pid in self.procs

    def pids_by_name(self, name: str) -> list[int]:
        return sorted(pid for pid, proc in self.procs.items() if proc.name == name)

    def process_list(self):
        return sorted((pid, proc.name) for pid, proc in self.procs.items())

    def process(self, pid: int):
        return self.procs.get(pid)

    def forget_processes(self, keep: set[int]) -> None:
        self.kept_handles = set(keep)

    def dcmi_power(self):
        return self.dcmi

    def sensor_power(self, timeout=None):
        self.sensor_calls += 1
        return self.sensor_value

    def ups_names(self):
        return sorted(self.ups_data)

    def ups(self, name: str):
        ups = self.ups_data.get(name)
        return Ups(**vars(ups)) if ups is not None else None

    def batteries(self):
        return dict(self.battery_data)

    # helpers for tests

    def add_disk(self, name: str, mount: str, total: int, used: int,
                 read_bytes: int = 0, write_bytes: int = 0) -> None:
        self.disk_list = [d for d in self.disk_list if d.name != name]
        self.disk_list.append(
            DiskReading(name, mount, total, used, total - used, read_bytes, write_bytes)
        )

    def set_interface(self, name: str, **counters: int) -> None:
        self.net[name] = NetCounters(**counters)

    def add_process(self, pid: int, name: str, cpu: float = 1.5,
                    rss: int = 1024, vms: int = 4096) -> None:
        self.procs[pid] = ProcessReading(
            pid=pid,
            name=name,
            cpu_percent=cpu,
            rss=rss,
            vms=vms,
            cpu_time=12.5,
            create_time=START_TIME,
        )


@pytest.fixture
def facts():
    return FakeFacts()


@pytest.fixture
def wall_clock():
    return FakeClock(start=BOOT_TIME + 1000.0)


@pytest.fixture
def monotonic():
    return FakeClock(start=0.0)


@pytest.fixture
def settings():
    return Settings(cadence=1)


@pytest.fixture
def store():
    return SnapshotStore()


@pytest.fixture
def make_monitor(store, facts, wall_clock, monotonic):
    """Build a Monitor over the fake platform with the given settings."""

    def _make(settings: Settings | None = None) -> Monitor:
        return Monitor(
            store,
            settings or Settings(cadence=1),
            facts,
            wall_clock=wall_clock,
            monotonic=monotonic,
        )

    return _make


@pytest.fixture
def energy_settings():
    return EnergySettings(enabled=True, interval=None, timeout=1.0)
