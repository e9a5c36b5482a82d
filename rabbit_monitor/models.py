"""Snapshot data model.

Every per-device entry carries the wall-clock time (epoch seconds) of the
sample that produced it in ``refreshed``. Entries start zeroed and are
overwritten in place by each refresh cycle.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SystemInfo:
    name: str = "unknown"
    kernel_version: str = "unknown"
    os_version: str = "unknown"
    long_os_version: str = "unknown"
    distribution_id: str = "unknown"
    host_name: str = "unknown"
    boot_time: float = 0.0


@dataclass
class CpuThread:
    name: str
    brand: str
    usage: float
    frequency: int  # MHz


@dataclass
class Processor:
    min1: float = 0.0
    min5: float = 0.0
    min15: float = 0.0
    percent: float = 0.0
    arch: str = "unknown"
    thread_count: int = 0
    threads: list[CpuThread] = field(default_factory=list)
    refreshed: float = 0.0


@dataclass
class Memory:
    total: int = 0
    available: int = 0
    used: int = 0
    free: int = 0
    percent: float = 0.0
    refreshed: float = 0.0


@dataclass
class Swap:
    total: int = 0
    used: int = 0
    free: int = 0
    percent: float = 0.0
    refreshed: float = 0.0


@dataclass
class Storage:
    name: str
    mount_point: str
    total: int = 0
    used: int = 0
    free: int = 0
    percent: float = 0.0
    read_speed: float = 0.0  # bytes/s
    write_speed: float = 0.0  # bytes/s
    total_read_bytes: int = 0
    total_written_bytes: int = 0
    refreshed: float = 0.0


@dataclass
class Network:
    download: float = 0.0  # Mbit/s
    upload: float = 0.0  # Mbit/s
    total_received_bytes: int = 0
    total_transmitted_bytes: int = 0
    total_errors_on_received: int = 0
    total_errors_on_transmitted: int = 0
    total_packets_received: int = 0
    total_packets_transmitted: int = 0
    refreshed: float = 0.0


@dataclass
class Component:
    label: str
    temperature: float | None = None
    critical: float | None = None
    max: float | None = None
    refreshed: float = 0.0


@dataclass
class Process:
    pid: int = 0
    name: str = ""
    cpu: float = 0.0
    memory: int = 0  # resident bytes
    virtual_memory: int = 0
    cpu_time: float = 0.0  # user + system seconds
    start_time: float = 0.0
    refreshed: float = 0.0


@dataclass
class Energy:
    power_consumption: float = 0.0  # watts
    refreshed: float = 0.0
    is_updating: bool = False


@dataclass
class Ups:
    manufacturer: str = ""
    model: str = ""
    status: str = ""
    charge_percent: float = 0.0
    load_percent: float = 0.0
    runtime_seconds: int = 0
    input_voltage: float = 0.0
    output_voltage: float = 0.0
    real_power_nominal: float = 0.0
    power_usage: float = 0.0  # watts, derived from load and nominal power
    refreshed: float = 0.0


@dataclass
class Battery:
    vendor: str = ""
    model: str = ""
    status: str = "Unknown"
    charge_percent: float = 0.0
    voltage: float = 0.0
    power: float = 0.0  # watts
    time_to_empty: int | None = None  # seconds
    time_to_full: int | None = None  # seconds
    cycle_count: int | None = None
    refreshed: float = 0.0


@dataclass
class Snapshot:
    system_info: SystemInfo = field(default_factory=SystemInfo)
    processor: Processor = field(default_factory=Processor)
    memory: Memory = field(default_factory=Memory)
    swap: Swap = field(default_factory=Swap)
    storage_devices: dict[str, Storage] = field(default_factory=dict)
    network_interfaces: dict[str, Network] = field(default_factory=dict)
    components: dict[str, Component] = field(default_factory=dict)
    processes: dict[str, Process] = field(default_factory=dict)
    energy: Energy = field(default_factory=Energy)
    upses: dict[str, Ups] = field(default_factory=dict)
    batteries: dict[str, Battery] = field(default_factory=dict)
