from __future__ import annotations

import logging
import os
from pathlib import Path
import platform
import socket
import subprocess
from typing import Any, NamedTuple

import psutil

from rabbit_monitor.cpu import CpuCounters, clamp_percent
from rabbit_monitor.logging_utils import TRACE_LEVEL
from rabbit_monitor.models import Battery, CpuThread, SystemInfo, Ups

POWER_SUPPLY_PATH = "/sys/class/power_supply"

# ipmitool sensor names that already report whole-system draw
SYSTEM_POWER_SENSORS = (
    "pwr consumption",
    "system power",
    "total power",
    "power meter",
    "power1",
)


class DiskReading(NamedTuple):
    name: str
    mount_point: str
    total: int
    used: int
    free: int
    read_bytes: int
    write_bytes: int


class ComponentReading(NamedTuple):
    label: str
    current: float | None
    high: float | None
    critical: float | None


class ProcessReading(NamedTuple):
    pid: int
    name: str
    cpu_percent: float
    rss: int
    vms: int
    cpu_time: float
    create_time: float


class DcmiReading(NamedTuple):
    power: float | None
    sampling_period: int | None


def parse_dcmi_power(output: str) -> DcmiReading:
    """Parse ``ipmitool dcmi power reading`` output."""
    power: float | None = None
    sampling_period: int | None = None
    for line in output.splitlines():
        if ":" not in line:
            continue
        key, rest = line.split(":", 1)
        key = key.strip().lower()
        value = rest.strip().split()
        if not value:
            continue
        if key == "instantaneous power reading":
            try:
                power = float(value[0])
            except ValueError:
                pass
        elif key == "sampling period":
            # e.g. "00000300 Seconds."
            try:
                sampling_period = int(value[0])
            except ValueError:
                pass
    return DcmiReading(power=power, sampling_period=sampling_period)


def parse_sensor_power(output: str) -> float | None:
    """Extract system power draw in watts from ``ipmitool sensor`` output.

    A sensor that reports whole-system draw wins outright; otherwise the CPU,
    DIMM and PSU input readings are summed.
    """
    total = 0.0
    found = False
    for line in output.splitlines():
        parts = [part.strip() for part in line.split("|")]
        if len(parts) < 3:
            continue
        name = parts[0].lower()
        units = parts[2].lower()
        if "watt" not in units:
            continue
        try:
            value = float(parts[1])
        except ValueError:
            continue
        if value <= 0:
            continue
        if any(sensor in name for sensor in SYSTEM_POWER_SENSORS):
            return value
        if "cpu" in name or "dimm" in name or ("psu" in name and "out" not in name):
            total += value
            found = True
    return total if found and total > 0 else None


def parse_upsc(output: str) -> Ups:
    """Parse ``upsc <name>`` key/value output into an ``Ups``."""
    ups = Ups()
    for line in output.splitlines():
        if line.startswith("Init SSL") or ":" not in line:
            continue
        key, value = (part.strip() for part in line.split(":", 1))
        try:
            if key == "device.mfr":
                ups.manufacturer = value
            elif key == "device.model":
                ups.model = value
            elif key == "ups.status":
                ups.status = value
            elif key == "battery.charge":
                ups.charge_percent = float(value)
            elif key == "ups.load":
                ups.load_percent = float(value)
            elif key == "battery.runtime":
                ups.runtime_seconds = int(float(value))
            elif key == "input.voltage":
                ups.input_voltage = float(value)
            elif key == "output.voltage":
                ups.output_voltage = float(value)
            elif key == "ups.realpower.nominal":
                ups.real_power_nominal = float(value)
        except ValueError:
            continue
    if ups.real_power_nominal > 0:
        ups.power_usage = (ups.load_percent / 100.0) * ups.real_power_nominal
    # overload readings go past 100; the draw above keeps them
    ups.load_percent = clamp_percent(ups.load_percent)
    return ups


class PlatformFacts:
    """Point-in-time readings of the host.

    Every method is fallible: a reading that cannot be taken comes back as
    ``None`` or an empty collection and is logged at debug level.
    """

    def __init__(self, ipmitool_path: str = "ipmitool", upsc_path: str = "upsc") -> None:
        self.ipmitool_path = ipmitool_path
        self.upsc_path = upsc_path
        self.logger = logging.getLogger(self.__class__.__name__)
        self._cpu_brand: str | None = None
        # psutil computes per-process cpu_percent against the previous call
        # on the same Process object.
        self._process_handles: dict[int, psutil.Process] = {}

    # -- static facts -----------------------------------------------------

    def system_info(self) -> SystemInfo:
        info = SystemInfo(
            name=platform.system() or "unknown",
            kernel_version=platform.release() or "unknown",
            os_version=platform.version() or "unknown",
            long_os_version=platform.platform() or "unknown",
            distribution_id=(platform.system() or "unknown").lower(),
            host_name=socket.gethostname() or "unknown",
        )
        if platform.system().lower() == "linux":
            try:
                release = platform.freedesktop_os_release()
            except OSError:
                self.logger.debug("os-release not readable.")
            else:
                info.name = release.get("NAME", info.name)
                info.os_version = release.get("VERSION_ID", info.os_version)
                info.long_os_version = release.get("PRETTY_NAME", info.long_os_version)
                info.distribution_id = release.get("ID", info.distribution_id)
        try:
            info.boot_time = float(psutil.boot_time())
        except (OSError, psutil.Error):
            self.logger.debug("Boot time unavailable.")
        return info

    def cpu_arch(self) -> str:
        return platform.machine() or "unknown"

    def cpu_count(self) -> int:
        return psutil.cpu_count(logical=True) or 0

    def cpu_brand(self) -> str:
        if self._cpu_brand is None:
            brand = ""
            cpuinfo = self._read_file("/proc/cpuinfo")
            if cpuinfo:
                for line in cpuinfo.splitlines():
                    if line.lower().startswith("model name") and ":" in line:
                        brand = line.split(":", 1)[1].strip()
                        break
            self._cpu_brand = brand or platform.processor() or "unknown"
        return self._cpu_brand

    # -- processor --------------------------------------------------------

    def cpu_counters(self) -> CpuCounters | None:
        try:
            times = psutil.cpu_times()
        except (OSError, psutil.Error):
            self.logger.debug("Failed to read CPU counters.")
            return None
        return CpuCounters(
            user=getattr(times, "user", 0.0),
            nice=getattr(times, "nice", 0.0),
            system=getattr(times, "system", 0.0),
            idle=getattr(times, "idle", 0.0),
            iowait=getattr(times, "iowait", 0.0),
            irq=getattr(times, "irq", 0.0),
            softirq=getattr(times, "softirq", 0.0),
            steal=getattr(times, "steal", 0.0),
        )

    def load_average(self) -> tuple[float, float, float] | None:
        try:
            return tuple(float(value) for value in psutil.getloadavg())  # type: ignore[return-value]
        except (OSError, AttributeError):
            self.logger.debug("Load average unavailable.")
            return None

    def cpu_threads(self) -> list[CpuThread]:
        try:
            usages = psutil.cpu_percent(interval=None, percpu=True)
        except (OSError, psutil.Error):
            self.logger.debug("Failed to read per-thread CPU usage.")
            return []
        frequencies: list[Any] = []
        try:
            frequencies = psutil.cpu_freq(percpu=True) or []
        except (OSError, NotImplementedError, AttributeError):
            self.logger.debug("CPU frequency data unavailable.")
        brand = self.cpu_brand()
        threads: list[CpuThread] = []
        for idx, usage in enumerate(usages):
            freq = frequencies[idx] if idx < len(frequencies) else None
            if freq is None and len(frequencies) == 1:
                freq = frequencies[0]
            threads.append(
                CpuThread(
                    name=f"cpu{idx}",
                    brand=brand,
                    usage=float(usage),
                    frequency=int(freq.current) if freq and freq.current else 0,
                )
            )
        return threads

    # -- memory -----------------------------------------------------------

    def memory(self) -> Any | None:
        try:
            return psutil.virtual_memory()
        except (OSError, psutil.Error):
            self.logger.debug("Failed to read memory totals.")
            return None

    def swap(self) -> Any | None:
        try:
            return psutil.swap_memory()
        except (OSError, psutil.Error, RuntimeError):
            self.logger.debug("Failed to read swap totals.")
            return None

    # -- storage ----------------------------------------------------------

    def disks(self) -> list[DiskReading]:
        try:
            partitions = psutil.disk_partitions(all=False)
        except (OSError, psutil.Error):
            self.logger.debug("Failed to list disk partitions.")
            return []
        try:
            io_stats = psutil.disk_io_counters(perdisk=True) or {}
        except (OSError, psutil.Error, RuntimeError):
            self.logger.debug("Disk IO counters unavailable.")
            io_stats = {}

        disks: list[DiskReading] = []
        for part in partitions:
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                self.logger.debug("Skipping filesystem at %s (unreadable).", part.mountpoint)
                continue
            io_entry = io_stats.get(self._io_key(part.device))
            disks.append(
                DiskReading(
                    name=part.device,
                    mount_point=part.mountpoint,
                    total=int(usage.total),
                    used=max(int(usage.total) - int(usage.free), 0),
                    free=int(usage.free),
                    read_bytes=int(io_entry.read_bytes) if io_entry else 0,
                    write_bytes=int(io_entry.write_bytes) if io_entry else 0,
                )
            )
        return disks

    @staticmethod
    def _io_key(device: str) -> str:
        # /dev/mapper/* and /dev/disk/by-* are symlinks to the kernel name
        # psutil reports IO counters under.
        return os.path.basename(os.path.realpath(device)) if device else device

    # -- network ----------------------------------------------------------

    def network(self) -> dict[str, Any]:
        try:
            return psutil.net_io_counters(pernic=True) or {}
        except (OSError, psutil.Error):
            self.logger.debug("Failed to read network counters.")
            return {}

    # -- thermal ----------------------------------------------------------

    def components(self) -> list[ComponentReading]:
        if not hasattr(psutil, "sensors_temperatures"):
            self.logger.debug("Temperature sensors not supported on this platform.")
            return []
        try:
            temps = psutil.sensors_temperatures(fahrenheit=False) or {}
        except (OSError, psutil.Error):
            self.logger.debug("Failed to read temperature sensors.")
            return []
        readings: list[ComponentReading] = []
        seen: set[str] = set()
        for chip, entries in temps.items():
            for idx, entry in enumerate(entries):
                label = f"{chip} {entry.label}" if entry.label else chip
                if label in seen:
                    label = f"{label} {idx}"
                seen.add(label)
                readings.append(
                    ComponentReading(
                        label=label,
                        current=entry.current,
                        high=entry.high,
                        critical=entry.critical,
                    )
                )
        return readings

    # -- processes --------------------------------------------------------

    def pid_exists(self, pid: int) -> bool:
        return psutil.pid_exists(pid)

    def pids_by_name(self, name: str) -> list[int]:
        pids: list[int] = []
        for proc in psutil.process_iter(attrs=["pid", "name"]):
            if proc.info.get("name") == name:
                pids.append(proc.info["pid"])
        return sorted(pids)

    def process_list(self) -> list[tuple[int, str]]:
        return sorted(
            (proc.info["pid"], proc.info.get("name") or "")
            for proc in psutil.process_iter(attrs=["pid", "name"])
        )

    def process(self, pid: int) -> ProcessReading | None:
        handle = self._process_handles.get(pid)
        try:
            if handle is None or not handle.is_running():
                handle = psutil.Process(pid)
                self._process_handles[pid] = handle
            with handle.oneshot():
                memory = handle.memory_info()
                cpu_times = handle.cpu_times()
                return ProcessReading(
                    pid=pid,
                    name=handle.name(),
                    # psutil reports per-core percent; scale to a share of the host
                    cpu_percent=float(handle.cpu_percent(interval=None))
                    / max(self.cpu_count(), 1),
                    rss=int(memory.rss),
                    vms=int(memory.vms),
                    cpu_time=float(cpu_times.user + cpu_times.system),
                    create_time=float(handle.create_time()),
                )
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            self._process_handles.pop(pid, None)
            self.logger.debug("Process %s no longer exists.", pid)
            return None
        except psutil.AccessDenied:
            self.logger.debug("Access denied reading process %s.", pid)
            return None

    def forget_processes(self, keep: set[int]) -> None:
        """Drop cached process handles for PIDs no longer being tracked."""
        for pid in set(self._process_handles) - keep:
            del self._process_handles[pid]

    # -- out-of-band power ------------------------------------------------

    def dcmi_power(self) -> DcmiReading | None:
        output = self._run_command([self.ipmitool_path, "dcmi", "power", "reading"])
        if not output:
            return None
        return parse_dcmi_power(output)

    def sensor_power(self, timeout: float | None = None) -> float | None:
        output = self._run_command([self.ipmitool_path, "sensor"], timeout=timeout)
        if not output:
            return None
        return parse_sensor_power(output)

    # -- UPS (Network UPS Tools) ------------------------------------------

    def ups_names(self) -> list[str]:
        output = self._run_command([self.upsc_path, "-l"])
        if not output:
            return []
        return [
            line.strip()
            for line in output.splitlines()
            if line.strip() and not line.startswith("Init SSL")
        ]

    def ups(self, name: str) -> Ups | None:
        output = self._run_command([self.upsc_path, name])
        if not output:
            return None
        return parse_upsc(output)

    # -- batteries --------------------------------------------------------

    def batteries(self) -> dict[str, Battery]:
        batteries = self._batteries_sysfs()
        if batteries:
            return batteries
        if not hasattr(psutil, "sensors_battery"):
            return {}
        try:
            reading = psutil.sensors_battery()
        except (OSError, psutil.Error):
            self.logger.debug("Failed to read battery state.")
            return {}
        if reading is None:
            self.logger.debug("No battery data available from psutil.")
            return {}
        battery = Battery(
            status="Charging" if reading.power_plugged else "Discharging",
            charge_percent=float(reading.percent),
        )
        if not reading.power_plugged and reading.secsleft not in (
            psutil.POWER_TIME_UNKNOWN,
            psutil.POWER_TIME_UNLIMITED,
        ):
            battery.time_to_empty = int(reading.secsleft)
        return {"Battery": battery}

    def _batteries_sysfs(self) -> dict[str, Battery]:
        root = Path(POWER_SUPPLY_PATH)
        if not root.is_dir():
            return {}
        batteries: dict[str, Battery] = {}
        for supply in sorted(root.iterdir()):
            if (self._read_sysfs(supply / "type") or "") != "Battery":
                continue
            battery = Battery(
                vendor=self._read_sysfs(supply / "manufacturer") or "",
                model=self._read_sysfs(supply / "model_name") or "",
                status=self._read_sysfs(supply / "status") or "Unknown",
            )
            capacity = self._read_sysfs_number(supply / "capacity")
            if capacity is not None:
                battery.charge_percent = capacity
            # sysfs reports micro-units
            voltage = self._read_sysfs_number(supply / "voltage_now")
            if voltage is not None:
                battery.voltage = voltage / 1_000_000
            power = self._read_sysfs_number(supply / "power_now")
            if power is None:
                current = self._read_sysfs_number(supply / "current_now")
                if current is not None and voltage is not None:
                    power = current * voltage / 1_000_000
            if power is not None:
                battery.power = power / 1_000_000
            cycles = self._read_sysfs_number(supply / "cycle_count")
            if cycles is not None:
                battery.cycle_count = int(cycles)
            energy_now = self._read_sysfs_number(supply / "energy_now")
            energy_full = self._read_sysfs_number(supply / "energy_full")
            if power and energy_now is not None:
                watts = power / 1_000_000
                if battery.status == "Discharging":
                    battery.time_to_empty = int(energy_now / 1_000_000 / watts * 3600)
                elif battery.status == "Charging" and energy_full is not None:
                    remaining = max(energy_full - energy_now, 0) / 1_000_000
                    battery.time_to_full = int(remaining / watts * 3600)
            batteries[supply.name] = battery
        return batteries

    def _read_sysfs(self, path: Path) -> str | None:
        content = self._read_file(str(path))
        return content.strip() if content is not None else None

    def _read_sysfs_number(self, path: Path) -> float | None:
        value = self._read_sysfs(path)
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    # -- helpers ----------------------------------------------------------

    def _run_command(self, command: list[str], timeout: float | None = None) -> str | None:
        try:
            result = subprocess.run(
                command,
                check=False,
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            self.logger.debug("Command not found: %s", command[0])
            return None
        except subprocess.TimeoutExpired:
            self.logger.warning(
                "Command timed out after %ss: %s", timeout, " ".join(command)
            )
            return None
        if result.returncode != 0:
            self.logger.debug(
                "Command failed (%s): %s", result.returncode, " ".join(command)
            )
            if result.stderr:
                self.logger.log(TRACE_LEVEL, "stderr: %s", result.stderr.strip())
            return None
        if result.stdout:
            self.logger.log(TRACE_LEVEL, "stdout: %s", result.stdout.strip())
        return result.stdout

    def _read_file(self, path: str) -> str | None:
        """Read a file and return its contents, or None if it doesn't exist."""
        try:
            return Path(path).read_text()
        except (FileNotFoundError, PermissionError, OSError):
            return None
