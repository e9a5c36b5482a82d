from __future__ import annotations

import logging
import time
from typing import Callable

from rabbit_monitor.config import Settings
from rabbit_monitor.cpu import CpuDeltaTracker, clamp_percent, percent, saturating_sub
from rabbit_monitor.facts import PlatformFacts
from rabbit_monitor.models import (
    Component,
    Memory,
    Network,
    Process,
    Processor,
    Snapshot,
    Storage,
    Swap,
)
from rabbit_monitor.store import SnapshotStore

BYTES_PER_MEGABIT = 1_048_576 / 8


def mega_bits(bytes_per_second: float) -> float:
    """Convert a byte rate into megabits per second (binary mega)."""
    return bytes_per_second / BYTES_PER_MEGABIT


class Monitor:
    """Reads the platform and writes one subsystem of the snapshot at a time.

    Cumulative counters seen on the previous cycle (disk IO, network bytes,
    pinned process PIDs) live here rather than in the snapshot, since only
    the scheduler thread touches them.
    """

    def __init__(
        self,
        store: SnapshotStore,
        settings: Settings,
        facts: PlatformFacts,
        wall_clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.settings = settings
        self.facts = facts
        self._wall_clock = wall_clock
        self._monotonic = monotonic
        self.cpu_tracker = CpuDeltaTracker(facts.cpu_counters, clock=monotonic)
        self._last_refresh = monotonic()
        self._disk_counters: dict[str, tuple[int, int]] = {}
        self._net_counters: dict[str, tuple[int, int]] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

        system_info = facts.system_info()
        arch = facts.cpu_arch()
        thread_count = facts.cpu_count()

        def _init(snapshot: Snapshot) -> None:
            snapshot.system_info = system_info
            snapshot.processor.arch = arch
            snapshot.processor.thread_count = thread_count

        store.with_write(_init)
        # Prime the tracker so the first cycle yields a real delta.
        self.cpu_tracker.percent()

    def now(self) -> float:
        return self._wall_clock()

    def elapsed(self) -> float:
        """Seconds since the last completed refresh cycle, floored at one second."""
        return max(self._monotonic() - self._last_refresh, 1.0)

    def mark_refreshed(self) -> None:
        self._last_refresh = self._monotonic()

    def refresh_cpu(self) -> None:
        now = self.now()
        load = self.facts.load_average()
        busy = self.cpu_tracker.percent()
        threads = self.facts.cpu_threads()

        def _write(snapshot: Snapshot) -> None:
            current = snapshot.processor
            min1, min5, min15 = load if load is not None else (
                current.min1,
                current.min5,
                current.min15,
            )
            snapshot.processor = Processor(
                min1=min1,
                min5=min5,
                min15=min15,
                percent=busy,
                arch=current.arch,
                thread_count=len(threads) or current.thread_count,
                threads=threads or current.threads,
                refreshed=now,
            )

        self.store.with_write(_write)

    def refresh_memory(self) -> None:
        now = self.now()
        reading = self.facts.memory()
        if reading is None:
            return
        memory = Memory(
            total=int(reading.total),
            available=int(reading.available),
            used=int(reading.used),
            free=int(reading.free),
            percent=percent(reading.used, reading.total),
            refreshed=now,
        )

        def _write(snapshot: Snapshot) -> None:
            snapshot.memory = memory

        self.store.with_write(_write)

    def refresh_swap(self) -> None:
        now = self.now()
        reading = self.facts.swap()
        if reading is None:
            return
        swap = Swap(
            total=int(reading.total),
            used=int(reading.used),
            free=int(reading.free),
            percent=percent(reading.used, reading.total),
            refreshed=now,
        )

        def _write(snapshot: Snapshot) -> None:
            snapshot.swap = swap

        self.store.with_write(_write)

    def refresh_storage(self) -> None:
        now = self.now()
        elapsed = self.elapsed()
        mounts = self.settings.mounts
        devices: dict[str, Storage] = {}
        # One device can appear at several mount points; every entry is
        # measured against the counters of the previous cycle.
        last_counters = dict(self._disk_counters)
        for disk in self.facts.disks():
            if mounts and disk.mount_point not in mounts:
                continue
            previous = last_counters.get(disk.name)
            read_speed = write_speed = 0.0
            if previous is not None:
                read_speed = saturating_sub(disk.read_bytes, previous[0]) / elapsed
                write_speed = saturating_sub(disk.write_bytes, previous[1]) / elapsed
            self._disk_counters[disk.name] = (disk.read_bytes, disk.write_bytes)
            devices[disk.name] = Storage(
                name=disk.name,
                mount_point=disk.mount_point,
                total=disk.total,
                used=disk.used,
                free=disk.free,
                percent=percent(disk.used, disk.total),
                read_speed=read_speed,
                write_speed=write_speed,
                total_read_bytes=disk.read_bytes,
                total_written_bytes=disk.write_bytes,
                refreshed=now,
            )
        if not devices:
            return

        def _write(snapshot: Snapshot) -> None:
            snapshot.storage_devices.update(devices)

        self.store.with_write(_write)

    def refresh_network(self) -> None:
        now = self.now()
        elapsed = self.elapsed()
        selected = self.settings.interfaces
        interfaces: dict[str, Network] = {}
        for iface, counters in self.facts.network().items():
            if selected and iface not in selected:
                continue
            previous = self._net_counters.get(iface)
            download = upload = 0.0
            if previous is not None:
                download = mega_bits(saturating_sub(counters.bytes_recv, previous[0]) / elapsed)
                upload = mega_bits(saturating_sub(counters.bytes_sent, previous[1]) / elapsed)
            self._net_counters[iface] = (counters.bytes_recv, counters.bytes_sent)
            interfaces[iface] = Network(
                download=download,
                upload=upload,
                total_received_bytes=int(counters.bytes_recv),
                total_transmitted_bytes=int(counters.bytes_sent),
                total_errors_on_received=int(counters.errin),
                total_errors_on_transmitted=int(counters.errout),
                total_packets_received=int(counters.packets_recv),
                total_packets_transmitted=int(counters.packets_sent),
                refreshed=now,
            )
        if not interfaces:
            return

        def _write(snapshot: Snapshot) -> None:
            snapshot.network_interfaces.update(interfaces)

        self.store.with_write(_write)

    def refresh_components(self) -> None:
        now = self.now()
        selected = self.settings.components
        components: dict[str, Component] = {}
        for reading in self.facts.components():
            if selected and reading.label not in selected:
                continue
            components[reading.label] = Component(
                label=reading.label,
                temperature=reading.current,
                critical=reading.critical,
                max=reading.high,
                refreshed=now,
            )
        if not components:
            return

        def _write(snapshot: Snapshot) -> None:
            snapshot.components.update(components)

        self.store.with_write(_write)

    def refresh_processes(self) -> None:
        if not self.settings.processes:
            return
        now = self.now()
        pinned = self.store.with_read(
            lambda snapshot: {key: proc.pid for key, proc in snapshot.processes.items()}
        )
        processes: dict[str, Process] = {}
        resolved: set[int] = set()
        for identifier in self.settings.processes:
            pid = self._resolve_pid(identifier, pinned.get(identifier))
            if pid is None:
                self.logger.debug("Tracked process %s not found.", identifier)
                continue
            resolved.add(pid)
            reading = self.facts.process(pid)
            if reading is None:
                continue
            processes[identifier] = Process(
                pid=reading.pid,
                name=reading.name,
                cpu=clamp_percent(reading.cpu_percent),
                memory=reading.rss,
                virtual_memory=reading.vms,
                cpu_time=reading.cpu_time,
                start_time=reading.create_time,
                refreshed=now,
            )
        self.facts.forget_processes(resolved)
        if not processes:
            return

        def _write(snapshot: Snapshot) -> None:
            snapshot.processes.update(processes)

        self.store.with_write(_write)

    def _resolve_pid(self, identifier: str, pinned: int | None) -> int | None:
        """Map a configured identifier onto a live PID.

        A numeric identifier is the PID itself. A name keeps its pinned PID
        while that process is alive under the same name, otherwise it moves to
        the lowest PID currently carrying the name.
        """
        if identifier.isdigit():
            pid = int(identifier)
            return pid if self.facts.pid_exists(pid) else None
        candidates = self.facts.pids_by_name(identifier)
        if not candidates:
            return None
        if pinned is not None and pinned in candidates:
            return pinned
        if pinned is not None:
            self.logger.info(
                "Process %s moved from PID %s to PID %s.", identifier, pinned, candidates[0]
            )
        return candidates[0]

    def refresh_ups(self) -> None:
        now = self.now()
        upses = {}
        for name in self.settings.ups:
            ups = self.facts.ups(name)
            if ups is None:
                continue
            ups.refreshed = now
            upses[name] = ups
        if not upses:
            return

        def _write(snapshot: Snapshot) -> None:
            snapshot.upses.update(upses)

        self.store.with_write(_write)

    def refresh_batteries(self) -> None:
        now = self.now()
        batteries = self.facts.batteries()
        if not batteries:
            return
        for battery in batteries.values():
            battery.refreshed = now

        def _write(snapshot: Snapshot) -> None:
            snapshot.batteries.update(batteries)

        self.store.with_write(_write)
