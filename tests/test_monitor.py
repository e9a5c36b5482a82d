"""Tests for the per-subsystem refresh logic."""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from rabbit_monitor.config import Settings
from rabbit_monitor.cpu import CpuCounters
from rabbit_monitor.facts import ComponentReading, DiskReading
from rabbit_monitor.models import Battery, Ups
from rabbit_monitor.monitor import mega_bits



def read(store, fn):
    return store.with_read(fn)


class TestMonitorInit:
    """Static facts are captured once at construction."""

    def test_static_info_captured(self, make_monitor, store):
        make_monitor()
        info = read(store, lambda s: s.system_info)
        assert info.host_name == "testhost"
        assert info.boot_time == 1_700_000_000.0
        processor = read(store, lambda s: s.processor)
        assert processor.arch == "x86_64"
        assert processor.thread_count == 2


class TestCpuRefresh:
    def test_cpu_refresh(self, make_monitor, facts, store, monotonic, wall_clock):
        monitor = make_monitor()
        facts.counters = CpuCounters(user=150, idle=950)
        monotonic.advance(1.0)
        monitor.refresh_cpu()
        processor = read(store, lambda s: s.processor)
        assert processor.percent == pytest.approx(50.0)
        assert (processor.min1, processor.min5, processor.min15) == (0.5, 0.25, 0.1)
        assert [t.name for t in processor.threads] == ["cpu0", "cpu1"]
        assert processor.refreshed == wall_clock.value

    def test_missing_load_average_keeps_previous(self, make_monitor, facts, store):
        monitor = make_monitor()
        monitor.refresh_cpu()
        facts.load = None
        monitor.refresh_cpu()
        assert read(store, lambda s: s.processor.min1) == 0.5


class TestMemoryRefresh:
    def test_percent_from_used_and_total(self, make_monitor, store):
        monitor = make_monitor()
        monitor.refresh_memory()
        memory = read(store, lambda s: s.memory)
        assert memory.total == 8000
        assert memory.percent == pytest.approx(25.0)

    def test_zero_total_memory_is_zero_percent(self, make_monitor, facts, store):
        facts.mem = SimpleNamespace(total=0, available=0, used=0, free=0)
        monitor = make_monitor()
        monitor.refresh_memory()
        assert read(store, lambda s: s.memory.percent) == 0.0

    def test_zero_total_swap_is_zero_percent(self, make_monitor, store):
        monitor = make_monitor()
        monitor.refresh_swap()
        assert read(store, lambda s: s.swap.percent) == 0.0

    def test_failed_reading_keeps_previous(self, make_monitor, facts, store, wall_clock):
        monitor = make_monitor()
        monitor.refresh_memory()
        first = read(store, lambda s: s.memory.refreshed)
        facts.mem = None
        wall_clock.advance(5)
        monitor.refresh_memory()
        memory = read(store, lambda s: s.memory)
        assert memory.total == 8000
        assert memory.refreshed == first


class TestStorageRefresh:
    def test_storage_percent(self, make_monitor, facts, store):
        facts.add_disk("/dev/sda1", "/", total=1000, used=400)
        monitor = make_monitor()
        monitor.refresh_storage()
        device = read(store, lambda s: s.storage_devices["/dev/sda1"])
        assert device.percent == pytest.approx(40.0)
        assert device.free == 600
        assert device.mount_point == "/"

    def test_zero_total_storage(self, make_monitor, facts, store):
        facts.add_disk("/dev/loop0", "/snap/core", total=0, used=0)
        monitor = make_monitor()
        monitor.refresh_storage()
        assert read(store, lambda s: s.storage_devices["/dev/loop0"].percent) == 0.0

    def test_mount_filter(self, make_monitor, facts, store):
        facts.add_disk("/dev/sda1", "/", total=1000, used=400)
        facts.add_disk("/dev/sdb1", "/data", total=1000, used=100)
        monitor = make_monitor(Settings(cadence=1, mounts=["/data"]))
        monitor.refresh_storage()
        assert read(store, lambda s: sorted(s.storage_devices)) == ["/dev/sdb1"]

    def test_byte_rates_use_elapsed_time(self, make_monitor, facts, store, monotonic):
        facts.add_disk("/dev/sda1", "/", total=1000, used=400, read_bytes=0, write_bytes=0)
        monitor = make_monitor()
        monotonic.advance(1.0)
        monitor.refresh_storage()
        monitor.mark_refreshed()

        facts.add_disk("/dev/sda1", "/", total=1000, used=400,
                       read_bytes=4000, write_bytes=2000)
        monotonic.advance(2.0)
        monitor.refresh_storage()
        device = read(store, lambda s: s.storage_devices["/dev/sda1"])
        assert device.read_speed == pytest.approx(2000.0)
        assert device.write_speed == pytest.approx(1000.0)
        assert device.total_read_bytes == 4000

    def test_device_at_two_mount_points_keeps_rate(self, make_monitor, facts, store, monotonic):
        """Bind mounts and btrfs subvolumes list one device under several mounts."""
        facts.disk_list = [
            DiskReading("/dev/sda2", "/", 1000, 400, 600, 0, 0),
            DiskReading("/dev/sda2", "/home", 1000, 400, 600, 0, 0),
        ]
        monitor = make_monitor()
        monitor.refresh_storage()
        monitor.mark_refreshed()

        facts.disk_list = [
            DiskReading("/dev/sda2", "/", 1000, 400, 600, 1_000_000, 0),
            DiskReading("/dev/sda2", "/home", 1000, 400, 600, 1_000_000, 0),
        ]
        monotonic.advance(1.0)
        monitor.refresh_storage()
        device = read(store, lambda s: s.storage_devices["/dev/sda2"])
        assert device.mount_point == "/home"
        assert device.read_speed == pytest.approx(1_000_000.0)

    def test_vanished_disk_keeps_last_value(self, make_monitor, facts, store):
        facts.add_disk("/dev/sdc1", "/mnt/usb", total=1000, used=500)
        monitor = make_monitor()
        monitor.refresh_storage()
        facts.disk_list = []
        monitor.refresh_storage()
        assert read(store, lambda s: s.storage_devices["/dev/sdc1"].percent) == pytest.approx(50.0)


class TestNetworkRefresh:
    def test_download_rate_in_megabits(self, make_monitor, facts, store, monotonic):
        """1 MiB received over one second is 8 Mbit/s."""
        facts.set_interface("eth0", bytes_recv=0)
        monitor = make_monitor()
        monotonic.advance(1.0)
        monitor.refresh_network()
        monitor.mark_refreshed()

        facts.set_interface("eth0", bytes_recv=1_048_576)
        monotonic.advance(1.0)
        monitor.refresh_network()
        iface = read(store, lambda s: s.network_interfaces["eth0"])
        assert iface.download == pytest.approx(8.0)
        assert iface.upload == 0.0

    def test_first_sight_rate_is_zero(self, make_monitor, facts, store):
        facts.set_interface("eth0", bytes_recv=10_000_000, bytes_sent=5_000_000)
        monitor = make_monitor()
        monitor.refresh_network()
        iface = read(store, lambda s: s.network_interfaces["eth0"])
        assert iface.download == 0.0
        assert iface.total_received_bytes == 10_000_000

    def test_elapsed_floored_at_one_second(self, make_monitor, facts, store, monotonic):
        facts.set_interface("eth0", bytes_recv=0)
        monitor = make_monitor()
        monitor.refresh_network()
        monitor.mark_refreshed()
        facts.set_interface("eth0", bytes_recv=1_048_576)
        monotonic.advance(0.001)
        monitor.refresh_network()
        assert read(store, lambda s: s.network_interfaces["eth0"].download) == pytest.approx(8.0)

    def test_counter_reset_gives_zero_rate(self, make_monitor, facts, store, monotonic):
        facts.set_interface("eth0", bytes_recv=5_000_000)
        monitor = make_monitor()
        monitor.refresh_network()
        monitor.mark_refreshed()
        facts.set_interface("eth0", bytes_recv=100)
        monotonic.advance(1.0)
        monitor.refresh_network()
        assert read(store, lambda s: s.network_interfaces["eth0"].download) == 0.0

    def test_interface_filter(self, make_monitor, facts, store):
        facts.set_interface("eth0", bytes_recv=1)
        facts.set_interface("lo", bytes_recv=1)
        monitor = make_monitor(Settings(cadence=1, interfaces=["eth0", "wlan0"]))
        monitor.refresh_network()
        assert read(store, lambda s: list(s.network_interfaces)) == ["eth0"]

    def test_mega_bits(self):
        assert mega_bits(131_072) == pytest.approx(1.0)


class TestComponentRefresh:
    def test_component_filter_keeps_listed_labels(self, make_monitor, facts, store):
        facts.component_list = [
            ComponentReading("coretemp Package id 0", 55.0, 80.0, 100.0),
            ComponentReading("nvme Composite", 40.0, None, None),
        ]
        monitor = make_monitor(Settings(cadence=1, components=["nvme Composite"]))
        monitor.refresh_components()
        components = read(store, lambda s: s.components)
        assert list(components) == ["nvme Composite"]
        assert components["nvme Composite"].critical is None

    def test_all_components_when_unfiltered(self, make_monitor, facts, store):
        facts.component_list = [ComponentReading("acpitz", 30.0, None, 95.0)]
        monitor = make_monitor()
        monitor.refresh_components()
        component = read(store, lambda s: s.components["acpitz"])
        assert component.temperature == 30.0
        assert component.critical == 95.0


class TestProcessRefresh:
    def test_untracked_processes_ignored(self, make_monitor, facts, store):
        facts.add_process(10, "nginx")
        monitor = make_monitor()
        monitor.refresh_processes()
        assert read(store, lambda s: s.processes) == {}

    def test_track_by_pid(self, make_monitor, facts, store):
        facts.add_process(42, "postgres", cpu=3.0, rss=2048)
        monitor = make_monitor(Settings(cadence=1, processes=["42"]))
        monitor.refresh_processes()
        proc = read(store, lambda s: s.processes["42"])
        assert proc.pid == 42
        assert proc.name == "postgres"
        assert proc.memory == 2048

    def test_track_by_name_pins_lowest_pid(self, make_monitor, facts, store):
        facts.add_process(300, "nginx")
        facts.add_process(200, "nginx")
        monitor = make_monitor(Settings(cadence=1, processes=["nginx"]))
        monitor.refresh_processes()
        assert read(store, lambda s: s.processes["nginx"].pid) == 200

        # a new lower PID does not steal the pin while the pinned one lives
        facts.add_process(100, "nginx")
        monitor.refresh_processes()
        assert read(store, lambda s: s.processes["nginx"].pid) == 200

    def test_name_repins_after_restart(self, make_monitor, facts, store):
        facts.add_process(200, "nginx")
        monitor = make_monitor(Settings(cadence=1, processes=["nginx"]))
        monitor.refresh_processes()
        del facts.procs[200]
        facts.add_process(500, "nginx", cpu=9.0)
        monitor.refresh_processes()
        proc = read(store, lambda s: s.processes["nginx"])
        assert proc.pid == 500
        assert proc.cpu == 9.0

    def test_cpu_share_clamped_to_hundred(self, make_monitor, facts, store):
        facts.add_process(42, "java", cpu=350.0)
        monitor = make_monitor(Settings(cadence=1, processes=["42"]))
        monitor.refresh_processes()
        assert read(store, lambda s: s.processes["42"].cpu) == 100.0

    def test_handles_released_for_untracked_pids(self, make_monitor, facts):
        facts.add_process(200, "nginx")
        monitor = make_monitor(Settings(cadence=1, processes=["nginx"]))
        monitor.refresh_processes()
        assert facts.kept_handles == {200}

        del facts.procs[200]
        facts.add_process(500, "nginx")
        monitor.refresh_processes()
        assert facts.kept_handles == {500}

    def test_missing_process_keeps_last_values(self, make_monitor, facts, store):
        facts.add_process(200, "redis")
        monitor = make_monitor(Settings(cadence=1, processes=["redis", "999"]))
        monitor.refresh_processes()
        facts.procs.clear()
        monitor.refresh_processes()
        processes = read(store, lambda s: s.processes)
        assert list(processes) == ["redis"]
        assert processes["redis"].pid == 200


class TestUpsAndBatteries:
    def test_ups_refresh(self, make_monitor, facts, store, wall_clock):
        facts.ups_data["apc"] = Ups(status="OL", charge_percent=100.0, load_percent=20.0,
                                   real_power_nominal=500.0, power_usage=100.0)
        monitor = make_monitor(Settings(cadence=1, ups=["apc", "missing"]))
        monitor.refresh_ups()
        upses = read(store, lambda s: s.upses)
        assert list(upses) == ["apc"]
        assert upses["apc"].refreshed == wall_clock.value

    def test_battery_refresh(self, make_monitor, facts, store, wall_clock):
        facts.battery_data = {"BAT0": Battery(status="Discharging", charge_percent=80.0)}
        monitor = make_monitor(Settings(cadence=1, batteries=True))
        monitor.refresh_batteries()
        battery = read(store, lambda s: s.batteries["BAT0"])
        assert battery.charge_percent == 80.0
        assert battery.refreshed == wall_clock.value
