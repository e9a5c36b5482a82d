"""OpenMetrics text rendering of a ``Snapshot``.

Each family is written as ``# HELP``, ``# TYPE`` and, when a unit is
declared, ``# UNIT`` lines followed by its samples. A sample carries the
``refreshed`` time of the entry it came from, never the render time, so two
renders of the same snapshot are byte-identical.

Label cardinality: the storage, network, thermal, process, UPS and battery
families emit one sample per entry of the corresponding snapshot map, so the
size of the exposition grows with the number of discovered devices and
tracked processes. Every other family has a fixed number of samples (per-CPU
thread families grow with the logical thread count).
"""
from __future__ import annotations

import math
from typing import Iterable, Mapping

from rabbit_monitor import __version__
from rabbit_monitor.config import Settings
from rabbit_monitor.models import Snapshot

PREFIX = "rabbit"
CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"

GAUGE = "gauge"
COUNTER = "counter"
INFO = "info"


def format_float(value: float | None) -> str:
    if value is None or not math.isfinite(value):
        return "0.00"
    return f"{value:.2f}"


def format_int(value: float | int) -> str:
    return str(int(value))


def format_timestamp(value: float) -> str:
    return f"{value:.3f}"


def escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def format_labels(labels: Mapping[str, object] | None) -> str:
    if not labels:
        return ""
    inner = ",".join(f'{key}="{escape_label(str(value))}"' for key, value in labels.items())
    return "{" + inner + "}"


class MetricsDocument:
    """Accumulates families and samples into an OpenMetrics exposition."""

    def __init__(self, prefix: str = PREFIX) -> None:
        self.prefix = prefix
        self._lines: list[str] = []

    def family(self, name: str, description: str, kind: str, unit: str | None = None) -> str:
        """Write the metadata lines of a family and return its full name."""
        full_name = f"{self.prefix}_{name}_{unit}" if unit else f"{self.prefix}_{name}"
        self._lines.append(f"# HELP {full_name} {description}")
        self._lines.append(f"# TYPE {full_name} {kind}")
        if unit:
            self._lines.append(f"# UNIT {full_name} {unit}")
        return full_name

    def sample(
        self,
        name: str,
        value: str,
        labels: Mapping[str, object] | None = None,
        timestamp: float | None = None,
    ) -> None:
        line = f"{name}{format_labels(labels)} {value}"
        if timestamp:
            line += f" {format_timestamp(timestamp)}"
        self._lines.append(line)

    def info(self, name: str, description: str, labels: Mapping[str, object]) -> None:
        family = self.family(name, description, INFO)
        self.sample(f"{family}_info", "1", labels)

    def gauge(
        self,
        name: str,
        description: str,
        value: str,
        unit: str | None = None,
        labels: Mapping[str, object] | None = None,
        timestamp: float | None = None,
    ) -> None:
        family = self.family(name, description, GAUGE, unit)
        self.sample(family, value, labels, timestamp)

    def gauges(
        self,
        name: str,
        description: str,
        samples: Iterable[tuple[Mapping[str, object], str, float]],
        unit: str | None = None,
    ) -> None:
        """Write a gauge family with one sample per ``(labels, value, timestamp)``."""
        rows = list(samples)
        if not rows:
            return
        family = self.family(name, description, GAUGE, unit)
        for labels, value, timestamp in rows:
            self.sample(family, value, labels, timestamp)

    def counters(
        self,
        name: str,
        description: str,
        samples: Iterable[tuple[Mapping[str, object], str, float, float]],
        unit: str | None = None,
    ) -> None:
        """Write a counter family from ``(labels, value, created, timestamp)`` rows."""
        rows = list(samples)
        if not rows:
            return
        family = self.family(name, description, COUNTER, unit)
        for labels, value, created, timestamp in rows:
            self.sample(f"{family}_total", value, labels, timestamp)
            self.sample(f"{family}_created", format_timestamp(created), labels, timestamp)

    def render(self) -> str:
        return "\n".join(self._lines + ["# EOF"]) + "\n"


def render_metrics(snapshot: Snapshot, settings: Settings) -> str:
    doc = MetricsDocument()
    _render_static(doc, snapshot)
    _render_processor(doc, snapshot, settings)
    _render_memory(doc, snapshot, settings)
    _render_swap(doc, snapshot, settings)
    _render_storage(doc, snapshot, settings)
    _render_network(doc, snapshot, settings)
    _render_components(doc, snapshot)
    _render_processes(doc, snapshot)
    if settings.energy.enabled:
        energy = snapshot.energy
        doc.gauge(
            "power_consumption",
            "Power consumption reported by the BMC",
            format_float(energy.power_consumption),
            unit="watts",
            timestamp=energy.refreshed,
        )
    _render_upses(doc, snapshot)
    _render_batteries(doc, snapshot)
    return doc.render()


def _render_static(doc: MetricsDocument, snapshot: Snapshot) -> None:
    info = snapshot.system_info
    doc.info("exporter", "Exporter build information", {"version": __version__})
    doc.info(
        "system",
        "Static host information",
        {
            "name": info.name,
            "kernel_version": info.kernel_version,
            "os_version": info.os_version,
            "long_os_version": info.long_os_version,
            "distribution_id": info.distribution_id,
            "host_name": info.host_name,
        },
    )
    doc.gauge(
        "system_boot_time",
        "System boot time as a Unix timestamp",
        format_int(info.boot_time),
        unit="seconds",
    )


def _render_processor(doc: MetricsDocument, snapshot: Snapshot, settings: Settings) -> None:
    cpu = snapshot.processor
    doc.info(
        "cpu",
        "CPU architecture and logical thread count",
        {"arch": cpu.arch, "threads": cpu.thread_count},
    )
    for name, period, value in (
        ("cpu_load_1min", "last minute", cpu.min1),
        ("cpu_load_5min", "last 5 minutes", cpu.min5),
        ("cpu_load_15min", "last 15 minutes", cpu.min15),
    ):
        doc.gauge(name, f"CPU load average over the {period}", format_float(value),
                  timestamp=cpu.refreshed)
    doc.gauge(
        "cpu_usage",
        "CPU utilization in percent",
        format_float(cpu.percent),
        unit="percent",
        timestamp=cpu.refreshed,
    )
    if not settings.details("cpu"):
        return
    doc.gauges(
        "cpu_thread_usage",
        "Utilization of a logical CPU thread in percent",
        (({"thread": t.name, "brand": t.brand}, format_float(t.usage), cpu.refreshed)
         for t in cpu.threads),
        unit="percent",
    )
    doc.gauges(
        "cpu_thread_frequency",
        "Current frequency of a logical CPU thread",
        (({"thread": t.name}, format_int(t.frequency), cpu.refreshed) for t in cpu.threads),
        unit="megahertz",
    )


def _render_memory(doc: MetricsDocument, snapshot: Snapshot, settings: Settings) -> None:
    memory = snapshot.memory
    doc.gauge(
        "memory_usage",
        "Used memory in percent",
        format_float(memory.percent),
        unit="percent",
        timestamp=memory.refreshed,
    )
    if not settings.details("memory"):
        return
    for name, description, value in (
        ("memory_total", "Total memory", memory.total),
        ("memory_available", "Available memory", memory.available),
        ("memory_used", "Used memory", memory.used),
        ("memory_free", "Free memory", memory.free),
    ):
        doc.gauge(name, description, format_int(value), unit="bytes", timestamp=memory.refreshed)


def _render_swap(doc: MetricsDocument, snapshot: Snapshot, settings: Settings) -> None:
    swap = snapshot.swap
    doc.gauge(
        "swap_usage",
        "Used swap in percent",
        format_float(swap.percent),
        unit="percent",
        timestamp=swap.refreshed,
    )
    if not settings.details("swap"):
        return
    for name, description, value in (
        ("swap_total", "Total swap", swap.total),
        ("swap_used", "Used swap", swap.used),
        ("swap_free", "Free swap", swap.free),
    ):
        doc.gauge(name, description, format_int(value), unit="bytes", timestamp=swap.refreshed)


def _render_storage(doc: MetricsDocument, snapshot: Snapshot, settings: Settings) -> None:
    devices = [snapshot.storage_devices[key] for key in sorted(snapshot.storage_devices)]
    if not devices:
        return

    def labels(device):
        return {"device": device.name, "mount_point": device.mount_point}

    doc.gauges(
        "storage_usage",
        "Used storage in percent",
        ((labels(d), format_float(d.percent), d.refreshed) for d in devices),
        unit="percent",
    )
    doc.gauges(
        "storage_read",
        "Storage read throughput",
        ((labels(d), format_float(d.read_speed), d.refreshed) for d in devices),
        unit="bytes_per_second",
    )
    doc.gauges(
        "storage_write",
        "Storage write throughput",
        ((labels(d), format_float(d.write_speed), d.refreshed) for d in devices),
        unit="bytes_per_second",
    )
    if not settings.details("storage"):
        return
    for name, description, attr in (
        ("storage_total", "Total storage", "total"),
        ("storage_used", "Used storage", "used"),
        ("storage_free", "Free storage", "free"),
    ):
        doc.gauges(
            name,
            description,
            ((labels(d), format_int(getattr(d, attr)), d.refreshed) for d in devices),
            unit="bytes",
        )
    boot_time = snapshot.system_info.boot_time
    doc.counters(
        "storage_read",
        "Bytes read from storage since boot",
        ((labels(d), format_int(d.total_read_bytes), boot_time, d.refreshed) for d in devices),
        unit="bytes",
    )
    doc.counters(
        "storage_written",
        "Bytes written to storage since boot",
        ((labels(d), format_int(d.total_written_bytes), boot_time, d.refreshed)
         for d in devices),
        unit="bytes",
    )


def _render_network(doc: MetricsDocument, snapshot: Snapshot, settings: Settings) -> None:
    interfaces = sorted(snapshot.network_interfaces.items())
    if not interfaces:
        return
    doc.gauges(
        "network_download",
        "Download speed",
        (({"interface": name}, format_float(n.download), n.refreshed) for name, n in interfaces),
        unit="megabits_per_second",
    )
    doc.gauges(
        "network_upload",
        "Upload speed",
        (({"interface": name}, format_float(n.upload), n.refreshed) for name, n in interfaces),
        unit="megabits_per_second",
    )
    if not settings.details("network"):
        return
    boot_time = snapshot.system_info.boot_time
    for name, description, attr, unit in (
        ("network_received", "Bytes received", "total_received_bytes", "bytes"),
        ("network_transmitted", "Bytes transmitted", "total_transmitted_bytes", "bytes"),
        ("network_received_packets", "Packets received", "total_packets_received", None),
        ("network_transmitted_packets", "Packets transmitted",
         "total_packets_transmitted", None),
        ("network_received_errors", "Errors on received packets",
         "total_errors_on_received", None),
        ("network_transmitted_errors", "Errors on transmitted packets",
         "total_errors_on_transmitted", None),
    ):
        doc.counters(
            name,
            description,
            (({"interface": iface}, format_int(getattr(n, attr)), boot_time, n.refreshed)
             for iface, n in interfaces),
            unit=unit,
        )


def _render_components(doc: MetricsDocument, snapshot: Snapshot) -> None:
    components = [snapshot.components[key] for key in sorted(snapshot.components)]
    for name, description, attr in (
        ("component_temperature", "Temperature of a thermal component", "temperature"),
        ("component_critical", "Critical temperature threshold of a thermal component",
         "critical"),
        ("component_max", "Maximum temperature threshold of a thermal component", "max"),
    ):
        doc.gauges(
            name,
            description,
            (({"component": c.label}, format_float(getattr(c, attr)), c.refreshed)
             for c in components if getattr(c, attr) is not None),
            unit="celsius",
        )


def _render_processes(doc: MetricsDocument, snapshot: Snapshot) -> None:
    processes = [snapshot.processes[key] for key in sorted(snapshot.processes)]
    if not processes:
        return

    def labels(proc):
        return {"pid": proc.pid, "name": proc.name}

    doc.gauges(
        "process_cpu_usage",
        "CPU utilization of a tracked process in percent",
        ((labels(p), format_float(p.cpu), p.refreshed) for p in processes),
        unit="percent",
    )
    doc.gauges(
        "process_memory",
        "Resident memory of a tracked process",
        ((labels(p), format_int(p.memory), p.refreshed) for p in processes),
        unit="bytes",
    )
    doc.gauges(
        "process_virtual_memory",
        "Virtual memory of a tracked process",
        ((labels(p), format_int(p.virtual_memory), p.refreshed) for p in processes),
        unit="bytes",
    )
    doc.counters(
        "process_cpu",
        "CPU time consumed by a tracked process",
        ((labels(p), format_float(p.cpu_time), p.start_time, p.refreshed) for p in processes),
        unit="seconds",
    )


def _render_upses(doc: MetricsDocument, snapshot: Snapshot) -> None:
    upses = sorted(snapshot.upses.items())
    if not upses:
        return
    family = doc.family("ups", "UPS identification and status", INFO)
    for name, ups in upses:
        doc.sample(
            f"{family}_info",
            "1",
            {"ups": name, "manufacturer": ups.manufacturer, "model": ups.model,
             "status": ups.status},
        )
    for metric, description, unit, attr, fmt in (
        ("ups_charge", "UPS battery charge", "percent", "charge_percent", format_float),
        ("ups_load", "UPS load", "percent", "load_percent", format_float),
        ("ups_runtime", "UPS estimated runtime", "seconds", "runtime_seconds", format_int),
        ("ups_input_voltage", "UPS input voltage", "volts", "input_voltage", format_float),
        ("ups_output_voltage", "UPS output voltage", "volts", "output_voltage", format_float),
        ("ups_power", "UPS power draw derived from load and nominal power", "watts",
         "power_usage", format_float),
    ):
        doc.gauges(
            metric,
            description,
            (({"ups": name}, fmt(getattr(ups, attr)), ups.refreshed) for name, ups in upses),
            unit=unit,
        )


def _render_batteries(doc: MetricsDocument, snapshot: Snapshot) -> None:
    batteries = sorted(snapshot.batteries.items())
    if not batteries:
        return
    family = doc.family("battery", "Battery identification and state", INFO)
    for name, battery in batteries:
        doc.sample(
            f"{family}_info",
            "1",
            {"battery": name, "vendor": battery.vendor, "model": battery.model,
             "status": battery.status},
        )
    doc.gauges(
        "battery_charge",
        "Battery state of charge",
        (({"battery": name}, format_float(b.charge_percent), b.refreshed)
         for name, b in batteries),
        unit="percent",
    )
    doc.gauges(
        "battery_voltage",
        "Battery voltage",
        (({"battery": name}, format_float(b.voltage), b.refreshed) for name, b in batteries),
        unit="volts",
    )
    doc.gauges(
        "battery_power",
        "Battery charge or discharge rate",
        (({"battery": name}, format_float(b.power), b.refreshed) for name, b in batteries),
        unit="watts",
    )
    doc.gauges(
        "battery_time_to_empty",
        "Estimated time until the battery is empty",
        (({"battery": name}, format_int(b.time_to_empty), b.refreshed)
         for name, b in batteries if b.time_to_empty is not None),
        unit="seconds",
    )
    doc.gauges(
        "battery_time_to_full",
        "Estimated time until the battery is full",
        (({"battery": name}, format_int(b.time_to_full), b.refreshed)
         for name, b in batteries if b.time_to_full is not None),
        unit="seconds",
    )
    doc.gauges(
        "battery_cycles",
        "Battery charge cycle count",
        (({"battery": name}, format_int(b.cycle_count), b.refreshed)
         for name, b in batteries if b.cycle_count is not None),
    )
