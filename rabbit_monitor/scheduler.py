from __future__ import annotations

import logging
import threading
from typing import Callable

from rabbit_monitor.config import EnergySettings, Settings
from rabbit_monitor.facts import PlatformFacts
from rabbit_monitor.models import Snapshot
from rabbit_monitor.monitor import Monitor


def probe_energy(facts: PlatformFacts, settings: Settings) -> EnergySettings:
    """Decide once at startup whether out-of-band power can be read, and how.

    A DCMI reading that carries a sampling period gives a fast, structured
    source; otherwise the slower ``ipmitool sensor`` scan is tried.
    """
    logger = logging.getLogger("rabbit_monitor.energy")
    dcmi = facts.dcmi_power()
    if dcmi is not None and dcmi.power is not None:
        logger.info(
            "DCMI power reading available (sampling period %ss).", dcmi.sampling_period
        )
        return EnergySettings(
            enabled=True,
            interval=dcmi.sampling_period,
            timeout=settings.energy.timeout,
        )
    if facts.sensor_power(timeout=settings.energy.timeout) is not None:
        logger.info("IPMI sensor power reading available.")
        return EnergySettings(enabled=True, interval=None, timeout=settings.energy.timeout)
    logger.debug("No out-of-band power source found.")
    return EnergySettings(enabled=False, interval=None, timeout=settings.energy.timeout)


class RefreshScheduler:
    """Re-samples every subsystem on a fixed cadence in a daemon thread.

    Subsystems run in a fixed order; an unexpected failure in one is logged
    and the cycle moves on. The power reading either runs inline (DCMI with a
    native sampling period no longer than the cadence) or on a one-shot
    thread guarded by the snapshot's ``energy.is_updating`` flag, so at most
    one slow read is ever in flight.
    """

    def __init__(self, monitor: Monitor) -> None:
        self.monitor = monitor
        self.settings = monitor.settings
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._power_thread: threading.Thread | None = None
        energy = self.settings.energy
        self.fast_power = energy.interval is not None and energy.interval <= self.settings.cadence
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def cadence(self) -> int:
        return self.settings.cadence

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run one cycle immediately, then keep refreshing in the background."""
        if self.is_running:
            return
        self.run_cycle()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="RefreshScheduler",
        )
        self._thread.start()
        self.logger.info("Refreshing every %s seconds.", self.cadence)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self.cadence):
            self.run_cycle()

    def run_cycle(self) -> None:
        monitor = self.monitor
        steps: list[tuple[str, Callable[[], object]]] = [
            ("cpu", monitor.refresh_cpu),
            ("memory", monitor.refresh_memory),
            ("swap", monitor.refresh_swap),
            ("storage", monitor.refresh_storage),
            ("network", monitor.refresh_network),
            ("components", monitor.refresh_components),
            ("processes", monitor.refresh_processes),
        ]
        if self.settings.ups:
            steps.append(("ups", monitor.refresh_ups))
        if self.settings.batteries:
            steps.append(("batteries", monitor.refresh_batteries))
        if self.settings.energy.enabled:
            steps.append(("power", self.update_power))

        self.logger.debug("Starting refresh cycle.")
        for name, step in steps:
            try:
                step()
            except Exception:
                self.logger.exception("Failed to refresh %s.", name)
        monitor.mark_refreshed()
        self.logger.debug("Completed refresh cycle.")

    def update_power(self) -> None:
        if self.fast_power:
            self._refresh_power_inline()
        else:
            self.dispatch_power()

    def _refresh_power_inline(self) -> None:
        now = self.monitor.now()
        reading = self.monitor.facts.dcmi_power()
        if reading is None or reading.power is None:
            return
        power = reading.power

        def _write(snapshot: Snapshot) -> None:
            snapshot.energy.power_consumption = power
            snapshot.energy.refreshed = now

        self.monitor.store.with_write(_write)

    def dispatch_power(self) -> bool:
        """Start a background sensor read unless one is already in flight.

        Returns True when a read was started.
        """
        def _claim(snapshot: Snapshot) -> bool:
            if snapshot.energy.is_updating:
                return False
            snapshot.energy.is_updating = True
            return True

        if not self.monitor.store.with_write(_claim):
            self.logger.debug("Power reading still in progress; skipping this cycle.")
            return False

        self._power_thread = threading.Thread(
            target=self._read_power,
            args=(self.monitor.now(),),
            daemon=True,
            name="PowerReader",
        )
        self._power_thread.start()
        return True

    def _read_power(self, dispatched_at: float) -> None:
        power: float | None = None
        try:
            power = self.monitor.facts.sensor_power(timeout=self.settings.energy.timeout)
        except Exception:
            self.logger.exception("Power sensor read failed.")
        finally:

            def _release(snapshot: Snapshot) -> None:
                if power is not None:
                    snapshot.energy.power_consumption = power
                    snapshot.energy.refreshed = dispatched_at
                snapshot.energy.is_updating = False

            self.monitor.store.with_write(_release)
