from __future__ import annotations

from dataclasses import dataclass, fields
import logging
import math
import time
from typing import Callable

MIN_SAMPLE_INTERVAL_S = 0.1


@dataclass(frozen=True)
class CpuCounters:
    """Cumulative CPU time per category, in seconds since boot."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0

    @property
    def total(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))

    @property
    def idle_total(self) -> float:
        return self.idle + self.iowait


@dataclass(frozen=True)
class CpuSample:
    counters: CpuCounters
    timestamp: float


def saturating_sub(current: float, previous: float) -> float:
    """Difference of two cumulative counters, 0 when the counter went backwards."""
    return max(current - previous, 0)


def clamp_percent(value: float) -> float:
    """Pin a percentage to [0, 100]; non-finite values become 0.0."""
    if not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), 100.0)


def percent(part: float, whole: float) -> float:
    """``part / whole`` as a percentage in [0, 100]; 0.0 when undefined."""
    if whole <= 0:
        return 0.0
    return clamp_percent((part / whole) * 100.0)


class CpuDeltaTracker:
    """Turns successive cumulative CPU counter readings into a busy percentage."""

    def __init__(
        self,
        read_counters: Callable[[], CpuCounters | None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._read_counters = read_counters
        self._clock = clock
        self._previous: CpuSample | None = None
        self._last_percent = 0.0
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def last_percent(self) -> float:
        return self._last_percent

    def percent(self) -> float:
        try:
            counters = self._read_counters()
        except (OSError, RuntimeError):
            self.logger.debug("CPU counters unavailable; keeping last value.")
            return self._last_percent
        if counters is None:
            return self._last_percent

        now = self._clock()
        previous = self._previous
        if previous is None:
            self._previous = CpuSample(counters, now)
            return self._last_percent
        if now - previous.timestamp < MIN_SAMPLE_INTERVAL_S:
            return self._last_percent

        delta_total = saturating_sub(counters.total, previous.counters.total)
        delta_idle = saturating_sub(counters.idle_total, previous.counters.idle_total)
        if delta_total > 0:
            busy = percent(delta_total - min(delta_idle, delta_total), delta_total)
        else:
            busy = 0.0

        self._previous = CpuSample(counters, now)
        self._last_percent = busy
        return busy
