from __future__ import annotations

from contextlib import contextmanager
import threading
from typing import Callable, Iterator, TypeVar

from rabbit_monitor.models import Snapshot

T = TypeVar("T")


class SnapshotStore:
    """Single owner of the ``Snapshot`` shared by the scheduler and HTTP handlers.

    One lock guards the whole snapshot. Writers replace one subsystem per
    locked section, so a reader can see subsystems from different cycles but
    never a subsystem that is half written. Reads are serialized with writes.
    Nothing slow may run while the lock is held: callers gather platform
    readings first and only assign under the lock.
    """

    def __init__(self, snapshot: Snapshot | None = None) -> None:
        self._snapshot = snapshot if snapshot is not None else Snapshot()
        self._lock = threading.Lock()

    @contextmanager
    def write(self) -> Iterator[Snapshot]:
        with self._lock:
            yield self._snapshot

    @contextmanager
    def read(self) -> Iterator[Snapshot]:
        with self._lock:
            yield self._snapshot

    def with_write(self, fn: Callable[[Snapshot], T]) -> T:
        with self.write() as snapshot:
            return fn(snapshot)

    def with_read(self, fn: Callable[[Snapshot], T]) -> T:
        with self.read() as snapshot:
            return fn(snapshot)
