"""Single-slot display state shared by the HTTP endpoint and the render loop."""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass
from typing import Optional

from .record import Record

__all__ = ["DisplaySlot", "SlotClosedError", "Snapshot"]


class SlotClosedError(RuntimeError):
    """Raised when publishing into a slot after the display has stopped."""


@dataclass(frozen=True)
class Snapshot:
    """Consistent view of the slot: both fields come from the same publish."""

    version: int
    record: Optional[Record]


class DisplaySlot:
    """Thread-safe holder for the most recently published :class:`Record`.

    The endpoint is the only writer and the render loop the only reader.  The
    lock guards in-memory assignments only; callers never perform I/O while
    holding it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = Snapshot(version=0, record=None)
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def publish(self, record: Record) -> int:
        """Make ``record`` current and return the new version."""

        with self._lock:
            if self._closed:
                raise SlotClosedError("display has stopped; refusing new records")
            previous = self._snapshot.record
            if previous is not None and record.received_at < previous.received_at:
                # Concurrent requests may finish parsing out of order.
                record = dataclasses.replace(record, received_at=previous.received_at)
            self._snapshot = Snapshot(version=self._snapshot.version + 1, record=record)
            return self._snapshot.version

    def read(self) -> Snapshot:
        with self._lock:
            return self._snapshot

    def close(self) -> None:
        with self._lock:
            self._closed = True
