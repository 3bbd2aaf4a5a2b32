"""Thread-safe in-memory buffers holding the latest observation per instrument."""

from __future__ import annotations

from threading import Lock

from .models import Observation


class RealTimeBuffer:
    """Latest observation per instrument code, waiting to be flushed.

    Writers: streaming/simulated ingestors, one put() per tick (last write wins).
    Drainer: the FlushScheduler, which snapshots with drain_all() and then calls
    remove(key, observation) for each entry it persisted. remove() only drops
    the entry if it is still the drained observation, so a tick that lands
    between the snapshot and the remove is kept for the next cycle.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Observation] = {}
        self._lock = Lock()
        self._version: int = 0  # Bumped on every put

    def put(self, key: str, observation: Observation) -> None:
        """Overwrite the entry for ``key``."""
        with self._lock:
            self._entries[key] = observation
            self._version += 1

    def get(self, key: str) -> Observation | None:
        with self._lock:
            return self._entries.get(key)

    def drain_all(self) -> list[tuple[str, Observation]]:
        """Snapshot of all buffered (key, observation) pairs. Does not clear."""
        with self._lock:
            return list(self._entries.items())

    def remove(self, key: str, observation: Observation | None = None) -> bool:
        """Remove ``key``. With ``observation`` given, only if it is still the buffered value.

        Returns True if an entry was removed.
        """
        with self._lock:
            current = self._entries.get(key)
            if current is None:
                return False
            if observation is not None and current is not observation:
                return False
            del self._entries[key]
            return True

    def snapshot(self) -> dict[str, Observation]:
        """Shallow copy keyed by instrument code."""
        with self._lock:
            return dict(self._entries)

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class LatestValue:
    """Single-slot holder for one streamed instrument.

    Exposes the same drain_all()/remove() pair as RealTimeBuffer so the
    FlushScheduler can persist it the same way.
    """

    def __init__(self) -> None:
        self._value: Observation | None = None
        self._lock = Lock()

    def set(self, observation: Observation) -> None:
        with self._lock:
            self._value = observation

    def get(self) -> Observation | None:
        with self._lock:
            return self._value

    def drain_all(self) -> list[tuple[str, Observation]]:
        with self._lock:
            if self._value is None:
                return []
            return [(self._value.instrument_code, self._value)]

    def remove(self, key: str, observation: Observation | None = None) -> bool:
        with self._lock:
            current = self._value
            if current is None or current.instrument_code != key:
                return False
            if observation is not None and current is not observation:
                return False
            self._value = None
            return True

    def snapshot(self) -> dict[str, Observation]:
        with self._lock:
            if self._value is None:
                return {}
            return {self._value.instrument_code: self._value}

    def __len__(self) -> int:
        with self._lock:
            return 0 if self._value is None else 1
