"""
Shared state store: cache entries, quota windows and append-only streams.

All gateway state (result cache, per-identity quota counters, request ledger)
goes through the abstract StateStore so the storage engine can be swapped.
MemoryStore keeps everything in lock-guarded dicts for a single process;
SqlStore (sql_store.py) shares state across gateway instances.

Values are JSON-serializable dicts. Stores hand out copies, so callers never
alias stored state.
"""

from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class QuotaWindow:
    """Result of one atomic check-and-increment on a quota key."""

    key: str
    used: int
    """Calls counted in the current window, including this one when allowed."""
    reset_time: float
    """Unix seconds at which the window rolls over."""
    allowed: bool


def _copy(value: Any) -> Any:
    return json.loads(json.dumps(value))


class StateStore(ABC):
    """Abstract store. Every method must be safe to call from multiple threads."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return a copy of the value, or None if absent or expired."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        """Store a copy of value; it expires ttl_sec after now (never when None)."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def increment_within_limit(self, key: str, limit: int, window_sec: float) -> QuotaWindow:
        """
        Atomic check-and-increment.

        If now > reset_time the window resets (used=0, reset_time=now+window_sec).
        allowed = used < limit; used is incremented only when allowed. Two
        concurrent calls at the boundary never both succeed.
        """
        ...

    @abstractmethod
    def append(self, stream: str, record: dict[str, Any]) -> None:
        """Append one record to a stream. Records are never updated or deleted."""
        ...

    @abstractmethod
    def read_stream(self, stream: str) -> list[dict[str, Any]]:
        """All records of a stream in append order."""
        ...

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop expired key/value entries. Returns the number removed."""
        ...

    def close(self) -> None:
        pass


class MemoryStore(StateStore):
    """In-process store for a single gateway instance (and tests)."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._values: dict[str, tuple[Any, float | None]] = {}
        self._quotas: dict[str, tuple[int, float]] = {}
        self._streams: dict[str, list[dict[str, Any]]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._values[key]
                return None
            return _copy(value)

    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        stored = _copy(value)
        with self._lock:
            expires_at = self._clock() + ttl_sec if ttl_sec is not None else None
            self._values[key] = (stored, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def increment_within_limit(self, key: str, limit: int, window_sec: float) -> QuotaWindow:
        with self._lock:
            now = self._clock()
            used, reset_time = self._quotas.get(key, (0, now + window_sec))
            if now > reset_time:
                used, reset_time = 0, now + window_sec
            allowed = used < limit
            if allowed:
                used += 1
            self._quotas[key] = (used, reset_time)
            return QuotaWindow(key=key, used=used, reset_time=reset_time, allowed=allowed)

    def append(self, stream: str, record: dict[str, Any]) -> None:
        stored = _copy(record)
        with self._lock:
            self._streams.setdefault(stream, []).append(stored)

    def read_stream(self, stream: str) -> list[dict[str, Any]]:
        with self._lock:
            return _copy(self._streams.get(stream, []))

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [
                k for k, (_, expires_at) in self._values.items()
                if expires_at is not None and now >= expires_at
            ]
            for k in expired:
                del self._values[k]
        if expired:
            logger.debug("memory_store_purged", removed=len(expired))
        return len(expired)
