"""
TTL result cache for gate and scan results.

Key = (chain, lowercased address, kind). Each stored value carries a cache
block {stored_at, ttl_seconds, hit}; on read it is a hit only while
now - stored_at < ttl_seconds (lazy expiry, no sweep needed for correctness).
Backend errors degrade to a miss / dropped write and are only logged.
"""

from __future__ import annotations

import threading
import time
from typing import Any

from backend_riskgate.core.exceptions import CacheUnavailable
from backend_riskgate.database.store import Clock, StateStore
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

KIND_GATE = "gate"
KIND_SCAN = "scan"

DEFAULT_TTLS: dict[str, int] = {
    KIND_GATE: 300,
    KIND_SCAN: 3600,
}


def cache_key(chain: str, address: str, kind: str) -> str:
    return f"{kind}:{(chain or 'ethereum').lower()}:{(address or '').lower()}"


class ResultCache:
    """Read-through cache over a StateStore. Thread-safe counters."""

    def __init__(
        self,
        store: StateStore,
        ttls: dict[str, int] | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._store = store
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._errors = 0

    def ttl_for(self, kind: str) -> int:
        return self._ttls.get(kind, DEFAULT_TTLS[KIND_GATE])

    def _count(self, attr: str) -> None:
        with self._lock:
            setattr(self, attr, getattr(self, attr) + 1)

    def get(self, chain: str, address: str, kind: str) -> dict[str, Any] | None:
        """Return the cached value annotated with hit / age_seconds, or None on miss."""
        key = cache_key(chain, address, kind)
        try:
            value = self._store.get(key)
        except Exception as e:
            self._count("_errors")
            err = CacheUnavailable(f"cache read failed: {e}")
            logger.warning("cache_unavailable", op="get", key=key, error=err.message)
            self._count("_misses")
            return None

        meta = value.get("cache") if isinstance(value, dict) else None
        if not isinstance(meta, dict):
            self._count("_misses")
            return None
        age = self._clock() - float(meta.get("stored_at", 0))
        ttl = float(meta.get("ttl_seconds", 0))
        if age >= ttl:
            self._count("_misses")
            return None

        self._count("_hits")
        value["cache"] = {
            **meta,
            "hit": True,
            "age_seconds": max(0, int(age)),
        }
        return value

    def set(
        self,
        chain: str,
        address: str,
        kind: str,
        value: dict[str, Any],
        ttl: int | None = None,
        stored_at: float | None = None,
    ) -> bool:
        """
        Stamp cache metadata onto a copy of value and store it.
        Returns False when the backend is unavailable (write dropped).
        """
        key = cache_key(chain, address, kind)
        ttl_seconds = int(ttl if ttl is not None else self.ttl_for(kind))
        entry = dict(value)
        entry["cache"] = {
            "stored_at": stored_at if stored_at is not None else self._clock(),
            "ttl_seconds": ttl_seconds,
            "hit": False,
        }
        try:
            self._store.set(key, entry, ttl_sec=ttl_seconds)
        except Exception as e:
            self._count("_errors")
            err = CacheUnavailable(f"cache write failed: {e}")
            logger.warning("cache_unavailable", op="set", key=key, error=err.message)
            return False
        self._count("_sets")
        return True

    def cleanup(self) -> int:
        try:
            removed = self._store.purge_expired()
        except Exception as e:
            self._count("_errors")
            logger.warning("cache_unavailable", op="cleanup", error=str(e))
            return 0
        logger.info("cache_cleanup", removed=removed)
        return removed

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "errors": self._errors,
                "hit_rate": round(self._hits / lookups, 2) if lookups else 0.0,
                "ttl_seconds": dict(self._ttls),
            }
