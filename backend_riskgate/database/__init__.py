"""
Shared state storage: abstract StateStore with in-memory and SQL implementations.
"""

from __future__ import annotations

from backend_riskgate.config.settings import STORE_SQL, Settings
from backend_riskgate.database.store import Clock, MemoryStore, QuotaWindow, StateStore

__all__ = ["MemoryStore", "QuotaWindow", "StateStore", "get_store"]


def get_store(settings: Settings, clock: Clock | None = None) -> StateStore:
    """Build the store selected by RISKGATE_STORE (memory | sql)."""
    if settings.store_backend == STORE_SQL:
        from backend_riskgate.database.sql_store import SqlStore

        return SqlStore(settings.db_url, clock=clock) if clock else SqlStore(settings.db_url)
    return MemoryStore(clock=clock) if clock else MemoryStore()
