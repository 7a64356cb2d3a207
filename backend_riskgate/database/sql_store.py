"""
SQLAlchemy-backed StateStore shared across gateway instances.

Uses RISKGATE_DB_URL for PostgreSQL when set; otherwise SQLite
(sqlite:///riskgate.db). Quota check-and-increment is done with conditional
UPDATE statements so concurrent instances never admit two calls past the limit.
"""

from __future__ import annotations

import json
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import Column, Float, Integer, String, Text, create_engine, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from backend_riskgate.database.store import Clock, QuotaWindow, StateStore
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

# -----------------------------------------------------------------------------
# SQLAlchemy models
# -----------------------------------------------------------------------------


class KvEntry(Base):
    """Cache entry: JSON value with optional absolute expiry (unix seconds)."""

    __tablename__ = "kv_entries"

    key = Column(String(256), primary_key=True)
    value_json = Column(Text, nullable=False)
    expires_at = Column(Float, nullable=True, index=True)


class QuotaRow(Base):
    """One quota window per (tier, identity) key."""

    __tablename__ = "quota_windows"

    key = Column(String(256), primary_key=True)
    used = Column(Integer, nullable=False, default=0)
    reset_time = Column(Float, nullable=False)


class LedgerRow(Base):
    """Append-only stream record. Never updated or deleted."""

    __tablename__ = "ledger_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stream = Column(String(128), nullable=False, index=True)
    record_json = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False)


class SqlStore(StateStore):
    """StateStore over any SQLAlchemy URL (SQLite, PostgreSQL)."""

    def __init__(self, db_url: str, clock: Clock = time.time) -> None:
        self._clock = clock
        connect_args: dict[str, Any] = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self._engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        # SQLite serializes writers anyway; the lock avoids "database is locked" churn
        self._lock = threading.Lock()
        Base.metadata.create_all(bind=self._engine)
        logger.info("sql_store_init", url=db_url.split("?")[0].split("//")[-1].split("@")[-1])

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Context manager for a single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, key: str) -> Any | None:
        with self._lock, self._session_scope() as session:
            row = session.get(KvEntry, key)
            if row is None:
                return None
            if row.expires_at is not None and self._clock() >= row.expires_at:
                session.delete(row)
                return None
            return json.loads(row.value_json)

    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        payload = json.dumps(value)
        expires_at = self._clock() + ttl_sec if ttl_sec is not None else None
        with self._lock, self._session_scope() as session:
            session.merge(KvEntry(key=key, value_json=payload, expires_at=expires_at))

    def delete(self, key: str) -> None:
        with self._lock, self._session_scope() as session:
            session.execute(delete(KvEntry).where(KvEntry.key == key))

    def increment_within_limit(self, key: str, limit: int, window_sec: float) -> QuotaWindow:
        with self._lock:
            for _ in range(3):
                try:
                    return self._increment_once(key, limit, window_sec)
                except IntegrityError:
                    # Another instance created the row first; retry against it
                    logger.debug("sql_store_quota_insert_race", key=key)
            return self._increment_once(key, limit, window_sec)

    def _increment_once(self, key: str, limit: int, window_sec: float) -> QuotaWindow:
        now = self._clock()
        with self._session_scope() as session:
            exists = session.execute(select(QuotaRow.key).where(QuotaRow.key == key)).first()
            if exists is None:
                allowed = limit > 0
                session.add(QuotaRow(key=key, used=1 if allowed else 0, reset_time=now + window_sec))
                session.flush()
                return QuotaWindow(
                    key=key, used=1 if allowed else 0, reset_time=now + window_sec, allowed=allowed
                )
            session.execute(
                update(QuotaRow)
                .where(QuotaRow.key == key, QuotaRow.reset_time < now)
                .values(used=0, reset_time=now + window_sec)
            )
            result = session.execute(
                update(QuotaRow)
                .where(QuotaRow.key == key, QuotaRow.used < limit)
                .values(used=QuotaRow.used + 1)
            )
            allowed = result.rowcount == 1
            row = session.execute(
                select(QuotaRow.used, QuotaRow.reset_time).where(QuotaRow.key == key)
            ).one()
            return QuotaWindow(key=key, used=int(row.used), reset_time=float(row.reset_time), allowed=allowed)

    def append(self, stream: str, record: dict[str, Any]) -> None:
        payload = json.dumps(record)
        with self._lock, self._session_scope() as session:
            session.add(LedgerRow(stream=stream, record_json=payload, created_at=self._clock()))

    def read_stream(self, stream: str) -> list[dict[str, Any]]:
        with self._lock, self._session_scope() as session:
            rows = session.execute(
                select(LedgerRow.record_json).where(LedgerRow.stream == stream).order_by(LedgerRow.id)
            ).all()
            return [json.loads(r.record_json) for r in rows]

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock, self._session_scope() as session:
            result = session.execute(
                delete(KvEntry).where(KvEntry.expires_at.is_not(None), KvEntry.expires_at <= now)
            )
            removed = int(result.rowcount or 0)
        if removed:
            logger.debug("sql_store_purged", removed=removed)
        return removed

    def close(self) -> None:
        self._engine.dispose()
