"""
Append-only request ledger and daily aggregation.

Every decision appends exactly one immutable LogRecord to the stream for its
UTC day. There is no update or delete path. The daily report is a single
read-only pass over one day's records and is idempotent.
"""

from __future__ import annotations

import math
import time
import uuid
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable

from backend_riskgate.database.store import Clock, StateStore
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

STREAM_PREFIX = "ledger"
VERDICTS = ("PASS", "WARN", "BLOCK", "UNKNOWN")
DEFAULT_TOP_TOKENS = 10
DEFAULT_TOP_CHAINS = 5


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class LogRecord:
    """One row per request."""

    request_id: str
    timestamp: str
    endpoint: str
    chain: str = "ethereum"
    token: str | None = None
    action_type: str | None = None
    verdict: str = "UNKNOWN"
    latency_ms: int = 0
    cache_hit: bool = False
    error_code: str | None = None
    risk_score: int | None = None
    confidence: float | None = None
    rpc_calls: int = 0
    tier: str | None = None

    @property
    def day(self) -> str:
        return self.timestamp[:10]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogRecord":
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


def stream_for_day(day: str) -> str:
    return f"{STREAM_PREFIX}:{day}"


def _day_str(day: date | str | None) -> str:
    if day is None:
        return datetime.now(timezone.utc).date().isoformat()
    if isinstance(day, datetime):
        return day.date().isoformat()
    if isinstance(day, date):
        return day.isoformat()
    return date.fromisoformat(day.strip()).isoformat()


def _top(counter: Counter, n: int, label: str) -> list[dict[str, Any]]:
    # Counter keeps first-encounter order and sorted() is stable, so ties keep it too
    ranked = sorted(counter.items(), key=lambda kv: -kv[1])[:n]
    return [{label: key, "count": count} for key, count in ranked]


def build_daily_report(
    day: str,
    records: Iterable[LogRecord],
    top_n: int = DEFAULT_TOP_TOKENS,
    top_chains: int = DEFAULT_TOP_CHAINS,
) -> dict[str, Any]:
    """Single pass over one day's records. Pure; does not touch the store."""
    total = 0
    total_latency = 0
    cache_hits = 0
    endpoints: Counter = Counter()
    verdicts: dict[str, int] = {v: 0 for v in VERDICTS}
    tokens: Counter = Counter()
    chains: Counter = Counter()

    for rec in records:
        total += 1
        endpoints[rec.endpoint] += 1
        verdict = rec.verdict if rec.verdict in verdicts else "UNKNOWN"
        verdicts[verdict] += 1
        total_latency += int(rec.latency_ms or 0)
        if rec.cache_hit:
            cache_hits += 1
        if rec.token:
            tokens[rec.token] += 1
        if rec.chain:
            chains[rec.chain] += 1

    return {
        "date": day,
        "total_requests": total,
        "endpoints": dict(endpoints),
        "verdicts": verdicts,
        "avg_latency_ms": int(math.floor(total_latency / total + 0.5)) if total else 0,
        "cache_hit_rate": round(cache_hits / total, 2) if total else 0.0,
        "top_tokens": _top(tokens, top_n, "token"),
        "top_chains": _top(chains, top_chains, "chain"),
    }


def format_report_text(report: dict[str, Any]) -> str:
    """Plain-text summary of a daily report, e.g. for a chat or e-mail digest."""
    verdicts = report.get("verdicts") or {}
    lines = [
        f"Risk gate daily report: {report.get('date')}",
        f"Total requests: {report.get('total_requests', 0)}",
        "Verdicts: " + ", ".join(f"{k} {verdicts.get(k, 0)}" for k in VERDICTS),
        f"Avg latency: {report.get('avg_latency_ms', 0)} ms",
        f"Cache hit rate: {float(report.get('cache_hit_rate', 0)) * 100:.0f}%",
    ]
    endpoints = report.get("endpoints") or {}
    if endpoints:
        lines.append("Endpoints: " + ", ".join(f"{k} {v}" for k, v in endpoints.items()))
    top_tokens = report.get("top_tokens") or []
    if top_tokens:
        lines.append("Top tokens:")
        for i, item in enumerate(top_tokens, 1):
            lines.append(f"  {i}. {item['token']} ({item['count']})")
    top_chains = report.get("top_chains") or []
    if top_chains:
        lines.append("Top chains: " + ", ".join(f"{c['chain']} {c['count']}" for c in top_chains))
    return "\n".join(lines)


class RequestLedger:
    """Append-only log over a StateStore stream per UTC day. "Today" follows the injected clock."""

    def __init__(self, store: StateStore, clock: Clock = time.time) -> None:
        self._store = store
        self._clock = clock

    def today(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date().isoformat()

    def append(self, record: LogRecord) -> None:
        self._store.append(stream_for_day(record.day), record.to_dict())

    def records_for_day(self, day: date | str | None = None) -> list[LogRecord]:
        """One day's records in append order."""
        rows = self._store.read_stream(stream_for_day(_day_str(day) if day is not None else self.today()))
        return [LogRecord.from_dict(r) for r in rows]

    def daily_report(self, day: date | str | None = None, top_n: int = DEFAULT_TOP_TOKENS) -> dict[str, Any]:
        """Aggregate one UTC day (default today). Read-only; repeated calls give equal output."""
        day_s = _day_str(day) if day is not None else self.today()
        report = build_daily_report(day_s, self.records_for_day(day_s), top_n=top_n)
        logger.info(
            "ledger_daily_report",
            date=day_s,
            total_requests=report["total_requests"],
        )
        return report
