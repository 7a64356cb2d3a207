"""
Unified risk schema v1.0: canonical risk object and multi-source aggregation.

create() turns raw score / confidence / signals into an immutable RiskSchema
with a risk level derived from fixed bands. merge() rolls several schemas up
into a new one (weighted mean score, minimum confidence, de-duplicated
signals) for portfolio-level views. Pure functions; no I/O.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from backend_riskgate.core.exceptions import InputValidationError
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = "1.0.0"
ENGINE_VERSION = "v1.0.0"
CALIBRATION_VERSION = "v1.0.0"

SCORE_MIN = 0
SCORE_MAX = 100


class RiskLevel(str, Enum):
    SAFE = "SAFE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Upper bound (inclusive) of each band; anything above the last bound is CRITICAL.
RISK_BANDS: tuple[tuple[int, RiskLevel], ...] = (
    (10, RiskLevel.SAFE),
    (30, RiskLevel.LOW),
    (50, RiskLevel.MEDIUM),
    (70, RiskLevel.HIGH),
)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def risk_level_for(score: float) -> RiskLevel:
    """Map a 0-100 score onto the fixed bands (10 SAFE, 11 LOW, 31 MEDIUM, 51 HIGH, 71 CRITICAL)."""
    for upper, level in RISK_BANDS:
        if score <= upper:
            return level
    return RiskLevel.CRITICAL


def clamp_score(raw: Any) -> int:
    """Round and clamp into [0, 100]. Non-numeric input is treated as maximum risk."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("risk_schema_score_invalid", raw=str(raw)[:32])
        return SCORE_MAX
    if math.isnan(value):
        logger.warning("risk_schema_score_invalid", raw="nan")
        return SCORE_MAX
    rounded = _round_half_up(value) if math.isfinite(value) else (SCORE_MAX if value > 0 else SCORE_MIN)
    clamped = max(SCORE_MIN, min(SCORE_MAX, rounded))
    if clamped != rounded:
        logger.warning("risk_schema_score_clamped", raw=value, clamped=clamped)
    return clamped


def clamp_confidence(raw: Any) -> float:
    """Clamp into [0, 1]. Non-numeric input is treated as zero confidence."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("risk_schema_confidence_invalid", raw=str(raw)[:32])
        return 0.0
    if math.isnan(value):
        return 0.0
    clamped = max(0.0, min(1.0, value))
    if clamped != value:
        logger.warning("risk_schema_confidence_clamped", raw=value, clamped=clamped)
    return clamped


@dataclass(frozen=True)
class Signal:
    """One detected risk indicator (e.g. mintable) with a severity."""

    type: str
    severity: Severity = Severity.LOW
    description: str = ""
    evidence_refs: tuple[str, ...] = ()

    @classmethod
    def from_value(cls, value: "Signal | Mapping[str, Any]") -> "Signal":
        if isinstance(value, Signal):
            return value
        raw_severity = str(value.get("severity") or "low").lower()
        try:
            severity = Severity(raw_severity)
        except ValueError:
            logger.warning("risk_schema_severity_unknown", severity=raw_severity)
            severity = Severity.LOW
        refs = value.get("evidence_refs") or value.get("evidenceRefs") or ()
        return cls(
            type=str(value.get("type") or ""),
            severity=severity,
            description=str(value.get("description") or ""),
            evidence_refs=tuple(str(r) for r in refs),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
            "evidence_refs": list(self.evidence_refs),
        }


@dataclass(frozen=True)
class Evidence:
    """Raw data backing a signal or score, retained for audit."""

    id: str
    type: str
    source: str
    timestamp: str
    data: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: "Evidence | Mapping[str, Any]") -> "Evidence":
        if isinstance(value, Evidence):
            return value
        return cls(
            id=str(value.get("id") or new_evidence_id()),
            type=str(value.get("type") or ""),
            source=str(value.get("source") or ""),
            timestamp=str(value.get("timestamp") or _utc_now_iso()),
            data=dict(value.get("data") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


def new_evidence_id() -> str:
    return f"ev_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class RiskSchema:
    """
    Canonical, versioned risk object. Immutable: merge() and create() always
    return a new instance.
    """

    risk_score: int
    risk_level: RiskLevel
    confidence: float
    signals: tuple[Signal, ...]
    evidence: tuple[Evidence, ...]
    schema_version: str
    last_updated: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_critical_signal(self) -> bool:
        return any(s.severity == Severity.CRITICAL for s in self.signals)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "confidence": self.confidence,
            "signals": [s.to_dict() for s in self.signals],
            "evidence": [e.to_dict() for e in self.evidence],
            "last_updated": self.last_updated,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskSchema":
        """Rebuild a schema from to_dict() output (e.g. a cached scan). Re-derives the level."""
        score = clamp_score(data.get("risk_score", SCORE_MAX))
        return cls(
            risk_score=score,
            risk_level=risk_level_for(score),
            confidence=clamp_confidence(data.get("confidence", 0.0)),
            signals=tuple(Signal.from_value(s) for s in data.get("signals") or ()),
            evidence=tuple(Evidence.from_value(e) for e in data.get("evidence") or ()),
            schema_version=str(data.get("schema_version") or SCHEMA_VERSION),
            last_updated=str(data.get("last_updated") or _utc_now_iso()),
            metadata=dict(data.get("metadata") or {}),
        )


def create(
    risk_score: Any = 0,
    confidence: Any = 0.5,
    signals: Iterable[Signal | Mapping[str, Any]] = (),
    evidence: Iterable[Evidence | Mapping[str, Any]] = (),
    metadata: Mapping[str, Any] | None = None,
) -> RiskSchema:
    """
    Build a RiskSchema from raw values.

    risk_score is rounded half-up and clamped to [0, 100]; risk_level is
    derived from the clamped score; confidence is clamped to [0, 1]. Signals
    and evidence are attached as given (dicts are accepted).
    """
    score = clamp_score(risk_score)
    meta: dict[str, Any] = {
        "calibration_version": CALIBRATION_VERSION,
        "engine_version": ENGINE_VERSION,
    }
    if metadata:
        meta.update(metadata)
    return RiskSchema(
        risk_score=score,
        risk_level=risk_level_for(score),
        confidence=clamp_confidence(confidence),
        signals=tuple(Signal.from_value(s) for s in signals),
        evidence=tuple(Evidence.from_value(e) for e in evidence),
        schema_version=SCHEMA_VERSION,
        last_updated=_utc_now_iso(),
        metadata=meta,
    )


def deduplicate_signals(signals: Iterable[Signal]) -> list[Signal]:
    """Keep the first signal per (type, description), preserving encounter order."""
    seen: set[tuple[str, str]] = set()
    unique: list[Signal] = []
    for signal in signals:
        key = (signal.type, signal.description)
        if key in seen:
            continue
        seen.add(key)
        unique.append(signal)
    return unique


def merge(
    schemas: Sequence[RiskSchema],
    weights: Sequence[float] | None = None,
) -> RiskSchema:
    """
    Aggregate several schemas into a new one.

    Score is the weighted mean (weight 1 for each input unless given; a
    non-positive weight also counts as 1). Confidence is the minimum across
    inputs: an aggregate is never more confident than its weakest input.
    Signals are unioned and de-duplicated by (type, description); evidence is
    concatenated. Inputs are not modified.
    """
    if not schemas:
        raise InputValidationError("merge requires at least one risk schema")
    if weights is not None and len(weights) != len(schemas):
        raise InputValidationError(
            f"weights length {len(weights)} does not match schema count {len(schemas)}"
        )

    effective = [
        float(w) if w is not None and float(w) > 0 else 1.0
        for w in (weights if weights is not None else [1.0] * len(schemas))
    ]
    total_weight = sum(effective)
    weighted_score = sum(s.risk_score * w for s, w in zip(schemas, effective)) / total_weight

    merged = create(
        risk_score=weighted_score,
        confidence=min(s.confidence for s in schemas),
        signals=deduplicate_signals(sig for s in schemas for sig in s.signals),
        evidence=[ev for s in schemas for ev in s.evidence],
        metadata={"aggregated": True, "source_count": len(schemas)},
    )
    logger.debug(
        "risk_schema_merged",
        source_count=len(schemas),
        risk_score=merged.risk_score,
        confidence=merged.confidence,
    )
    return merged
