"""
Execution gate: RiskSchema + policy -> deterministic PASS / WARN / BLOCK.

Rules are evaluated in a fixed order and the first decisive rule wins:
    1. risk_level in block_levels         -> BLOCK
    2. risk_score > max_risk_score        -> BLOCK
    3. confidence < 0.5                   -> warning only, keep going
    4. any signal with severity critical  -> BLOCK
    5. risk_level in warn_levels          -> WARN
    6. otherwise                          -> PASS

evaluate() is a pure function of (schema, policy): only gate_id and timestamp
differ between repeated evaluations.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from backend_riskgate.analytics.risk_schema import RiskSchema, Severity
from backend_riskgate.analytics.signatures import Decision, stricter
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

DECISION_VERSION = "v1.0.0"
LOW_CONFIDENCE_THRESHOLD = 0.5


@dataclass(frozen=True)
class GatePolicy:
    """Thresholds applied by the gate. Levels are RiskLevel values ("HIGH", ...)."""

    name: str = "default"
    max_risk_score: int = 70
    block_levels: tuple[str, ...] = ("CRITICAL",)
    warn_levels: tuple[str, ...] = ("HIGH",)
    require_confirmation: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "max_risk_score": self.max_risk_score,
            "block_levels": list(self.block_levels),
            "warn_levels": list(self.warn_levels),
            "require_confirmation": self.require_confirmation,
        }


DEFAULT_POLICY = GatePolicy()

POLICIES: Mapping[str, GatePolicy] = MappingProxyType({
    "default": DEFAULT_POLICY,
    "conservative": GatePolicy(
        name="conservative",
        max_risk_score=50,
        block_levels=("HIGH", "CRITICAL"),
        warn_levels=("MEDIUM",),
    ),
    "moderate": GatePolicy(
        name="moderate",
        max_risk_score=70,
        block_levels=("CRITICAL",),
        warn_levels=("MEDIUM", "HIGH"),
    ),
    "aggressive": GatePolicy(
        name="aggressive",
        max_risk_score=85,
        block_levels=("CRITICAL",),
        warn_levels=(),
        require_confirmation=False,
    ),
})


def get_policy(name: str | None) -> GatePolicy:
    """Named policy lookup; unknown or empty names get the default policy."""
    key = (name or "").strip().lower()
    policy = POLICIES.get(key)
    if policy is None:
        if key:
            logger.warning("gate_policy_unknown", policy=key)
        return DEFAULT_POLICY
    return policy


def new_gate_id() -> str:
    return f"gate_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class GateDecision:
    decision: Decision
    execution_allowed: bool
    requires_confirmation: bool
    violations: tuple[str, ...]
    warnings: tuple[str, ...]
    gate_id: str
    timestamp: str
    policy_applied: GatePolicy
    audit_trail: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "execution_allowed": self.execution_allowed,
            "requires_confirmation": self.requires_confirmation,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
            "gate_id": self.gate_id,
            "timestamp": self.timestamp,
            "policy_applied": self.policy_applied.to_dict(),
            "audit_trail": dict(self.audit_trail),
        }


def _decide(schema: RiskSchema, policy: GatePolicy) -> tuple[Decision, list[str], list[str]]:
    violations: list[str] = []
    warnings: list[str] = []
    level = schema.risk_level.value

    if level in policy.block_levels:
        violations.append(f"Risk level {level} is blocked by policy")
        return Decision.BLOCK, violations, warnings

    if schema.risk_score > policy.max_risk_score:
        violations.append(
            f"Risk score {schema.risk_score} exceeds maximum {policy.max_risk_score}"
        )
        return Decision.BLOCK, violations, warnings

    if schema.confidence < LOW_CONFIDENCE_THRESHOLD:
        warnings.append(f"Low confidence score: {schema.confidence:.2f}")

    critical = [s for s in schema.signals if s.severity == Severity.CRITICAL]
    if critical:
        violations.extend(f"Critical signal: {s.type}" for s in critical)
        return Decision.BLOCK, violations, warnings

    if level in policy.warn_levels:
        warnings.append(f"Risk level {level} requires caution")
        return Decision.WARN, violations, warnings

    return Decision.PASS, violations, warnings


def evaluate(schema: RiskSchema, policy: GatePolicy = DEFAULT_POLICY) -> GateDecision:
    """Evaluate one schema against one policy. Exactly one GateDecision per call."""
    decision, violations, warnings = _decide(schema, policy)
    evidence_bundle_id = schema.evidence[0].id if schema.evidence else None
    return GateDecision(
        decision=decision,
        execution_allowed=decision != Decision.BLOCK,
        requires_confirmation=decision == Decision.WARN and policy.require_confirmation,
        violations=tuple(violations),
        warnings=tuple(warnings),
        gate_id=new_gate_id(),
        timestamp=datetime.now(timezone.utc).isoformat(),
        policy_applied=policy,
        audit_trail={
            "schema_version": schema.schema_version,
            "decision_version": DECISION_VERSION,
            "evidence_bundle_id": evidence_bundle_id,
        },
    )


def apply_analyzer_floor(gate: GateDecision, analyzer_decision: Decision, reason: str) -> GateDecision:
    """
    Never let the gate be looser than the analyzer's own category verdict.

    A blacklist-only contract scores MEDIUM, which the default policy passes,
    while the category table says WARN. The stricter of the two is returned;
    the analyzer's reason is recorded as a warning or violation.
    """
    final = stricter(gate.decision, analyzer_decision)
    if final == gate.decision:
        return gate
    violations = gate.violations
    warnings = gate.warnings
    if final == Decision.BLOCK:
        violations = violations + (reason,)
    else:
        warnings = warnings + (reason,)
    policy = gate.policy_applied
    return dataclasses.replace(
        gate,
        decision=final,
        execution_allowed=final != Decision.BLOCK,
        requires_confirmation=final == Decision.WARN and policy.require_confirmation,
        violations=violations,
        warnings=warnings,
    )
