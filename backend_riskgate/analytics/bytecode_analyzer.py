"""
Bytecode signature analyzer: one contract address in, category flags + score out.

Normalizes the address, short-circuits known-safe contracts without any network
call, otherwise fetches runtime bytecode exactly once and scans the lowercase
hex for 4-byte selectors per risk category. This is a textual match, not ABI
decoding, so false positives are accepted.

Fail-safe: any provider error or timeout yields BLOCK / CRITICAL / 100. The
analyzer never fails open and never spends more than one provider call.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from backend_riskgate.analytics.risk_schema import (
    RiskLevel,
    RiskSchema,
    Severity,
    create,
    new_evidence_id,
    risk_level_for,
)
from backend_riskgate.analytics.signatures import (
    CATEGORY_DESCRIPTIONS,
    CATEGORY_SEVERITY,
    CONFIDENCE_BY_DECISION,
    FAIL_SAFE_CONFIDENCE,
    FAIL_SAFE_SCORE,
    LITE_PRESET,
    SAFE_CONTRACTS,
    WHITELIST_CONFIDENCE,
    AnalyzerPreset,
    Decision,
    RiskCategory,
)
from backend_riskgate.core.exceptions import InputValidationError
from backend_riskgate.providers.bytecode_provider import BytecodeProvider
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
DEFAULT_PROVIDER_TIMEOUT_SEC = 5.0
EMPTY_CODE_VALUES = ("", "0x", "0x0")

REASON_WHITELIST = "Known safe contract (whitelist)"
REASON_NOT_A_CONTRACT = "Not a contract (EOA)"


def normalize_address(address: str) -> str:
    """Validate 0x + 40 hex chars and return it lowercased. Raises InputValidationError."""
    addr = (address or "").strip()
    if not ADDRESS_RE.match(addr):
        raise InputValidationError("Invalid contract address", details={"address": addr[:64]})
    return addr.lower()


@dataclass
class AnalysisResult:
    """Outcome of one analyzer invocation."""

    address: str
    decision: Decision
    risk_score: int
    risk_level: RiskLevel
    confidence: float
    reason: str
    preset: str
    checks: dict[str, bool] = field(default_factory=dict)
    """Detected categories (category -> True). Empty for whitelist / EOA / errors."""
    matches: dict[str, list[str]] = field(default_factory=dict)
    """Matched selectors per detected category."""
    severities: dict[str, str] = field(default_factory=dict)
    """Signal severity per detected category, as judged by the preset."""
    is_whitelisted: bool = False
    is_contract: bool | None = None
    rpc_calls: int = 0
    latency_ms: int = 0
    bytecode_length: int = 0
    code_sha256: str | None = None
    error: str | None = None

    @property
    def detected(self) -> list[RiskCategory]:
        return [RiskCategory(c) for c, hit in self.checks.items() if hit]

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "decision": self.decision.value,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "preset": self.preset,
            "checks": dict(self.checks),
            "matches": {k: list(v) for k, v in self.matches.items()},
            "is_whitelisted": self.is_whitelisted,
            "is_contract": self.is_contract,
            "rpc_calls": self.rpc_calls,
            "latency_ms": self.latency_ms,
            "bytecode_length": self.bytecode_length,
            "error": self.error,
        }

    def to_risk_schema(self) -> RiskSchema:
        """
        Convert to the unified schema: one signal per detected category and one
        evidence item describing how the verdict was reached.
        """
        now = datetime.now(timezone.utc).isoformat()
        evidence_id = new_evidence_id()
        if self.is_whitelisted:
            ev_type, ev_source = "whitelist", "static_whitelist"
        elif self.error is not None:
            ev_type, ev_source = "provider_failure", "onchain_rpc"
        else:
            ev_type, ev_source = "bytecode_analysis", "onchain_rpc"
        evidence = [{
            "id": evidence_id,
            "type": ev_type,
            "source": ev_source,
            "timestamp": now,
            "data": {
                "preset": self.preset,
                "bytecode_length": self.bytecode_length,
                "code_sha256": self.code_sha256,
                "is_contract": self.is_contract,
                "error": self.error,
            },
        }]
        signals: list[dict[str, Any]] = []
        for category in self.detected:
            severity = self.severities.get(category.value) or CATEGORY_SEVERITY.get(category, Severity.MEDIUM.value)
            signals.append({
                "type": category.value,
                "severity": severity,
                "description": CATEGORY_DESCRIPTIONS.get(category, f"{category.value} pattern detected"),
                "evidence_refs": [evidence_id] + list(self.matches.get(category.value, [])),
            })
        if self.is_contract is False:
            signals.append({
                "type": "not_a_contract",
                "severity": Severity.CRITICAL.value,
                "description": REASON_NOT_A_CONTRACT,
                "evidence_refs": [evidence_id],
            })
        if self.error is not None:
            signals.append({
                "type": "provider_failure",
                "severity": Severity.CRITICAL.value,
                "description": "Bytecode could not be fetched; failing safe",
                "evidence_refs": [evidence_id],
            })
        return create(
            risk_score=self.risk_score,
            confidence=self.confidence,
            signals=signals,
            evidence=evidence,
            metadata={"analyzer_preset": self.preset, "rpc_calls": self.rpc_calls},
        )


def scan_bytecode(bytecode: str, preset: AnalyzerPreset) -> dict[str, list[str]]:
    """Return {category: matched selectors} for every category with at least one match."""
    code = bytecode.lower()
    found: dict[str, list[str]] = {}
    for category, selectors in preset.signatures.items():
        hits = [sig for sig in selectors if sig in code]
        if hits:
            found[category.value] = hits
    return found


class BytecodeAnalyzer:
    """
    Analyzer bound to one bytecode provider and one preset.

    Thread-safe request counter; the analyzer itself holds no other state.
    """

    def __init__(
        self,
        provider: BytecodeProvider,
        preset: AnalyzerPreset = LITE_PRESET,
        timeout_sec: float = DEFAULT_PROVIDER_TIMEOUT_SEC,
        whitelist: frozenset[str] = SAFE_CONTRACTS,
    ) -> None:
        self._provider = provider
        self._preset = preset
        self._timeout_sec = timeout_sec
        self._whitelist = whitelist
        self._lock = threading.Lock()
        self._request_count = 0
        self._rpc_count = 0
        self._failures = 0

    @property
    def preset(self) -> AnalyzerPreset:
        return self._preset

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "preset": self._preset.preset_id,
                "total_requests": self._request_count,
                "rpc_calls": self._rpc_count,
                "provider_failures": self._failures,
            }

    async def analyze(self, address: str) -> AnalysisResult:
        """
        Analyze one contract address. At most one provider call.

        Raises InputValidationError for a malformed address (no call spent);
        every other failure resolves to a fail-safe BLOCK result.
        """
        start = time.perf_counter()
        addr = normalize_address(address)
        with self._lock:
            self._request_count += 1

        if addr in self._whitelist:
            logger.debug("analyzer_whitelist_hit", token=addr[:16] + "...")
            return AnalysisResult(
                address=addr,
                decision=Decision.PASS,
                risk_score=self._preset.base_score,
                risk_level=risk_level_for(self._preset.base_score),
                confidence=WHITELIST_CONFIDENCE,
                reason=REASON_WHITELIST,
                preset=self._preset.preset_id,
                is_whitelisted=True,
                is_contract=True,
                rpc_calls=0,
                latency_ms=_elapsed_ms(start),
            )

        with self._lock:
            self._rpc_count += 1
        try:
            code = await asyncio.wait_for(self._provider.get_code(addr), timeout=self._timeout_sec)
        except asyncio.TimeoutError:
            return self._fail_safe(addr, start, f"RPC timeout after {self._timeout_sec:g}s")
        except Exception as e:
            return self._fail_safe(addr, start, f"RPC error: {e}")

        code = (code or "").strip().lower()
        if code in EMPTY_CODE_VALUES:
            logger.info("analyzer_not_a_contract", token=addr[:16] + "...")
            return AnalysisResult(
                address=addr,
                decision=Decision.BLOCK,
                risk_score=FAIL_SAFE_SCORE,
                risk_level=risk_level_for(FAIL_SAFE_SCORE),
                confidence=FAIL_SAFE_CONFIDENCE,
                reason=REASON_NOT_A_CONTRACT,
                preset=self._preset.preset_id,
                is_contract=False,
                rpc_calls=1,
                latency_ms=_elapsed_ms(start),
            )

        matches = scan_bytecode(code, self._preset)
        detected = {RiskCategory(c) for c in matches}
        score = self._preset.score(detected)
        decision = self._preset.decide(detected, score)
        names = ", ".join(sorted(matches)) or "none"
        if decision == Decision.BLOCK:
            reason = f"Critical patterns: {names}"
        elif decision == Decision.WARN:
            reason = f"Caution patterns: {names}"
        else:
            reason = "No critical patterns detected"

        result = AnalysisResult(
            address=addr,
            decision=decision,
            risk_score=score,
            risk_level=risk_level_for(score),
            confidence=CONFIDENCE_BY_DECISION[decision],
            reason=reason,
            preset=self._preset.preset_id,
            checks={c: True for c in matches},
            matches=matches,
            severities={c.value: self._preset.severity(c, detected) for c in detected},
            is_contract=True,
            rpc_calls=1,
            latency_ms=_elapsed_ms(start),
            bytecode_length=len(code),
            code_sha256=hashlib.sha256(code.encode("ascii", errors="ignore")).hexdigest()[:16],
        )
        logger.info(
            "analyzer_result",
            token=addr[:16] + "...",
            preset=self._preset.preset_id,
            decision=decision.value,
            risk_score=score,
            detected=sorted(matches),
        )
        return result

    def _fail_safe(self, addr: str, start: float, error: str) -> AnalysisResult:
        with self._lock:
            self._failures += 1
        logger.warning("analyzer_provider_failed", token=addr[:16] + "...", error=error)
        return AnalysisResult(
            address=addr,
            decision=Decision.BLOCK,
            risk_score=FAIL_SAFE_SCORE,
            risk_level=risk_level_for(FAIL_SAFE_SCORE),
            confidence=FAIL_SAFE_CONFIDENCE,
            reason=error,
            preset=self._preset.preset_id,
            rpc_calls=1,
            latency_ms=_elapsed_ms(start),
            error=error,
        )


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))
