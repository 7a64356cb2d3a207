"""
Gate service: request admission pipeline behind the HTTP surface.

Per request: validate -> resolve tier (API key, else stake looked up by wallet)
-> check quota -> cache lookup ->
(hit: annotate and return) / (miss: analyze bytecode -> risk schema -> gate)
-> schedule cache write and ledger append in the background -> respond.

Every public operation returns a GateOutcome (HTTP status + body). The body
always carries a decision, including 400 / 429 / 500 outcomes, and exactly one
ledger record is appended per request. Store calls (quota, cache reads) run
in the default executor so a slow backend never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from backend_riskgate.analytics.bytecode_analyzer import (
    AnalysisResult,
    BytecodeAnalyzer,
    normalize_address,
)
from backend_riskgate.analytics.gate_engine import (
    GateDecision,
    GatePolicy,
    apply_analyzer_floor,
    evaluate,
    get_policy,
)
from backend_riskgate.analytics.risk_schema import RiskSchema, merge
from backend_riskgate.analytics.signatures import FULL_PRESET, LITE_PRESET, Decision
from backend_riskgate.config.settings import Settings, get_settings
from backend_riskgate.core.exceptions import InputValidationError, QuotaExceeded, RiskGateError
from backend_riskgate.database import get_store
from backend_riskgate.database.store import Clock, StateStore
from backend_riskgate.gateway.background import BackgroundWriter
from backend_riskgate.gateway.cache import KIND_GATE, KIND_SCAN, ResultCache
from backend_riskgate.gateway.ledger import LogRecord, RequestLedger, new_request_id
from backend_riskgate.gateway.rate_limiter import QuotaStatus, RateLimiter, resolve_tier
from backend_riskgate.providers.bytecode_provider import BytecodeProvider, JsonRpcBytecodeProvider
from backend_riskgate.providers.stake_resolver import NoStakeResolver, StakeResolver
from backend_riskgate.riskgate_logging import bind_request, get_logger

logger = get_logger(__name__)

VALID_ACTIONS = frozenset({"swap", "dca", "yield_enter", "lend", "stake"})
DEFAULT_CHAIN = "ethereum"
MAX_PORTFOLIO_TOKENS = 20
_CHAIN_RE = re.compile(r"^[a-z0-9_-]{1,32}$")

ENDPOINT_GATE = "gate"
ENDPOINT_SCAN = "scan"
ENDPOINT_PORTFOLIO = "portfolio"


@dataclass
class GateOutcome:
    """HTTP status plus JSON body. Body always has a "decision" key."""

    status_code: int
    body: dict[str, Any]


@dataclass
class CallerContext:
    """Credentials and identity hints supplied with a request."""

    wallet: str | None = None
    api_key: str | None = None
    client_id: str | None = None


@dataclass
class _Trace:
    """Per-request ledger fields filled in as the pipeline progresses."""

    endpoint: str
    chain: str = DEFAULT_CHAIN
    token: str | None = None
    action_type: str | None = None
    tier: str | None = None
    cache_hit: bool = False
    rpc_calls: int = 0


def normalize_chain(chain: str | None) -> str:
    value = (chain or DEFAULT_CHAIN).strip().lower()
    if not _CHAIN_RE.match(value):
        raise InputValidationError("Invalid chain", details={"chain": value[:32]})
    return value


def validate_action(action_type: str | None) -> str:
    action = (action_type or "").strip().lower()
    if action not in VALID_ACTIONS:
        raise InputValidationError(
            "Invalid action type",
            details={"action_type": action[:32], "valid_actions": sorted(VALID_ACTIONS)},
        )
    return action


def resolve_identity(ctx: CallerContext) -> str:
    """Quota identity precedence: wallet > API key (hashed) > client id > anonymous."""
    if ctx.wallet:
        try:
            return normalize_address(ctx.wallet)
        except InputValidationError:
            raise InputValidationError("Invalid wallet address", details={"wallet": ctx.wallet[:64]}) from None
    if ctx.api_key:
        return "key:" + hashlib.sha256(ctx.api_key.encode()).hexdigest()[:16]
    if ctx.client_id:
        return f"client:{ctx.client_id}"
    return "anonymous"


def _checks(result: AnalysisResult, categories: Sequence[Any]) -> dict[str, bool]:
    return {c.value: bool(result.checks.get(c.value)) for c in categories}


class GateService:
    """Wires analyzers, cache, rate limiter and ledger over one shared store."""

    def __init__(
        self,
        settings: Settings,
        store: StateStore,
        provider: BytecodeProvider,
        clock: Clock = time.time,
        policy: GatePolicy | None = None,
        stake_resolver: StakeResolver | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._provider = provider
        self._policy = policy or get_policy(settings.gate_policy)
        self._api_keys = dict(settings.api_keys)
        self._stake_resolver = stake_resolver or NoStakeResolver()
        self.cache = ResultCache(
            store,
            ttls={KIND_GATE: settings.gate_ttl_sec, KIND_SCAN: settings.scan_ttl_sec},
            clock=clock,
        )
        self.rate_limiter = RateLimiter(store, clock=clock)
        self.ledger = RequestLedger(store, clock=clock)
        self.writer = BackgroundWriter()
        self.gate_analyzer = BytecodeAnalyzer(provider, LITE_PRESET, timeout_sec=settings.rpc_timeout_sec)
        self.scan_analyzer = BytecodeAnalyzer(provider, FULL_PRESET, timeout_sec=settings.rpc_timeout_sec)
        self._clock = clock

    @property
    def policy(self) -> GatePolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Pipeline helpers
    # ------------------------------------------------------------------

    async def _offload(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking store-backed call in the default executor."""
        return await asyncio.get_running_loop().run_in_executor(None, fn, *args)

    async def _stake_for(self, wallet: str | None) -> float | None:
        """Stake balance from the resolver, bounded like the bytecode fetch. Failures mean no stake."""
        if not wallet:
            return None
        try:
            return await asyncio.wait_for(
                self._stake_resolver.get_stake_balance(wallet),
                timeout=self._settings.rpc_timeout_sec,
            )
        except Exception as e:
            logger.warning("stake_lookup_failed", wallet=wallet[:16] + "...", error=str(e) or type(e).__name__)
            return None

    async def _admit(self, ctx: CallerContext, trace: _Trace) -> QuotaStatus:
        identity = resolve_identity(ctx)
        wallet = identity if ctx.wallet else None
        tier = resolve_tier(ctx.api_key, await self._stake_for(wallet), self._api_keys)
        trace.tier = tier.value
        quota = await self._offload(self.rate_limiter.check, identity, tier)
        if not quota.allowed:
            status = quota.to_dict()
            raise QuotaExceeded(
                "Daily quota exceeded",
                details={"rate_limit": status, "reset_time": status["reset_time"], "upgrade": status["upgrade"]},
            )
        return quota

    def _evaluate_analysis(self, result: AnalysisResult) -> tuple[RiskSchema, GateDecision]:
        schema = result.to_risk_schema()
        gate = apply_analyzer_floor(evaluate(schema, self._policy), result.decision, result.reason)
        return schema, gate

    @staticmethod
    def _response_cache_block(cached: dict[str, Any]) -> dict[str, Any]:
        meta = cached.get("cache") or {}
        return {
            "hit": True,
            "age_seconds": int(meta.get("age_seconds", 0)),
            "ttl_seconds": int(meta.get("ttl_seconds", 0)),
        }

    def _schedule_cache(self, chain: str, addr: str, kind: str, body: dict[str, Any]) -> None:
        self.writer.submit(f"cache_{kind}", self.cache.set, chain, addr, kind, dict(body))

    def _record(
        self,
        request_id: str,
        trace: _Trace,
        body: dict[str, Any],
        latency_ms: int,
        error_code: str | None,
    ) -> None:
        record = LogRecord(
            request_id=request_id,
            timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
            endpoint=trace.endpoint,
            chain=trace.chain,
            token=trace.token,
            action_type=trace.action_type,
            verdict=str(body.get("decision") or "UNKNOWN"),
            latency_ms=latency_ms,
            cache_hit=trace.cache_hit,
            error_code=error_code,
            risk_score=body.get("risk_score"),
            confidence=body.get("confidence"),
            rpc_calls=trace.rpc_calls,
            tier=trace.tier,
        )
        self.writer.submit("ledger_append", self.ledger.append, record)

    async def _run(self, trace: _Trace, handler) -> GateOutcome:
        """Run one request: map errors to fail-safe bodies, append the ledger record."""
        start = time.perf_counter()
        request_id = new_request_id()
        log = bind_request(request_id)
        error_code: str | None = None
        try:
            status, body = 200, await handler(trace)
        except RiskGateError as e:
            error_code = e.error_code
            status, body = e.http_status, {"decision": Decision.BLOCK.value, **e.to_dict()}
            log.info(f"{trace.endpoint}_rejected", error_code=e.error_code, error=e.message)
        except Exception as e:
            error_code = "INTERNAL_ERROR"
            status = 500
            body = {
                "decision": Decision.BLOCK.value,
                "error": "Internal error",
                "error_code": error_code,
                "execution_allowed": False,
            }
            log.exception(f"{trace.endpoint}_failed", error=str(e))
        latency_ms = int(round((time.perf_counter() - start) * 1000))
        body["request_id"] = request_id
        body["latency_ms"] = latency_ms
        self._record(request_id, trace, body, latency_ms, error_code)
        if status == 200:
            log.info(
                f"{trace.endpoint}_decided",
                token=(trace.token or "")[:16] + "...",
                decision=body.get("decision"),
                cache_hit=trace.cache_hit,
                latency_ms=latency_ms,
            )
        return GateOutcome(status_code=status, body=body)

    # ------------------------------------------------------------------
    # gate
    # ------------------------------------------------------------------

    async def gate(
        self,
        token: str,
        action_type: str,
        chain: str | None = None,
        ctx: CallerContext | None = None,
    ) -> GateOutcome:
        ctx = ctx or CallerContext()
        trace = _Trace(endpoint=ENDPOINT_GATE, token=(token or "")[:64], action_type=action_type)

        async def handler(trace: _Trace) -> dict[str, Any]:
            addr = normalize_address(token)
            trace.token = addr
            trace.action_type = validate_action(action_type)
            trace.chain = normalize_chain(chain)
            quota = await self._admit(ctx, trace)

            cached = await self._offload(self.cache.get, trace.chain, addr, KIND_GATE)
            if cached is not None:
                trace.cache_hit = True
                body = cached
                body["cache"] = self._response_cache_block(cached)
                body["rpc_calls"] = 0
            else:
                result = await self.gate_analyzer.analyze(addr)
                trace.rpc_calls = result.rpc_calls
                schema, gate = self._evaluate_analysis(result)
                body = self._gate_body(trace.chain, result, schema, gate)
                self._schedule_cache(trace.chain, addr, KIND_GATE, body)
            body["action_type"] = trace.action_type
            body["rate_limit"] = quota.to_dict()
            return body

        return await self._run(trace, handler)

    def _gate_body(
        self,
        chain: str,
        result: AnalysisResult,
        schema: RiskSchema,
        gate: GateDecision,
    ) -> dict[str, Any]:
        return {
            "token": result.address,
            "chain": chain,
            "decision": gate.decision.value,
            "risk_score": schema.risk_score,
            "risk_level": schema.risk_level.value,
            "confidence": schema.confidence,
            "reason": result.reason,
            "signals": [s.to_dict() for s in schema.signals],
            "checks": _checks(result, LITE_PRESET.signatures.keys()),
            "is_whitelisted": result.is_whitelisted,
            "execution_allowed": gate.execution_allowed,
            "requires_confirmation": gate.requires_confirmation,
            "violations": list(gate.violations),
            "warnings": list(gate.warnings),
            "gate_id": gate.gate_id,
            "audit_trail": dict(gate.audit_trail),
            "policy": gate.policy_applied.name,
            "analyzer": result.preset,
            "rpc_calls": result.rpc_calls,
            "cache": {
                "hit": False,
                "age_seconds": 0,
                "ttl_seconds": self.cache.ttl_for(KIND_GATE),
            },
        }

    # ------------------------------------------------------------------
    # scan / portfolio
    # ------------------------------------------------------------------

    async def _scan_one(self, chain: str, addr: str) -> tuple[dict[str, Any], bool]:
        """Cached deep scan of one address. Returns (body, cache_hit)."""
        cached = await self._offload(self.cache.get, chain, addr, KIND_SCAN)
        if cached is not None:
            cached["cache"] = self._response_cache_block(cached)
            cached["rpc_calls"] = 0
            return cached, True
        result = await self.scan_analyzer.analyze(addr)
        schema, gate = self._evaluate_analysis(result)
        body = self._scan_body(chain, result, schema, gate)
        self._schedule_cache(chain, addr, KIND_SCAN, body)
        return body, False

    def _scan_body(
        self,
        chain: str,
        result: AnalysisResult,
        schema: RiskSchema,
        gate: GateDecision,
    ) -> dict[str, Any]:
        schema_dict = schema.to_dict()
        return {
            "contract_address": result.address,
            "chain": chain,
            "decision": gate.decision.value,
            "risk_score": schema.risk_score,
            "risk_level": schema.risk_level.value,
            "confidence": schema.confidence,
            "reason": result.reason,
            "checks": _checks(result, FULL_PRESET.signatures.keys()),
            "risk_schema": schema_dict,
            "evidence_bundle": {
                "bundle_id": gate.audit_trail.get("evidence_bundle_id"),
                "evidence": schema_dict["evidence"],
                "matches": {k: list(v) for k, v in result.matches.items()},
            },
            "gate": gate.to_dict(),
            "analysis": {
                "preset": result.preset,
                "is_whitelisted": result.is_whitelisted,
                "is_contract": result.is_contract,
                "bytecode_length": result.bytecode_length,
                "error": result.error,
            },
            "rpc_calls": result.rpc_calls,
            "cache": {
                "hit": False,
                "age_seconds": 0,
                "ttl_seconds": self.cache.ttl_for(KIND_SCAN),
            },
        }

    async def scan(
        self,
        contract_address: str,
        chain: str | None = None,
        ctx: CallerContext | None = None,
    ) -> GateOutcome:
        ctx = ctx or CallerContext()
        trace = _Trace(endpoint=ENDPOINT_SCAN, token=(contract_address or "")[:64])

        async def handler(trace: _Trace) -> dict[str, Any]:
            addr = normalize_address(contract_address)
            trace.token = addr
            trace.chain = normalize_chain(chain)
            quota = await self._admit(ctx, trace)
            body, hit = await self._scan_one(trace.chain, addr)
            trace.cache_hit = hit
            trace.rpc_calls = body.get("rpc_calls", 0)
            body["rate_limit"] = quota.to_dict()
            return body

        return await self._run(trace, handler)

    async def portfolio(
        self,
        tokens: Sequence[str],
        weights: Sequence[float] | None = None,
        chain: str | None = None,
        ctx: CallerContext | None = None,
    ) -> GateOutcome:
        """Scan every token (each cached individually), merge, gate the merged schema."""
        ctx = ctx or CallerContext()
        trace = _Trace(endpoint=ENDPOINT_PORTFOLIO)

        async def handler(trace: _Trace) -> dict[str, Any]:
            if not tokens:
                raise InputValidationError("tokens must be a non-empty list")
            if len(tokens) > MAX_PORTFOLIO_TOKENS:
                raise InputValidationError(
                    f"At most {MAX_PORTFOLIO_TOKENS} tokens per portfolio",
                    details={"token_count": len(tokens)},
                )
            addrs = [normalize_address(t) for t in tokens]
            if weights is not None and len(weights) != len(addrs):
                raise InputValidationError("weights must match tokens in length")
            trace.chain = normalize_chain(chain)
            quota = await self._admit(ctx, trace)

            scans = await asyncio.gather(*(self._scan_one(trace.chain, a) for a in addrs))
            schemas = [RiskSchema.from_dict(body["risk_schema"]) for body, _ in scans]
            merged = merge(schemas, weights)
            gate = evaluate(merged, self._policy)
            trace.rpc_calls = sum(int(body.get("rpc_calls", 0)) for body, _ in scans)
            trace.cache_hit = all(hit for _, hit in scans)
            return {
                "chain": trace.chain,
                "decision": gate.decision.value,
                "risk_score": merged.risk_score,
                "risk_level": merged.risk_level.value,
                "confidence": merged.confidence,
                "risk_schema": merged.to_dict(),
                "gate": gate.to_dict(),
                "execution_allowed": gate.execution_allowed,
                "requires_confirmation": gate.requires_confirmation,
                "tokens": [
                    {
                        "token": body["contract_address"],
                        "decision": body["decision"],
                        "risk_score": body["risk_score"],
                        "risk_level": body["risk_level"],
                        "cache_hit": hit,
                    }
                    for body, hit in scans
                ],
                "rpc_calls": trace.rpc_calls,
                "rate_limit": quota.to_dict(),
            }

        return await self._run(trace, handler)

    # ------------------------------------------------------------------
    # report / stats / lifecycle
    # ------------------------------------------------------------------

    async def report(self, day: str | None = None) -> GateOutcome:
        """Daily aggregation. Pending ledger writes are flushed first."""
        await self.writer.drain()
        try:
            report = self.ledger.daily_report(day or None)
        except ValueError:
            err = InputValidationError("Invalid date, expected YYYY-MM-DD", details={"date": str(day)[:32]})
            return GateOutcome(status_code=400, body={"decision": Decision.BLOCK.value, **err.to_dict()})
        return GateOutcome(status_code=200, body=report)

    def cleanup(self) -> int:
        return self.cache.cleanup()

    def stats(self) -> dict[str, Any]:
        return {
            "policy": self._policy.to_dict(),
            "cache": self.cache.stats(),
            "gate_analyzer": self.gate_analyzer.stats(),
            "scan_analyzer": self.scan_analyzer.stats(),
            "background_writes": self.writer.stats(),
        }

    async def drain(self) -> None:
        await self.writer.drain()

    async def aclose(self) -> None:
        await self.writer.drain()
        aclose = getattr(self._provider, "aclose", None)
        if aclose is not None:
            await aclose()
        self._store.close()


def create_gate_service(
    settings: Settings | None = None,
    store: StateStore | None = None,
    provider: BytecodeProvider | None = None,
    stake_resolver: StakeResolver | None = None,
) -> GateService:
    """Build a GateService from settings (env) with the configured store and JSON-RPC provider."""
    settings = settings or get_settings()
    store = store or get_store(settings)
    provider = provider or JsonRpcBytecodeProvider(settings.rpc_url, timeout_sec=settings.rpc_timeout_sec)
    logger.info(
        "gate_service_created",
        store=type(store).__name__,
        policy=settings.gate_policy,
        gate_ttl_sec=settings.gate_ttl_sec,
        scan_ttl_sec=settings.scan_ttl_sec,
    )
    return GateService(settings, store, provider, stake_resolver=stake_resolver)
