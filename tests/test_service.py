"""
Pytest tests for the gate service pipeline: scenarios A-D, cache, quota,
fail-safe error bodies, ledger records, scan, portfolio and report.

The bytecode provider is a fake; background writes are drained after each call.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.conftest import BLACKLIST_TOKEN, CLEAN_TOKEN, EOA, MINT_TOKEN, PAUSE_TOKEN, STAKER_WALLET, WETH


# --- gate scenarios ---


def test_gate_whitelisted_passes_without_rpc(service, provider, run):
    """Scenario A."""
    out = run(service.gate(WETH, "swap"))
    assert out.status_code == 200
    body = out.body
    assert body["decision"] == "PASS"
    assert body["rpc_calls"] == 0
    assert body["confidence"] == pytest.approx(0.95)
    assert body["execution_allowed"] is True
    assert body["cache"] == {"hit": False, "age_seconds": 0, "ttl_seconds": 300}
    assert body["rate_limit"]["tier"] == "FREE"
    assert body["rate_limit"]["used"] == 1
    assert body["gate_id"].startswith("gate_")
    assert body["request_id"].startswith("req_")
    assert provider.calls == []


def test_gate_eoa_blocks(service, run):
    """Scenario B."""
    body = run(service.gate(EOA, "swap")).body
    assert body["decision"] == "BLOCK"
    assert body["risk_level"] == "CRITICAL"
    assert body["reason"] == "Not a contract (EOA)"
    assert body["execution_allowed"] is False


def test_gate_mint_blocks(service, run):
    """Scenario C."""
    body = run(service.gate(MINT_TOKEN, "stake")).body
    assert body["decision"] == "BLOCK"
    assert body["checks"]["mintable"] is True
    assert body["checks"]["pausable"] is False
    assert "Critical signal: mintable" in body["violations"]
    assert body["rpc_calls"] == 1


def test_gate_pause_only_passes(service, run):
    """Scenario D."""
    body = run(service.gate(PAUSE_TOKEN, "dca")).body
    assert body["decision"] == "PASS"
    assert body["checks"]["pausable"] is True
    assert body["risk_level"] == "LOW"


def test_gate_blacklist_warns_via_category_table(service, run):
    """MEDIUM score would pass the policy, but blacklist maps to WARN."""
    body = run(service.gate(BLACKLIST_TOKEN, "lend")).body
    assert body["decision"] == "WARN"
    assert body["risk_level"] == "MEDIUM"
    assert body["requires_confirmation"] is True
    assert body["warnings"]


# --- cache ---


def test_second_gate_is_cache_hit(service, provider, clock, run):
    first = run(service.gate(MINT_TOKEN, "swap")).body
    clock.advance(5)
    second = run(service.gate(MINT_TOKEN.upper().replace("0X", "0x"), "swap")).body
    assert len(provider.calls) == 1
    assert second["decision"] == first["decision"]
    assert second["gate_id"] == first["gate_id"]
    assert second["rpc_calls"] == 0
    assert second["cache"] == {"hit": True, "age_seconds": 5, "ttl_seconds": 300}
    assert second["request_id"] != first["request_id"]


def test_gate_cache_expires_after_ttl(service, provider, clock, run):
    run(service.gate(MINT_TOKEN, "swap"))
    clock.advance(300)
    body = run(service.gate(MINT_TOKEN, "swap")).body
    assert body["cache"]["hit"] is False
    assert len(provider.calls) == 2


def test_cache_write_failure_does_not_change_verdict(service, memory_store, provider, run):
    memory_store.set = MagicMock(side_effect=OSError("disk full"))
    body = run(service.gate(MINT_TOKEN, "swap")).body
    assert body["decision"] == "BLOCK"
    again = run(service.gate(MINT_TOKEN, "swap")).body
    assert again["cache"]["hit"] is False
    assert len(provider.calls) == 2


def test_ledger_write_failure_is_logged_only(service, run):
    service.ledger.append = MagicMock(side_effect=RuntimeError("ledger down"))
    out = run(service.gate(WETH, "swap"))
    assert out.status_code == 200
    assert service.writer.stats()["failed"] == 1


# --- errors ---


@pytest.mark.parametrize(
    "token,action",
    [("0x123", "swap"), ("", "swap"), (WETH, "bridge"), (WETH, "")],
)
def test_invalid_input_is_400_with_block_and_no_rpc(service, provider, run, token, action):
    out = run(service.gate(token, action))
    assert out.status_code == 400
    assert out.body["decision"] == "BLOCK"
    assert out.body["error_code"] == "INVALID_INPUT"
    assert provider.calls == []
    records = service.ledger.records_for_day()
    assert len(records) == 1
    assert records[0].verdict == "BLOCK"
    assert records[0].error_code == "INVALID_INPUT"


def test_quota_exhausted_is_429_with_upgrade(service, run):
    async def go():
        for _ in range(100):
            out = await service.gate(WETH, "swap")
            assert out.status_code == 200
        return await service.gate(WETH, "swap")

    out = run(go())
    assert out.status_code == 429
    assert out.body["decision"] == "BLOCK"
    assert out.body["error_code"] == "QUOTA_EXCEEDED"
    assert out.body["reset_time"]
    assert out.body["upgrade"]["tier"] == "BASIC"
    assert out.body["rate_limit"]["used"] == 100


def test_invalid_wallet_is_400(service, run):
    from backend_riskgate.gateway.service import CallerContext

    assert run(service.gate(WETH, "swap", ctx=CallerContext(wallet="bob"))).status_code == 400


def test_api_key_and_stake_resolve_tier(service, stake_resolver, run):
    from backend_riskgate.gateway.service import CallerContext

    pro = run(service.gate(WETH, "swap", ctx=CallerContext(api_key="pro-key"))).body
    assert pro["rate_limit"]["tier"] == "PRO"
    assert pro["rate_limit"]["limit"] == 2000
    staked = run(service.gate(WETH, "swap", ctx=CallerContext(wallet=STAKER_WALLET))).body
    assert staked["rate_limit"]["tier"] == "PRO"
    unknown = run(service.gate(WETH, "swap", ctx=CallerContext(wallet=CLEAN_TOKEN))).body
    assert unknown["rate_limit"]["tier"] == "FREE"

    stake_resolver.update_stake(CLEAN_TOKEN, 150)
    basic = run(service.gate(WETH, "swap", ctx=CallerContext(wallet=CLEAN_TOKEN))).body
    assert basic["rate_limit"]["tier"] == "BASIC"


def test_stake_lookup_failure_stays_free(service, stake_resolver, run):
    from backend_riskgate.gateway.service import CallerContext

    stake_resolver.get_stake_balance = AsyncMock(side_effect=RuntimeError("indexer down"))
    out = run(service.gate(WETH, "swap", ctx=CallerContext(wallet=STAKER_WALLET)))
    assert out.status_code == 200
    assert out.body["rate_limit"]["tier"] == "FREE"


def test_unexpected_failure_is_500_with_block(service, run):
    service.gate_analyzer.analyze = AsyncMock(side_effect=RuntimeError("boom"))
    out = run(service.gate(MINT_TOKEN, "swap"))
    assert out.status_code == 500
    assert out.body["decision"] == "BLOCK"
    assert out.body["execution_allowed"] is False
    assert "boom" not in str(out.body)
    assert service.ledger.records_for_day()[0].error_code == "INTERNAL_ERROR"


def test_provider_failure_blocks_with_200():
    """A provider error is a verdict (BLOCK), not an HTTP error."""
    import asyncio

    from backend_riskgate.config.settings import Settings
    from backend_riskgate.core.exceptions import ProviderError
    from backend_riskgate.database.store import MemoryStore
    from backend_riskgate.gateway.service import GateService
    from tests.conftest import FakeProvider

    svc = GateService(Settings(rpc_url="http://x"), MemoryStore(), FakeProvider(error=ProviderError("down")))

    async def go():
        out = await svc.gate(MINT_TOKEN, "swap")
        await svc.drain()
        return out

    out = asyncio.run(go())
    assert out.status_code == 200
    assert out.body["decision"] == "BLOCK"
    assert out.body["risk_score"] == 100


# --- scan / portfolio ---


def test_scan_returns_schema_and_evidence_bundle(service, run):
    out = run(service.scan(MINT_TOKEN))
    assert out.status_code == 200
    body = out.body
    assert body["decision"] == "BLOCK"
    assert set(body["checks"]) == {"ownable", "mintable", "blacklist", "upgradeable", "tax", "pausable", "suspicious"}
    assert body["checks"]["mintable"] is True
    assert body["risk_schema"]["schema_version"] == "1.0.0"
    assert body["evidence_bundle"]["bundle_id"] == body["risk_schema"]["evidence"][0]["id"]
    assert body["evidence_bundle"]["matches"] == {"mintable": ["40c10f19"]}
    assert body["cache"]["ttl_seconds"] == 3600
    assert body["gate"]["audit_trail"]["decision_version"] == "v1.0.0"


def test_scan_and_gate_cache_separately(service, provider, run):
    run(service.gate(CLEAN_TOKEN, "swap"))
    body = run(service.scan(CLEAN_TOKEN)).body
    assert body["cache"]["hit"] is False
    assert body["checks"]["ownable"] is True
    assert body["risk_score"] == 2
    assert len(provider.calls) == 2


def test_portfolio_merges_and_gates(service, provider, run):
    out = run(service.portfolio([WETH, PAUSE_TOKEN], weights=[1, 1]))
    assert out.status_code == 200
    body = out.body
    # whitelist 10, pause-only scan 10 / 280 -> 4
    assert body["risk_score"] == 7
    assert body["decision"] == "PASS"
    assert body["confidence"] == pytest.approx(0.9)
    assert body["risk_schema"]["metadata"]["source_count"] == 2
    assert [t["token"] for t in body["tokens"]] == [WETH.lower(), PAUSE_TOKEN]

    again = run(service.portfolio([WETH, PAUSE_TOKEN])).body
    assert all(t["cache_hit"] for t in again["tokens"])
    assert again["rpc_calls"] == 0
    assert len(provider.calls) == 1


def test_portfolio_with_mintable_token_blocks(service, run):
    body = run(service.portfolio([WETH, MINT_TOKEN])).body
    assert body["decision"] == "BLOCK"
    assert body["execution_allowed"] is False


@pytest.mark.parametrize(
    "tokens,weights",
    [([], None), ([WETH] * 21, None), ([WETH, "0xnope"], None), ([WETH, PAUSE_TOKEN], [1])],
)
def test_portfolio_rejects_bad_input(service, run, tokens, weights):
    out = run(service.portfolio(tokens, weights))
    assert out.status_code == 400
    assert out.body["decision"] == "BLOCK"


# --- report / stats ---


def test_report_counts_every_request(service, run):
    run(service.gate(WETH, "swap"))
    run(service.gate(MINT_TOKEN, "swap"))
    run(service.gate(MINT_TOKEN, "swap"))
    run(service.gate("0xbad", "swap"))
    run(service.scan(PAUSE_TOKEN))

    out = run(service.report())
    assert out.status_code == 200
    report = out.body
    assert report["total_requests"] == 5
    assert report["endpoints"] == {"gate": 4, "scan": 1}
    assert report["verdicts"] == {"PASS": 2, "WARN": 0, "BLOCK": 3, "UNKNOWN": 0}
    assert report["cache_hit_rate"] == 0.2
    assert report["top_tokens"][0] == {"token": MINT_TOKEN, "count": 2}


def test_report_invalid_date_is_400(service, run):
    out = run(service.report("yesterday"))
    assert out.status_code == 400
    assert out.body["decision"] == "BLOCK"


def test_stats_shape(service, run):
    run(service.gate(MINT_TOKEN, "swap"))
    stats = service.stats()
    assert stats["policy"]["name"] == "default"
    assert stats["gate_analyzer"]["total_requests"] == 1
    assert stats["scan_analyzer"]["preset"] == "full-1.0.0"
    assert stats["background_writes"]["pending"] == 0
    assert stats["cache"]["sets"] == 1


# --- concurrency / background writes ---


def test_slow_store_reads_do_not_serialize_requests(settings, provider, clock):
    """Cache reads run off the event loop: five gates over a 0.2 s store overlap."""
    import asyncio
    import time

    from backend_riskgate.database.store import MemoryStore
    from backend_riskgate.gateway.service import GateService

    class SlowReadStore(MemoryStore):
        def get(self, key):
            time.sleep(0.2)
            return super().get(key)

    svc = GateService(settings, SlowReadStore(clock=clock), provider, clock=clock)
    tokens = [MINT_TOKEN, PAUSE_TOKEN, BLACKLIST_TOKEN, CLEAN_TOKEN, WETH]

    async def go():
        start = time.perf_counter()
        outs = await asyncio.gather(*(svc.gate(t, "swap") for t in tokens))
        elapsed = time.perf_counter() - start
        await svc.drain()
        return outs, elapsed

    outs, elapsed = asyncio.run(go())
    assert [o.status_code for o in outs] == [200] * 5
    assert elapsed < 0.6


def test_writes_complete_after_caller_disconnects(service, memory_store, clock):
    """Cancelling the request after the decision still lands the cache entry and ledger record."""
    import asyncio
    import time

    real_set, real_append = memory_store.set, memory_store.append

    def slow_set(*args, **kwargs):
        time.sleep(0.05)
        return real_set(*args, **kwargs)

    def slow_append(*args, **kwargs):
        time.sleep(0.05)
        return real_append(*args, **kwargs)

    memory_store.set = slow_set
    memory_store.append = slow_append

    async def go():
        decided = asyncio.Event()

        async def request():
            await service.gate(MINT_TOKEN, "swap")
            decided.set()
            await asyncio.sleep(60)

        task = asyncio.create_task(request())
        await decided.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        pending = service.writer.stats()["pending"]
        await service.drain()
        return pending

    assert asyncio.run(go()) >= 1
    assert service.writer.stats()["completed"] == 2
    assert service.cache.get("ethereum", MINT_TOKEN, "gate")["decision"] == "BLOCK"
    records = service.ledger.records_for_day()
    assert [r.verdict for r in records] == ["BLOCK"]


def test_ledger_timestamps_follow_service_clock(service, clock, run):
    clock.now = 1_773_446_400.0  # 2026-03-14T00:00:00Z
    run(service.gate(WETH, "swap"))
    records = service.ledger.records_for_day("2026-03-14")
    assert len(records) == 1
    assert records[0].timestamp.startswith("2026-03-14T00:00:00")
    assert run(service.report()).body["date"] == "2026-03-14"
