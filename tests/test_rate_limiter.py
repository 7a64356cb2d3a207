"""
Pytest tests for the tiered rate limiter (window reset, atomic boundary, tier resolution, upgrades).
"""

from __future__ import annotations

import threading

import pytest


def _limiter(store, clock):
    from backend_riskgate.gateway.rate_limiter import RateLimiter

    return RateLimiter(store, clock=clock)


def test_101st_call_denied_then_new_window_allowed(memory_store, clock):
    """FREE limit 100: call 101 is denied; after reset_time passes, call 102 is allowed."""
    from backend_riskgate.gateway.rate_limiter import Tier

    limiter = _limiter(memory_store, clock)
    for i in range(100):
        status = limiter.check("0xwallet", Tier.FREE)
        assert status.allowed, f"call {i + 1} should be allowed"
    assert status.remaining == 0

    denied = limiter.check("0xwallet", Tier.FREE)
    assert denied.allowed is False
    assert denied.used == 100
    assert denied.limit == 100
    assert denied.upgrade["tier"] == "BASIC"
    assert denied.upgrade["message"] == "Upgrade to Basic for 500 calls/day (19 USD or 100 $BLNK)"

    clock.now = denied.reset_time + 1
    fresh = limiter.check("0xwallet", Tier.FREE)
    assert fresh.allowed is True
    assert fresh.used == 1
    assert fresh.reset_time > denied.reset_time


def test_window_not_reset_exactly_at_reset_time(memory_store, clock):
    from backend_riskgate.gateway.rate_limiter import Tier

    limiter = _limiter(memory_store, clock)
    first = limiter.check("id", Tier.FREE)
    clock.now = first.reset_time
    assert limiter.check("id", Tier.FREE).used == 2


def test_quota_keys_are_per_tier_and_identity(memory_store, clock):
    from backend_riskgate.gateway.rate_limiter import Tier

    limiter = _limiter(memory_store, clock)
    limiter.check("a", Tier.FREE)
    limiter.check("a", Tier.FREE)
    assert limiter.check("b", Tier.FREE).used == 1
    assert limiter.check("a", Tier.PRO).used == 1
    assert limiter.check("a", Tier.PRO).limit == 2000


def test_concurrent_checks_never_exceed_limit(memory_store, clock):
    """Simultaneous requests at the boundary are not both admitted."""
    from backend_riskgate.gateway.rate_limiter import Tier

    limiter = _limiter(memory_store, clock)
    allowed = []
    lock = threading.Lock()

    def worker():
        for _ in range(10):
            ok = limiter.check("shared", Tier.FREE).allowed
            with lock:
                allowed.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(allowed) == 200
    assert sum(allowed) == 100


def test_upgrade_suggestion_chain():
    from backend_riskgate.gateway.rate_limiter import Tier, upgrade_suggestion

    assert upgrade_suggestion(Tier.BASIC)["tier"] == "PRO"
    assert upgrade_suggestion(Tier.PRO)["daily_calls"] == 10000
    assert upgrade_suggestion(Tier.ENTERPRISE) is None


@pytest.mark.parametrize(
    "api_key,stake,expected",
    [
        (None, None, "FREE"),
        (None, 99, "FREE"),
        (None, 100, "BASIC"),
        (None, 500, "PRO"),
        (None, 10_000, "ENTERPRISE"),
        ("pro-key", None, "PRO"),
        ("pro-key", 5000, "PRO"),
        ("unknown-key", 100, "BASIC"),
        ("bad-tier-key", None, "FREE"),
        ("free-key", 600, "PRO"),
        ("free-key", None, "FREE"),
    ],
)
def test_resolve_tier_precedence(api_key, stake, expected):
    """Paid-tier API key > stake threshold > FREE."""
    from backend_riskgate.gateway.rate_limiter import resolve_tier

    keys = {"pro-key": "PRO", "bad-tier-key": "PLATINUM", "free-key": "free"}
    assert resolve_tier(api_key, stake, keys).value == expected


def test_quota_status_to_dict(memory_store, clock):
    from backend_riskgate.gateway.rate_limiter import Tier

    d = _limiter(memory_store, clock).check("x", Tier.BASIC).to_dict()
    assert d["tier"] == "BASIC"
    assert d["limit"] == 500
    assert d["remaining"] == 499
    assert d["reset_time"].endswith("+00:00")
    assert d["upgrade"] is None
