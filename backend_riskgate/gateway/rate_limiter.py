"""
Tiered daily rate limiter.

Key = (tier, identity). Windows are 24h, created lazily on first use and reset
atomically at rollover through StateStore.increment_within_limit. Tier
resolution precedence: valid paid API key > stake balance threshold > FREE.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from backend_riskgate.database.store import Clock, StateStore
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)

WINDOW_SEC = 24 * 60 * 60
STAKE_TOKEN_SYMBOL = "$BLNK"


class Tier(str, Enum):
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


@dataclass(frozen=True)
class TierConfig:
    name: str
    daily_calls: int
    price_usd: int
    stake_requirement: int | None = None


TIERS: Mapping[Tier, TierConfig] = MappingProxyType({
    Tier.FREE: TierConfig(name="Free", daily_calls=100, price_usd=0),
    Tier.BASIC: TierConfig(name="Basic", daily_calls=500, price_usd=19, stake_requirement=100),
    Tier.PRO: TierConfig(name="Pro", daily_calls=2000, price_usd=99, stake_requirement=500),
    Tier.ENTERPRISE: TierConfig(name="Enterprise", daily_calls=10000, price_usd=499, stake_requirement=2500),
})

TIER_ORDER: tuple[Tier, ...] = (Tier.FREE, Tier.BASIC, Tier.PRO, Tier.ENTERPRISE)


def upgrade_suggestion(tier: Tier) -> dict[str, Any] | None:
    """Next tier above the current one with its limit and price; None at the top tier."""
    idx = TIER_ORDER.index(tier)
    if idx >= len(TIER_ORDER) - 1:
        return None
    nxt = TIER_ORDER[idx + 1]
    cfg = TIERS[nxt]
    return {
        "tier": nxt.value,
        "name": cfg.name,
        "daily_calls": cfg.daily_calls,
        "price_usd": cfg.price_usd,
        "stake_requirement": cfg.stake_requirement,
        "message": (
            f"Upgrade to {cfg.name} for {cfg.daily_calls} calls/day "
            f"({cfg.price_usd} USD or {cfg.stake_requirement} {STAKE_TOKEN_SYMBOL})"
        ),
    }


def tier_for_stake(stake_balance: float | None) -> Tier:
    """Highest tier whose stake requirement the balance meets."""
    if stake_balance is None:
        return Tier.FREE
    for tier in reversed(TIER_ORDER):
        req = TIERS[tier].stake_requirement
        if req is not None and stake_balance >= req:
            return tier
    return Tier.FREE


def resolve_tier(
    api_key: str | None,
    stake_balance: float | None = None,
    api_keys: Mapping[str, str] | None = None,
) -> Tier:
    """
    Resolve the caller's tier: a key mapped to a paid tier wins, then the stake
    threshold, then FREE. Keys mapped to FREE fall through to the stake check;
    unknown keys and unknown tier labels are logged and fall through too.
    """
    key = (api_key or "").strip()
    if key and api_keys:
        label = api_keys.get(key)
        if label is not None:
            try:
                tier = Tier(label.upper())
            except ValueError:
                logger.warning("rate_limiter_unknown_tier_label", tier=label)
            else:
                if tier != Tier.FREE:
                    return tier
        else:
            logger.debug("rate_limiter_unknown_api_key", key_prefix=key[:4] + "...")
    return tier_for_stake(stake_balance)


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    tier: Tier
    used: int
    limit: int
    remaining: int
    reset_time: float
    upgrade: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "tier": self.tier.value,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_time": datetime.fromtimestamp(self.reset_time, tz=timezone.utc).isoformat(),
            "upgrade": self.upgrade,
        }


class RateLimiter:
    """Per-(tier, identity) daily quota backed by a shared StateStore."""

    def __init__(self, store: StateStore, window_sec: float = WINDOW_SEC, clock: Clock = time.time) -> None:
        self._store = store
        self._window_sec = window_sec
        self._clock = clock

    @staticmethod
    def quota_key(tier: Tier, identity: str) -> str:
        return f"quota:{tier.value}:{identity}"

    def check(self, identity: str, tier: Tier = Tier.FREE) -> QuotaStatus:
        """Atomically count one call. allowed=False once the tier limit is reached."""
        limit = TIERS[tier].daily_calls
        window = self._store.increment_within_limit(self.quota_key(tier, identity), limit, self._window_sec)
        status = QuotaStatus(
            allowed=window.allowed,
            tier=tier,
            used=window.used,
            limit=limit,
            remaining=max(0, limit - window.used),
            reset_time=window.reset_time,
            upgrade=None if window.allowed else upgrade_suggestion(tier),
        )
        if not window.allowed:
            logger.info(
                "rate_limit_exceeded",
                tier=tier.value,
                identity=identity[:16] + "...",
                used=window.used,
                limit=limit,
            )
        return status
