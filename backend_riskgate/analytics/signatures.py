"""
Opcode-signature catalogue: risk categories, analyzer presets, decision table.

Categories are a tagged enum. Each preset (lite, full) is a named, independently
versioned set of 4-byte function selectors, per-category weights, a scoring
mode and a decision rule (category table plus optional score thresholds).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Decision(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    BLOCK = "BLOCK"


class RiskCategory(str, Enum):
    OWNABLE = "ownable"
    MINTABLE = "mintable"
    BLACKLIST = "blacklist"
    UPGRADEABLE = "upgradeable"
    TAX = "tax"
    PAUSABLE = "pausable"
    SUSPICIOUS = "suspicious"


# Gate-path category -> decision table. Categories not listed pass.
CATEGORY_DECISIONS: Mapping[RiskCategory, Decision] = MappingProxyType({
    RiskCategory.MINTABLE: Decision.BLOCK,
    RiskCategory.SUSPICIOUS: Decision.BLOCK,
    RiskCategory.BLACKLIST: Decision.WARN,
    RiskCategory.UPGRADEABLE: Decision.WARN,
})

# Deep-scan table. Mintable only blocks when no ownership functions are present.
FULL_CATEGORY_DECISIONS: Mapping[RiskCategory, Decision] = MappingProxyType({
    RiskCategory.MINTABLE: Decision.BLOCK,
    RiskCategory.SUSPICIOUS: Decision.BLOCK,
    RiskCategory.BLACKLIST: Decision.WARN,
    RiskCategory.UPGRADEABLE: Decision.WARN,
})

# Signal severity attached to each detected category in the risk schema.
CATEGORY_SEVERITY: Mapping[RiskCategory, str] = MappingProxyType({
    RiskCategory.OWNABLE: "low",
    RiskCategory.MINTABLE: "critical",
    RiskCategory.BLACKLIST: "high",
    RiskCategory.UPGRADEABLE: "medium",
    RiskCategory.TAX: "medium",
    RiskCategory.PAUSABLE: "medium",
    RiskCategory.SUSPICIOUS: "critical",
})

CATEGORY_DESCRIPTIONS: Mapping[RiskCategory, str] = MappingProxyType({
    RiskCategory.OWNABLE: "Ownership control functions present",
    RiskCategory.MINTABLE: "Owner can mint new supply",
    RiskCategory.BLACKLIST: "Addresses can be blacklisted from transfers",
    RiskCategory.UPGRADEABLE: "Proxy implementation can be upgraded",
    RiskCategory.TAX: "Transfer tax / swap-and-liquify hooks present",
    RiskCategory.PAUSABLE: "Transfers can be paused",
    RiskCategory.SUSPICIOUS: "Destructive or non-standard burn functions present",
})

_DECISION_RANK = {Decision.PASS: 0, Decision.WARN: 1, Decision.BLOCK: 2}

# Confidence reported with each analyzer verdict
CONFIDENCE_BY_DECISION: Mapping[Decision, float] = MappingProxyType({
    Decision.BLOCK: 0.85,
    Decision.WARN: 0.75,
    Decision.PASS: 0.9,
})
WHITELIST_CONFIDENCE = 0.95
FAIL_SAFE_CONFIDENCE = 1.0
BASE_SCORE = 10
FAIL_SAFE_SCORE = 100
# Normalized scoring divides by this per category
MAX_CATEGORY_WEIGHT = 40
OWNED_MINT_SEVERITY = "medium"

SCORE_ADDITIVE = "additive"
SCORE_NORMALIZED = "normalized"


def stricter(a: Decision, b: Decision) -> Decision:
    """Return the more restrictive of two decisions."""
    return a if _DECISION_RANK[a] >= _DECISION_RANK[b] else b


def decide_categories(
    detected: set[RiskCategory] | frozenset[RiskCategory],
    table: Mapping[RiskCategory, Decision] = CATEGORY_DECISIONS,
) -> Decision:
    """Apply a category table: the strictest entry among detected categories wins."""
    decision = Decision.PASS
    for category in detected:
        decision = stricter(decision, table.get(category, Decision.PASS))
    return decision


@dataclass(frozen=True)
class AnalyzerPreset:
    """
    Named, versioned analyzer profile.

    score_mode "additive": base_score + weights, clamped to 100.
    score_mode "normalized": weights / (MAX_CATEGORY_WEIGHT * category count) * 100,
    rounded half up. base_score then only applies to whitelisted contracts.

    The decision is the category table verdict (CATEGORY_DECISIONS unless set), raised to BLOCK at block_score
    and to at least WARN at warn_score. With owned_mint_allowed, mintable does
    not count as critical when ownable is also detected.
    """

    name: str
    version: str
    signatures: Mapping[RiskCategory, tuple[str, ...]]
    weights: Mapping[RiskCategory, int]
    base_score: int = BASE_SCORE
    score_mode: str = SCORE_ADDITIVE
    decisions: Mapping[RiskCategory, Decision] | None = None
    block_score: int | None = None
    warn_score: int | None = None
    owned_mint_allowed: bool = False
    description: str = ""

    @property
    def preset_id(self) -> str:
        return f"{self.name}-{self.version}"

    def score(self, detected: set[RiskCategory] | frozenset[RiskCategory]) -> int:
        total = sum(self.weights.get(c, 0) for c in detected)
        if self.score_mode == SCORE_NORMALIZED:
            max_possible = MAX_CATEGORY_WEIGHT * len(self.signatures)
            return min(100, int(math.floor(total / max_possible * 100 + 0.5)))
        return min(100, self.base_score + total)

    def _owned_mint(self, detected: set[RiskCategory] | frozenset[RiskCategory]) -> bool:
        return (
            self.owned_mint_allowed
            and RiskCategory.MINTABLE in detected
            and RiskCategory.OWNABLE in detected
        )

    def decide(self, detected: set[RiskCategory] | frozenset[RiskCategory], score: int) -> Decision:
        effective = set(detected)
        if self._owned_mint(detected):
            effective.discard(RiskCategory.MINTABLE)
        decision = decide_categories(effective, self.decisions or CATEGORY_DECISIONS)
        if self.block_score is not None and score >= self.block_score:
            return Decision.BLOCK
        if self.warn_score is not None and score >= self.warn_score:
            return stricter(decision, Decision.WARN)
        return decision

    def severity(self, category: RiskCategory, detected: set[RiskCategory] | frozenset[RiskCategory]) -> str:
        """Signal severity for one detected category under this preset."""
        if category == RiskCategory.MINTABLE and self._owned_mint(detected):
            return OWNED_MINT_SEVERITY
        return CATEGORY_SEVERITY.get(category, "medium")


# Gate path: five categories, two selectors each.
LITE_PRESET = AnalyzerPreset(
    name="lite",
    version="1.0.0",
    description="Gate profile: critical categories only, one RPC call",
    signatures=MappingProxyType({
        RiskCategory.MINTABLE: ("40c10f19", "a0712d68"),  # mint(address,uint256), mint(uint256)
        RiskCategory.BLACKLIST: ("e47d606b", "f9f92be4"),  # blacklist(address), isBlacklisted(address)
        RiskCategory.UPGRADEABLE: ("3659cfe6", "5c60da1b"),  # upgradeTo(address), implementation()
        RiskCategory.PAUSABLE: ("8456cb59", "5c975abb"),  # pause(), paused()
        RiskCategory.SUSPICIOUS: ("0a3b0a4f", "9dc29fac"),  # destroy(address), burnFrom(address,uint256)
    }),
    weights=MappingProxyType({
        RiskCategory.MINTABLE: 40,
        RiskCategory.SUSPICIOUS: 35,
        RiskCategory.BLACKLIST: 25,
        RiskCategory.UPGRADEABLE: 15,
        RiskCategory.PAUSABLE: 10,
    }),
)

# Deep-scan path: all seven categories, wider selector sets, normalized score
# and its own thresholds (BLOCK at 80, WARN at 40).
FULL_PRESET = AnalyzerPreset(
    name="full",
    version="1.0.0",
    description="Scan profile: all categories, extended selector sets",
    score_mode=SCORE_NORMALIZED,
    decisions=FULL_CATEGORY_DECISIONS,
    block_score=80,
    warn_score=40,
    owned_mint_allowed=True,
    signatures=MappingProxyType({
        RiskCategory.OWNABLE: (
            "8da5cb5b",  # owner()
            "f2fde38b",  # transferOwnership(address)
            "79ba5097",  # acceptOwnership()
        ),
        RiskCategory.MINTABLE: (
            "40c10f19",  # mint(address,uint256)
            "a0712d68",  # mint(uint256)
            "449a52f8",  # mint(address,uint256,bytes)
        ),
        RiskCategory.BLACKLIST: (
            "e47d606b",  # blacklist(address)
            "44337ea1",  # blacklist(address[])
            "f9f92be4",  # isBlacklisted(address)
            "b2c20a85",  # blacklisted(address)
        ),
        RiskCategory.UPGRADEABLE: (
            "3659cfe6",  # upgradeTo(address)
            "4f1ef286",  # upgradeToAndCall(address,bytes)
            "5c60da1b",  # implementation()
            "f851a440",  # admin()
        ),
        RiskCategory.TAX: (
            "c8c8ebe4",  # swapAndLiquify()
            "8ee88c53",  # swapTokensForEth(uint256)
        ),
        RiskCategory.PAUSABLE: (
            "8456cb59",  # pause()
            "3f4ba83a",  # unpause()
            "5c975abb",  # paused()
        ),
        RiskCategory.SUSPICIOUS: (
            "0a3b0a4f",  # destroy(address)
            "9dc29fac",  # burnFrom(address,uint256)
        ),
    }),
    weights=MappingProxyType({
        RiskCategory.OWNABLE: 5,
        RiskCategory.MINTABLE: 30,
        RiskCategory.BLACKLIST: 20,
        RiskCategory.UPGRADEABLE: 15,
        RiskCategory.TAX: 10,
        RiskCategory.PAUSABLE: 10,
        RiskCategory.SUSPICIOUS: 40,
    }),
)

PRESETS: Mapping[str, AnalyzerPreset] = MappingProxyType({
    LITE_PRESET.name: LITE_PRESET,
    FULL_PRESET.name: FULL_PRESET,
})

# Known-safe contracts (lowercase). Whitelisted addresses skip the RPC call.
SAFE_CONTRACTS: frozenset[str] = frozenset({
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",  # WETH
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",  # USDC
    "0xdac17f958d2ee523a2206206994597c13d831ec7",  # USDT
    "0x6b175474e89094c44da98b954eedeac495271d0f",  # DAI
})


def get_preset(name: str) -> AnalyzerPreset:
    """Return preset by name; unknown names fall back to lite."""
    return PRESETS.get((name or "").strip().lower(), LITE_PRESET)
