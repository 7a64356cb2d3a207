"""
Stake resolver: on-chain stake balance for a wallet, used for tier resolution.

The gate never trusts a balance supplied by the caller. Balances come from a
StakeResolver looked up by wallet address. The default resolver knows no
balances, so callers without a paid API key stay on FREE.
"""

from __future__ import annotations

import threading
from typing import Mapping, Protocol

from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)


class StakeResolver(Protocol):
    async def get_stake_balance(self, wallet: str) -> float | None:
        """Staked token balance for a lowercased wallet, or None when unknown."""
        ...


class NoStakeResolver:
    """Resolver with no stake source configured."""

    async def get_stake_balance(self, wallet: str) -> float | None:
        return None


class StaticStakeResolver:
    """
    In-process stake table, fed by an indexer or staking-contract event handler
    through update_stake(). Thread-safe.
    """

    def __init__(self, balances: Mapping[str, float] | None = None) -> None:
        self._lock = threading.Lock()
        self._balances = {k.lower(): float(v) for k, v in (balances or {}).items()}

    def update_stake(self, wallet: str, amount: float) -> None:
        with self._lock:
            self._balances[wallet.lower()] = float(amount)
        logger.info("stake_updated", wallet=wallet[:16] + "...", amount=amount)

    async def get_stake_balance(self, wallet: str) -> float | None:
        with self._lock:
            return self._balances.get(wallet.lower())
