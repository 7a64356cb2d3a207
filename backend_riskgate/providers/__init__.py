"""External data providers consumed by the gate (bytecode fetch, stake balances)."""

from backend_riskgate.providers.bytecode_provider import (
    BytecodeProvider,
    JsonRpcBytecodeProvider,
)
from backend_riskgate.providers.stake_resolver import (
    NoStakeResolver,
    StakeResolver,
    StaticStakeResolver,
)

__all__ = [
    "BytecodeProvider",
    "JsonRpcBytecodeProvider",
    "NoStakeResolver",
    "StakeResolver",
    "StaticStakeResolver",
]
