"""
Pytest fixtures for RiskGate tests. In-memory store, fake clock and a fake
bytecode provider so nothing touches the network.
"""

from __future__ import annotations

import asyncio

import pytest

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
MINT_TOKEN = "0x" + "11" * 20
PAUSE_TOKEN = "0x" + "22" * 20
BLACKLIST_TOKEN = "0x" + "33" * 20
CLEAN_TOKEN = "0x" + "44" * 20
EOA = "0x" + "55" * 20
STAKER_WALLET = "0x" + "66" * 20
STAKER_BALANCE = 600

SEL_MINT = "40c10f19"
SEL_PAUSE = "8456cb59"
SEL_BLACKLIST = "e47d606b"
SEL_OWNER = "8da5cb5b"
SEL_TRANSFER = "a9059cbb"


def contract_code(*selectors: str) -> str:
    """Minimal runtime bytecode with a PUSH4 per selector."""
    return "0x6080604052" + "".join(f"63{s}" for s in selectors) + "5b00"


class FakeClock:
    """Manually advanced unix-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """BytecodeProvider double: fixed code per address, records every call."""

    def __init__(
        self,
        codes: dict[str, str] | None = None,
        default: str = "0x",
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.codes = {k.lower(): v for k, v in (codes or {}).items()}
        self.default = default
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def get_code(self, address: str) -> str:
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.codes.get(address.lower(), self.default)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider(
        codes={
            MINT_TOKEN: contract_code(SEL_TRANSFER, SEL_MINT),
            PAUSE_TOKEN: contract_code(SEL_TRANSFER, SEL_PAUSE),
            BLACKLIST_TOKEN: contract_code(SEL_TRANSFER, SEL_BLACKLIST),
            CLEAN_TOKEN: contract_code(SEL_TRANSFER, SEL_OWNER),
        }
    )


@pytest.fixture
def memory_store(clock):
    from backend_riskgate.database.store import MemoryStore

    return MemoryStore(clock=clock)


@pytest.fixture
def settings():
    from backend_riskgate.config.settings import Settings

    return Settings(rpc_url="http://rpc.test", api_keys={"pro-key": "PRO", "ent-key": "ENTERPRISE"})


@pytest.fixture
def stake_resolver():
    from backend_riskgate.providers.stake_resolver import StaticStakeResolver

    return StaticStakeResolver({STAKER_WALLET: STAKER_BALANCE})


@pytest.fixture
def service(settings, memory_store, provider, clock, stake_resolver):
    from backend_riskgate.gateway.service import GateService

    return GateService(settings, memory_store, provider, clock=clock, stake_resolver=stake_resolver)


@pytest.fixture
def run(service):
    """Run a coroutine to completion, then flush the service's background writes."""

    def _run(coro):
        async def _go():
            try:
                return await coro
            finally:
                await service.drain()

        return asyncio.run(_go())

    return _run


@pytest.fixture
def client(service):
    """FastAPI TestClient with the test GateService injected before startup."""
    from fastapi.testclient import TestClient

    from backend_riskgate.api_server.server import app

    app.state.service = service
    with TestClient(app) as c:
        yield c
    app.state.service = None
