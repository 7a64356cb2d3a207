"""
Bytecode provider: fetch deployed runtime code for an EVM address.

The analyzer depends only on the BytecodeProvider protocol. The default
implementation issues a single eth_getCode JSON-RPC call over httpx; no retry
is attempted here because the caller spends at most one call per analysis.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from backend_riskgate.config.env import mask_rpc_url
from backend_riskgate.core.exceptions import ProviderError
from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)


class BytecodeProvider(Protocol):
    async def get_code(self, address: str) -> str:
        """Return hex runtime code, or "0x" when no contract is deployed."""
        ...


class JsonRpcBytecodeProvider:
    """eth_getCode over JSON-RPC. One POST per get_code call."""

    def __init__(
        self,
        rpc_url: str,
        timeout_sec: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self._request_id = 0

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            r = await self._client.post(self._rpc_url, json=body)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "bytecode_provider_request_failed",
                rpc=mask_rpc_url(self._rpc_url),
                method=method,
                error=str(e),
            )
            raise ProviderError(f"{method} request failed: {e}") from e
        if "error" in data:
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise ProviderError(f"{method} returned error: {message}", details={"rpc_error": err})
        return data.get("result")

    async def get_code(self, address: str) -> str:
        result = await self._rpc("eth_getCode", [address, "latest"])
        if result is None:
            return "0x"
        if not isinstance(result, str):
            raise ProviderError("eth_getCode returned non-string result")
        return result

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
