"""
Environment variable loading for RiskGate.

- RISKGATE_RPC_URL: Ethereum JSON-RPC endpoint (falls back to ALCHEMY_ETHEREUM_URL, then public RPC)
- RISKGATE_API_KEYS: comma-separated key:TIER pairs for paid tiers
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: config is backend_riskgate/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

PUBLIC_ETHEREUM_RPC_URL = "https://eth.llamarpc.com"


def load_riskgate_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip() or default


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_rpc_url() -> str:
    """
    Resolve Ethereum RPC URL from env.
    Order: RISKGATE_RPC_URL > ALCHEMY_ETHEREUM_URL > public endpoint.
    """
    load_riskgate_env()
    url = (os.getenv("RISKGATE_RPC_URL") or "").strip()
    if url:
        return url
    url = (os.getenv("ALCHEMY_ETHEREUM_URL") or "").strip()
    if url:
        return url
    return PUBLIC_ETHEREUM_RPC_URL


def parse_api_keys(raw: str) -> dict[str, str]:
    """
    Parse "key1:PRO,key2:BASIC" into {key: TIER}. Entries without a tier or
    with blank parts are skipped.
    """
    keys: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, sep, tier = item.strip().partition(":")
        key = key.strip()
        tier = tier.strip().upper()
        if sep and key and tier:
            keys[key] = tier
    return keys


def mask_rpc_url(url: str) -> str:
    """Hide API keys embedded in RPC URLs for logging."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    if "/v2/" in url:
        return url.split("/v2/")[0] + "/v2/***"
    return url
