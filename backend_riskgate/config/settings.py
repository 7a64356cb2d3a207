"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files.
- Provide defaults for optional settings.
- Expose typed settings (RPC URL, timeouts, store backend, cache TTLs, API keys)
  for use across the analyzer, gateway and API server.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from backend_riskgate.config.env import (
    env_float,
    env_int,
    env_str,
    get_rpc_url,
    load_riskgate_env,
    parse_api_keys,
)

DEFAULT_RPC_TIMEOUT_SEC = 5.0
DEFAULT_GATE_TTL_SEC = 300
DEFAULT_SCAN_TTL_SEC = 3600
DEFAULT_CACHE_CLEANUP_INTERVAL_SEC = 3600.0
DEFAULT_DB_URL = "sqlite:///riskgate.db"

STORE_MEMORY = "memory"
STORE_SQL = "sql"


@dataclass
class Settings:
    """Typed view of the RiskGate environment."""

    rpc_url: str
    rpc_timeout_sec: float = DEFAULT_RPC_TIMEOUT_SEC
    store_backend: str = STORE_MEMORY
    """memory (single instance) or sql (shared across gateway instances)."""
    db_url: str = DEFAULT_DB_URL
    gate_ttl_sec: int = DEFAULT_GATE_TTL_SEC
    """Live risk posture changes fast: minutes."""
    scan_ttl_sec: int = DEFAULT_SCAN_TTL_SEC
    """Structural contract properties change slowly: hours."""
    gate_policy: str = "default"
    api_keys: dict[str, str] = field(default_factory=dict)
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cache_cleanup_interval_sec: float = DEFAULT_CACHE_CLEANUP_INTERVAL_SEC


_settings: Settings | None = None


def _load_settings() -> Settings:
    load_riskgate_env()
    return Settings(
        rpc_url=get_rpc_url(),
        rpc_timeout_sec=env_float("RISKGATE_RPC_TIMEOUT_SEC", DEFAULT_RPC_TIMEOUT_SEC),
        store_backend=env_str("RISKGATE_STORE", STORE_MEMORY).lower(),
        db_url=env_str("RISKGATE_DB_URL", DEFAULT_DB_URL),
        gate_ttl_sec=env_int("RISKGATE_GATE_TTL_SEC", DEFAULT_GATE_TTL_SEC),
        scan_ttl_sec=env_int("RISKGATE_SCAN_TTL_SEC", DEFAULT_SCAN_TTL_SEC),
        gate_policy=env_str("RISKGATE_GATE_POLICY", "default").lower(),
        api_keys=parse_api_keys(env_str("RISKGATE_API_KEYS", "")),
        api_host=env_str("API_HOST", "0.0.0.0"),
        api_port=env_int("API_PORT", 8000),
        cache_cleanup_interval_sec=env_float(
            "CACHE_CLEANUP_INTERVAL_SEC", DEFAULT_CACHE_CLEANUP_INTERVAL_SEC
        ),
    )


def get_settings() -> Settings:
    """
    Return the current application settings (loaded once per process).

    Returns:
        Settings with rpc_url, rpc_timeout_sec, store_backend, db_url,
        cache TTLs, api_keys, api_host, api_port, etc.
    """
    global _settings
    if _settings is None:
        _settings = _load_settings()
    return _settings


def reset_settings_for_test() -> None:
    """Drop cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
