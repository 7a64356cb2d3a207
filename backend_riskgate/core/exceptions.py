"""
Application-level exceptions.

Responsibilities:
- Define domain exceptions (InputValidationError, QuotaExceeded, ProviderError,
  CacheUnavailable).
- Provide consistent error codes and HTTP status for API error handling.

Provider and cache failures never reach the caller as exceptions: the analyzer
converts ProviderError into a fail-safe BLOCK and the cache layer degrades to a
miss on CacheUnavailable.
"""

from __future__ import annotations

from typing import Any


class RiskGateError(Exception):
    """Base class for all RiskGate errors."""

    error_code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        out.update(self.details)
        return out


class InputValidationError(RiskGateError):
    """Malformed address or action. Rejected before any external call."""

    error_code = "INVALID_INPUT"
    http_status = 400


class QuotaExceeded(RiskGateError):
    """Daily quota for (tier, identity) exhausted; details carry reset_time and upgrade."""

    error_code = "QUOTA_EXCEEDED"
    http_status = 429


class ProviderError(RiskGateError):
    """Bytecode fetch failed or timed out. Resolved to a fail-safe BLOCK, never retried in-request."""

    error_code = "PROVIDER_ERROR"
    http_status = 502


class CacheUnavailable(RiskGateError):
    """Cache backend unreachable. Treated as a miss; invisible to the caller."""

    error_code = "CACHE_UNAVAILABLE"
    http_status = 503
