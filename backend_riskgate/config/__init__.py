"""
Configuration management for Backend RiskGate.

Loads settings from environment variables and an optional .env file.
Exposes a single source of truth for all service configuration.
"""

from backend_riskgate.config.settings import Settings, get_settings, reset_settings_for_test  # noqa: F401

__all__ = ["Settings", "get_settings", "reset_settings_for_test"]
