"""
Configuration management for WalletLink.

Loads settings from environment variables and the optional project .env file.
Exposes a single source of truth for all service configuration.
"""

from walletlink.config.settings import Settings, get_settings, reset_settings_cache  # noqa: F401

__all__ = ["Settings", "get_settings", "reset_settings_cache"]
