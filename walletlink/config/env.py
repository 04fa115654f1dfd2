"""
Environment variable loading for WalletLink.

- ALCHEMY_API_KEY: Alchemy key for EVM transfer history (ethereum, base, polygon)
- HELIUS_API_KEY: Helius key for Solana enhanced transaction history
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: config is walletlink/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

ALCHEMY_URL_TEMPLATE = "https://{network}.g.alchemy.com/v2/{key}"
HELIUS_API_BASE = "https://api.helius.xyz/v0"

# chain name -> Alchemy network slug
ALCHEMY_NETWORKS: dict[str, str] = {
    "ethereum": "eth-mainnet",
    "base": "base-mainnet",
    "polygon": "polygon-mainnet",
}


def load_walletlink_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def get_project_root() -> Path:
    return _ROOT


def get_alchemy_api_key() -> str:
    load_walletlink_env()
    return (os.getenv("ALCHEMY_API_KEY") or "").strip()


def get_helius_api_key() -> str:
    load_walletlink_env()
    return (os.getenv("HELIUS_API_KEY") or "").strip()


def get_alchemy_url(chain: str) -> str | None:
    """
    Return the Alchemy JSON-RPC URL for an EVM chain, or None when the chain
    is unknown or no API key is configured.
    """
    network = ALCHEMY_NETWORKS.get(chain)
    key = get_alchemy_api_key()
    if not network or not key:
        return None
    return ALCHEMY_URL_TEMPLATE.format(network=network, key=key)


def mask_api_key(url: str) -> str:
    """Hide the API key part of a provider URL for logging."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    if "/v2/" in url:
        return url.split("/v2/")[0] + "/v2/***"
    return url
