"""
Application settings.

Responsibilities:
- Load configuration from environment variables and the project .env file.
- Provide defaults for every optional setting.
- Expose one typed, immutable Settings object for the extraction pipeline,
  the scanner and the API server.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from walletlink.config.env import get_project_root, load_walletlink_env

DEFAULT_DB_PATH = "data/walletlink.db"
DEFAULT_SCRATCH_DIR = ".temp"
DEFAULT_MAX_FANOUT = 10
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE_SEC = 1.0
DEFAULT_PAGE_DELAY_SEC = 0.15
DEFAULT_HTTP_TIMEOUT_SEC = 15.0
DEFAULT_EVM_CHAINS = ("ethereum", "base", "polygon")


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return max(minimum, float(raw))
    except ValueError:
        return default


def _env_path(name: str, default: str) -> Path:
    raw = (os.getenv(name) or "").strip() or default
    path = Path(raw)
    if not path.is_absolute():
        path = get_project_root() / path
    return path


@dataclass(frozen=True)
class Settings:
    """
    WalletLink runtime settings.

    max_fanout: indirect-connection ceiling; counterparties linked to more known
        addresses than this are treated as exchanges/routers and ignored.
    max_retries: retry bound per page request (rate limit, timeout, 5xx).
    backoff_base_sec: delay before retry n is backoff_base_sec * 2**n.
    """

    db_path: Path
    scratch_dir: Path
    max_fanout: int = DEFAULT_MAX_FANOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base_sec: float = DEFAULT_BACKOFF_BASE_SEC
    page_delay_sec: float = DEFAULT_PAGE_DELAY_SEC
    http_timeout_sec: float = DEFAULT_HTTP_TIMEOUT_SEC
    evm_chains: tuple[str, ...] = field(default_factory=lambda: DEFAULT_EVM_CHAINS)
    api_host: str = "127.0.0.1"
    api_port: int = 8000


def load_settings() -> Settings:
    """Build Settings from the environment (no caching)."""
    load_walletlink_env()
    chains_raw = (os.getenv("WALLETLINK_EVM_CHAINS") or "").strip()
    chains = tuple(c.strip().lower() for c in chains_raw.split(",") if c.strip()) or DEFAULT_EVM_CHAINS
    return Settings(
        db_path=_env_path("WALLETLINK_DB_PATH", DEFAULT_DB_PATH),
        scratch_dir=_env_path("WALLETLINK_SCRATCH_DIR", DEFAULT_SCRATCH_DIR),
        max_fanout=_env_int("WALLETLINK_MAX_FANOUT", DEFAULT_MAX_FANOUT, minimum=2),
        max_retries=_env_int("WALLETLINK_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        backoff_base_sec=_env_float("WALLETLINK_BACKOFF_BASE_SEC", DEFAULT_BACKOFF_BASE_SEC),
        page_delay_sec=_env_float("WALLETLINK_PAGE_DELAY_SEC", DEFAULT_PAGE_DELAY_SEC),
        http_timeout_sec=_env_float("WALLETLINK_HTTP_TIMEOUT_SEC", DEFAULT_HTTP_TIMEOUT_SEC, minimum=1.0),
        evm_chains=chains,
        api_host=(os.getenv("API_HOST") or "127.0.0.1").strip(),
        api_port=_env_int("API_PORT", 8000, minimum=1),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings (read once)."""
    return load_settings()


def reset_settings_cache() -> None:
    """Forget cached settings so the next get_settings() re-reads the env. Test helper."""
    get_settings.cache_clear()
