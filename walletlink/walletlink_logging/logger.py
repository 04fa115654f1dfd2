"""
Structured logging for extraction and scanning — one JSON object per line on stderr.

Every record carries event_type, level, timestamp and the logger name; extraction
records add browser / profile / wallet_name, scan records add chain / address
(shortened with short_address). Secret-bearing fields are masked by a processor
before rendering, so a stray password=... or mnemonic=... never reaches the sink.

Depends on structlog and stdlib logging only; nothing from walletlink is imported here.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json (default) or console
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

SECRET_FIELDS = frozenset(
    {"password", "mnemonic", "seed_phrase", "private_key", "secret_key", "master_key", "api_key"}
)
REDACTED = "***"


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _rename_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog's positional 'event' becomes event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for key in SECRET_FIELDS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def configure_structlog(
    *,
    level: int = LOG_LEVEL_VALUE,
    fmt: str = LOG_FORMAT,
    stream: TextIO | None = None,
) -> None:
    """(Re)configure structlog. Runs once at import with the LOG_LEVEL / LOG_FORMAT env values."""
    out = stream or sys.stderr
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        _add_timestamp,
        _rename_event,
        _redact_secrets,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=out.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=stream is None,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger; the first positional argument is the event_type.

        logger = get_logger(__name__)
        logger.info("vault_decrypted", profile="Default", wallet_name="MetaMask", keyrings=2)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_target(logger: structlog.BoundLogger, browser: str, profile: str, wallet_name: str) -> structlog.BoundLogger:
    """Logger with the (browser, profile, wallet) of one extraction target bound."""
    return logger.bind(browser=browser, profile=profile, wallet_name=wallet_name)


def short_address(address: str | None, keep: int = 10) -> str:
    """Truncate an address for log fields."""
    if not address:
        return ""
    return address[:keep] + "..." if len(address) > keep else address
