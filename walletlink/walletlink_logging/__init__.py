"""
Structured logging for WalletLink.

JSON logs with timestamp and event_type. Use get_logger() in all modules.
"""

from walletlink.walletlink_logging.logger import bind_target, configure_structlog, get_logger, short_address

__all__ = ["bind_target", "configure_structlog", "get_logger", "short_address"]
