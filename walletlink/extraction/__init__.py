"""
Wallet extraction: browser discovery, LevelDB snapshots, MetaMask / Phantom vault decryption.
"""

from walletlink.extraction.families import WalletFamily, get_parser
from walletlink.extraction.orchestrator import (
    ExtractionError,
    ExtractionOrchestrator,
    ExtractionResult,
)

__all__ = [
    "ExtractionError",
    "ExtractionOrchestrator",
    "ExtractionResult",
    "WalletFamily",
    "get_parser",
]
