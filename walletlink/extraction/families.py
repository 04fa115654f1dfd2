"""
Wallet-family strategy registry.

Each family tag maps to a parser with the same three steps:
locate(entries) -> vault | None, decrypt(vault, password) -> material,
extract_keys(material) -> keys.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol


class WalletFamily(str, Enum):
    METAMASK = "metamask"
    PHANTOM = "phantom"


class VaultParser(Protocol):
    def locate(self, entries: dict[str, str]) -> Any | None: ...

    def decrypt(self, vault: Any, password: str) -> Any: ...

    def extract_keys(self, material: Any) -> Any: ...


def get_parser(family: WalletFamily | str) -> VaultParser:
    """Return the parser for a family tag. Raises ValueError for unknown tags."""
    from walletlink.extraction.metamask import MetaMaskParser
    from walletlink.extraction.phantom import PhantomParser

    family = WalletFamily(family)
    if family is WalletFamily.METAMASK:
        return MetaMaskParser()
    return PhantomParser()
