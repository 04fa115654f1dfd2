"""
EVM address derivation (BIP39 mnemonic / hex private key -> checksummed address).
"""

from __future__ import annotations

from eth_account import Account

# MetaMask's default BIP44 account path; {index} is the address index.
METAMASK_HD_PATH = "m/44'/60'/0'/0/{index}"

Account.enable_unaudited_hdwallet_features()


def derive_addresses_from_mnemonic(mnemonic: str, count: int) -> list[str]:
    """Return addresses for indices 0..count-1 under m/44'/60'/0'/0/i."""
    phrase = " ".join(mnemonic.split())
    return [
        Account.from_mnemonic(phrase, account_path=METAMASK_HD_PATH.format(index=i)).address
        for i in range(max(0, count))
    ]


def normalize_private_key(hex_key: str) -> str:
    hex_key = hex_key.strip()
    return hex_key if hex_key[:2].lower() == "0x" else f"0x{hex_key}"


def derive_address_from_private_key(hex_key: str) -> str:
    """Accepts a 32-byte hex key with or without 0x prefix."""
    return Account.from_key(normalize_private_key(hex_key)).address
