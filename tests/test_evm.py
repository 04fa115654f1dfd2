"""
Pytest tests for EVM address derivation (BIP44 m/44'/60'/0'/0/i and raw keys).
"""

from __future__ import annotations

import pytest

from walletlink.extraction.evm import (
    derive_address_from_private_key,
    derive_addresses_from_mnemonic,
    normalize_private_key,
)

TEST_MNEMONIC = "test test test test test test test test test test test junk"
ACCOUNT_0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ACCOUNT_1 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
KEY_0 = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def test_mnemonic_derivation_known_vectors():
    assert derive_addresses_from_mnemonic(TEST_MNEMONIC, 2) == [ACCOUNT_0, ACCOUNT_1]


def test_derivation_is_deterministic():
    """Deriving index i twice yields the same address; extra whitespace is ignored."""
    first = derive_addresses_from_mnemonic(TEST_MNEMONIC, 3)
    second = derive_addresses_from_mnemonic("  " + TEST_MNEMONIC.replace(" ", "  ") + "\n", 3)
    assert first == second
    assert len(set(first)) == 3


def test_zero_accounts():
    assert derive_addresses_from_mnemonic(TEST_MNEMONIC, 0) == []


def test_private_key_with_and_without_prefix():
    assert derive_address_from_private_key(KEY_0) == ACCOUNT_0
    assert derive_address_from_private_key(KEY_0[2:]) == ACCOUNT_0
    assert normalize_private_key(KEY_0[2:]) == KEY_0


def test_invalid_private_key_raises():
    with pytest.raises(ValueError):
        derive_address_from_private_key("0x1234")
