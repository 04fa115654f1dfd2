"""
MetaMask-family vault handling (MetaMask, Rabby, Coinbase Wallet).

Vault format: JSON {data, iv, salt, keyMetadata?} with base64 fields, stored
inside the extension state blob under KeyringController.vault. The key is
PBKDF2-HMAC-SHA256(password, salt) and data is AES-256-GCM ciphertext with the
16-byte tag appended (WebCrypto layout). Plaintext is a JSON list of keyrings.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from walletlink.core.exceptions import MalformedVaultError, WrongPasswordError
from walletlink.extraction.evm import (
    derive_address_from_private_key,
    derive_addresses_from_mnemonic,
    normalize_private_key,
)
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)

DEFAULT_PBKDF2_ITERATIONS = 10_000
GCM_TAG_LENGTH = 16
KEY_LENGTH = 32

KEYRING_HD = "HD Key Tree"
KEYRING_SIMPLE = "Simple Key Pair"


@dataclass
class MetaMaskVault:
    data: str
    iv: str
    salt: str
    key_metadata: dict[str, Any] | None = None

    @property
    def iterations(self) -> int:
        params = (self.key_metadata or {}).get("params") or {}
        try:
            return int(params.get("iterations") or DEFAULT_PBKDF2_ITERATIONS)
        except (TypeError, ValueError):
            return DEFAULT_PBKDF2_ITERATIONS

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "MetaMaskVault":
        return cls(
            data=obj["data"],
            iv=obj["iv"],
            salt=obj["salt"],
            key_metadata=obj.get("keyMetadata") if isinstance(obj.get("keyMetadata"), dict) else None,
        )


@dataclass
class HDWallet:
    mnemonic: str
    accounts: int
    addresses: list[str] = field(default_factory=list)


@dataclass
class ImportedKey:
    private_key: str
    address: str


@dataclass
class MetaMaskKeys:
    hd_wallets: list[HDWallet] = field(default_factory=list)
    imported_keys: list[ImportedKey] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Locating
# -----------------------------------------------------------------------------


def _vault_shape(obj: Any) -> dict[str, Any] | None:
    if isinstance(obj, str):
        try:
            obj = json.loads(obj)
        except json.JSONDecodeError:
            return None
    if isinstance(obj, dict) and obj.get("data") and obj.get("iv") and obj.get("salt"):
        return obj
    return None


def _dig(obj: Any, *path: str) -> Any:
    for part in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(part)
    return obj


# Tried in order against each parsed value; first hit wins.
VAULT_EXTRACTORS: tuple[Callable[[Any], dict[str, Any] | None], ...] = (
    lambda state: _vault_shape(_dig(state, "KeyringController", "vault")),
    lambda state: _vault_shape(_dig(state, "data", "KeyringController", "vault")),
    lambda state: _vault_shape(_dig(state, "vault")),
    _vault_shape,
)


def find_vault(entries: dict[str, str]) -> MetaMaskVault | None:
    for value in entries.values():
        if '"vault"' not in value and '"salt"' not in value:
            continue
        try:
            state = json.loads(value)
        except json.JSONDecodeError:
            continue
        for extractor in VAULT_EXTRACTORS:
            found = extractor(state)
            if found is not None:
                return MetaMaskVault.from_dict(found)
    return None


# -----------------------------------------------------------------------------
# Decrypting
# -----------------------------------------------------------------------------


def _b64(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedVaultError(f"vault field {name} is not valid base64") from e


def decrypt_vault(vault: MetaMaskVault, password: str) -> list[dict[str, Any]]:
    """Return the decrypted keyring list. Raises WrongPasswordError or MalformedVaultError."""
    salt = _b64(vault.salt, "salt")
    iv = _b64(vault.iv, "iv")
    data = _b64(vault.data, "data")
    if len(data) <= GCM_TAG_LENGTH or not iv:
        raise MalformedVaultError("vault ciphertext too short")

    key = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, vault.iterations, dklen=KEY_LENGTH)
    try:
        # AESGCM expects ciphertext || tag, which is the stored layout
        plaintext = AESGCM(key).decrypt(iv, data, None)
    except InvalidTag as e:
        raise WrongPasswordError("wrong password or unsupported vault") from e

    try:
        keyrings = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedVaultError("decrypted vault is not JSON") from e
    if not isinstance(keyrings, list):
        raise MalformedVaultError("decrypted vault is not a keyring list")
    return keyrings


# -----------------------------------------------------------------------------
# Key extraction
# -----------------------------------------------------------------------------


def _mnemonic_text(raw: Any) -> str | None:
    if isinstance(raw, list):
        try:
            return bytes(raw).decode("utf-8")
        except (TypeError, ValueError):
            return None
    if isinstance(raw, str) and raw.strip():
        return raw
    return None


def _account_count(raw: Any) -> int:
    """numberOfAccounts as stored; missing or null means one account, 0 means none."""
    if raw is None:
        return 1
    if isinstance(raw, bool) or not isinstance(raw, (int, str)):
        raise MalformedVaultError(f"numberOfAccounts has unsupported type {type(raw).__name__}")
    try:
        count = int(raw)
    except ValueError as e:
        raise MalformedVaultError(f"numberOfAccounts is not a number: {raw!r}") from e
    if count < 0:
        raise MalformedVaultError(f"numberOfAccounts is negative: {count}")
    return count


def extract_keys(keyrings: list[dict[str, Any]]) -> MetaMaskKeys:
    result = MetaMaskKeys()
    for keyring in keyrings:
        if not isinstance(keyring, dict):
            continue
        kind = keyring.get("type")
        data = keyring.get("data")
        if kind == KEYRING_HD and isinstance(data, dict):
            mnemonic = _mnemonic_text(data.get("mnemonic"))
            if mnemonic is None:
                logger.warning("metamask_hd_keyring_without_mnemonic")
                continue
            accounts = _account_count(data.get("numberOfAccounts", 1))
            result.hd_wallets.append(
                HDWallet(
                    mnemonic=mnemonic,
                    accounts=accounts,
                    addresses=derive_addresses_from_mnemonic(mnemonic, accounts),
                )
            )
        elif kind == KEYRING_SIMPLE and isinstance(data, list):
            for hex_key in data:
                try:
                    address = derive_address_from_private_key(str(hex_key))
                except (ValueError, TypeError) as e:
                    logger.warning("metamask_invalid_imported_key", error=type(e).__name__)
                    continue
                result.imported_keys.append(ImportedKey(private_key=normalize_private_key(str(hex_key)), address=address))
        else:
            logger.info("metamask_keyring_skipped", keyring_type=kind)
    return result


class MetaMaskParser:
    """Locate / decrypt / extract strategy for MetaMask-compatible vaults."""

    def locate(self, entries: dict[str, str]) -> MetaMaskVault | None:
        return find_vault(entries)

    def decrypt(self, vault: MetaMaskVault, password: str) -> list[dict[str, Any]]:
        return decrypt_vault(vault, password)

    def extract_keys(self, keyrings: list[dict[str, Any]]) -> MetaMaskKeys:
        return extract_keys(keyrings)
