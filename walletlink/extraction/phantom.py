"""
Phantom vault handling.

Two-stage decryption:
  Stage 1: password -> KDF -> secretbox-open the stored encryption key (master key).
  Stage 2: master key bytes -> per-entry KDF -> secretbox-open each seed / private key.

LevelDB keys (leading dot, seed/privateKey keys carry a hash suffix):
  .phantom-labs.encryption.encryptionKey
  .phantom-labs.vault.seed.<hash>
  .phantom-labs.vault.privateKey.<hash>

All binary fields are base58. KDF is pbkdf2 (iterations default 10000, digest
default sha256) or scrypt (N=4096, r=8, p=1), always 32-byte output.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

import base58
from mnemonic import Mnemonic
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from solders.pubkey import Pubkey

from walletlink.core.exceptions import (
    EntryDecryptionError,
    MalformedVaultError,
    WrongPasswordError,
)
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)

KEY_ENCRYPTION = ".phantom-labs.encryption.encryptionKey"
PREFIX_SEED = ".phantom-labs.vault.seed."
PREFIX_PRIVATE_KEY = ".phantom-labs.vault.privateKey."

DEFAULT_PBKDF2_ITERATIONS = 10_000
DEFAULT_PBKDF2_DIGEST = "sha256"
SCRYPT_N = 2**12
SCRYPT_R = 8
SCRYPT_P = 1
KEY_LENGTH = 32

ENTRY_SEED = "seed"
ENTRY_PRIVATE_KEY = "privateKey"


@dataclass
class EncryptedContent:
    encrypted: str
    nonce: str
    salt: str
    kdf: str = "pbkdf2"
    iterations: int | None = None
    digest: str | None = None

    @classmethod
    def from_dict(cls, obj: Any) -> "EncryptedContent | None":
        if not isinstance(obj, dict) or not obj.get("encrypted"):
            return None
        try:
            iterations = int(obj["iterations"]) if obj.get("iterations") is not None else None
        except (TypeError, ValueError):
            iterations = None
        return cls(
            encrypted=str(obj["encrypted"]),
            nonce=str(obj.get("nonce") or ""),
            salt=str(obj.get("salt") or ""),
            kdf=str(obj.get("kdf") or "pbkdf2").lower(),
            iterations=iterations,
            digest=str(obj["digest"]).lower() if obj.get("digest") else None,
        )


@dataclass
class PhantomVault:
    encryption_key: EncryptedContent
    seeds: list[EncryptedContent] = field(default_factory=list)
    private_keys: list[EncryptedContent] = field(default_factory=list)


@dataclass
class DecryptedPhantomVault:
    seeds: list[Any] = field(default_factory=list)
    private_keys: list[Any] = field(default_factory=list)
    entry_errors: list[EntryDecryptionError] = field(default_factory=list)


@dataclass
class SolanaKeypair:
    secret_key: str
    """base58 of the raw key buffer (64-byte ed25519 keypair when public_key is known)."""
    public_key: str | None = None


@dataclass
class PhantomKeys:
    mnemonics: list[str] = field(default_factory=list)
    keypairs: list[SolanaKeypair] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Locating
# -----------------------------------------------------------------------------


def _canonical_key(key: str) -> str:
    return key if key.startswith(".") else f".{key}"


def _parse_entry(raw: str) -> Any:
    """Parse a stored value, unwrapping the {value: "<json>"} envelope."""
    try:
        outer = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if isinstance(outer, dict) and isinstance(outer.get("value"), str):
        try:
            return json.loads(outer["value"])
        except json.JSONDecodeError:
            return outer["value"]
    return outer


def find_vault(entries: dict[str, str]) -> PhantomVault | None:
    by_key = {_canonical_key(k): v for k, v in entries.items()}
    raw_key = by_key.get(KEY_ENCRYPTION)
    if raw_key is None:
        return None
    parsed_key = _parse_entry(raw_key)
    encryption_key = EncryptedContent.from_dict(parsed_key.get("encryptedKey") if isinstance(parsed_key, dict) else None)
    if encryption_key is None:
        return None

    vault = PhantomVault(encryption_key=encryption_key)
    for key in sorted(by_key):
        if key.startswith(PREFIX_SEED):
            target = vault.seeds
        elif key.startswith(PREFIX_PRIVATE_KEY):
            target = vault.private_keys
        else:
            continue
        entry = _parse_entry(by_key[key])
        content = EncryptedContent.from_dict(entry.get("content") if isinstance(entry, dict) else None)
        if content is not None:
            target.append(content)

    if not vault.seeds and not vault.private_keys:
        return None
    return vault


# -----------------------------------------------------------------------------
# Decrypting
# -----------------------------------------------------------------------------


def _b58(value: str, name: str) -> bytes:
    try:
        return base58.b58decode(value)
    except ValueError as e:
        raise MalformedVaultError(f"{name} is not valid base58") from e


def derive_key(secret: str | bytes, content: EncryptedContent) -> bytes:
    """32-byte key from a password (stage 1) or master key bytes (stage 2)."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    salt = _b58(content.salt, "salt")
    if content.kdf == "scrypt":
        return hashlib.scrypt(secret, salt=salt, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P, dklen=KEY_LENGTH)
    if content.kdf != "pbkdf2":
        raise MalformedVaultError(f"unsupported kdf: {content.kdf}")
    try:
        return hashlib.pbkdf2_hmac(
            content.digest or DEFAULT_PBKDF2_DIGEST,
            secret,
            salt,
            content.iterations or DEFAULT_PBKDF2_ITERATIONS,
            dklen=KEY_LENGTH,
        )
    except ValueError as e:
        raise MalformedVaultError(f"unsupported digest: {content.digest}") from e


def open_box(content: EncryptedContent, key: bytes) -> bytes:
    """Secretbox-open; raises nacl CryptoError on authentication failure."""
    ciphertext = _b58(content.encrypted, "encrypted")
    nonce = _b58(content.nonce, "nonce")
    if len(nonce) != SecretBox.NONCE_SIZE:
        raise MalformedVaultError("nonce has wrong length")
    return SecretBox(key).decrypt(ciphertext, nonce)


def _decode_plaintext(data: bytes) -> Any:
    text = data.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def decrypt_vault(vault: PhantomVault, password: str) -> DecryptedPhantomVault:
    """
    Stage 1 failure raises WrongPasswordError before any entry is touched.
    Stage 2 failures are collected per entry in entry_errors.
    """
    try:
        master_key = open_box(vault.encryption_key, derive_key(password, vault.encryption_key))
    except CryptoError as e:
        raise WrongPasswordError("wrong password — master key") from e

    result = DecryptedPhantomVault()
    for kind, contents, target in (
        (ENTRY_SEED, vault.seeds, result.seeds),
        (ENTRY_PRIVATE_KEY, vault.private_keys, result.private_keys),
    ):
        for index, content in enumerate(contents):
            try:
                plaintext = open_box(content, derive_key(master_key, content))
            except (CryptoError, MalformedVaultError):
                logger.warning("phantom_entry_decrypt_failed", entry_kind=kind, entry_index=index)
                result.entry_errors.append(
                    EntryDecryptionError(
                        f"{kind} entry {index} failed to decrypt",
                        entry_kind=kind,
                        entry_index=index,
                    )
                )
                continue
            target.append(_decode_plaintext(plaintext))
    return result


# -----------------------------------------------------------------------------
# Key extraction
# -----------------------------------------------------------------------------


def entropy_to_bytes(entropy: dict[str, Any]) -> bytes:
    """{"0": b0, "1": b1, ...} -> bytes, ordered by numeric key."""
    indices = sorted(int(k) for k in entropy if str(k).isdigit())
    return bytes(int(entropy[str(i)]) for i in indices)


def _seed_mnemonic(seed: Any) -> str | None:
    if not isinstance(seed, dict):
        return None
    entropy = seed.get("entropy")
    if isinstance(entropy, dict):
        try:
            return Mnemonic("english").to_mnemonic(entropy_to_bytes(entropy))
        except (ValueError, TypeError) as e:
            logger.warning("phantom_seed_entropy_invalid", error=type(e).__name__)
            return None
    if isinstance(seed.get("mnemonic"), str) and seed["mnemonic"].strip():
        return seed["mnemonic"].strip()
    return None


def _keypair(entry: Any) -> SolanaKeypair | None:
    if not isinstance(entry, dict) or not isinstance(entry.get("privateKey"), dict):
        return None
    data = entry["privateKey"].get("data")
    if not isinstance(data, list):
        return None
    try:
        key_bytes = bytes(data)
    except (TypeError, ValueError):
        return None
    secret = base58.b58encode(key_bytes).decode("ascii")
    if len(key_bytes) == 64:
        # ed25519 keypair layout: 32-byte seed then 32-byte public key
        return SolanaKeypair(secret_key=secret, public_key=str(Pubkey.from_bytes(key_bytes[32:])))
    return SolanaKeypair(secret_key=secret, public_key=None)


def extract_keys(decrypted: DecryptedPhantomVault) -> PhantomKeys:
    result = PhantomKeys()
    for seed in decrypted.seeds:
        phrase = _seed_mnemonic(seed)
        if phrase is not None and phrase not in result.mnemonics:
            result.mnemonics.append(phrase)
    for entry in decrypted.private_keys:
        keypair = _keypair(entry)
        if keypair is not None:
            result.keypairs.append(keypair)
    return result


class PhantomParser:
    """Locate / decrypt / extract strategy for Phantom vaults."""

    def locate(self, entries: dict[str, str]) -> PhantomVault | None:
        return find_vault(entries)

    def decrypt(self, vault: PhantomVault, password: str) -> DecryptedPhantomVault:
        return decrypt_vault(vault, password)

    def extract_keys(self, decrypted: DecryptedPhantomVault) -> PhantomKeys:
        return extract_keys(decrypted)
