"""
Pytest fixtures for WalletLink tests.

Temporary SQLite DB and scratch dir per test, fixture vault builders that
encrypt known plaintext with the same primitives the wallets use (low KDF
iteration counts), and a FastAPI TestClient bound to the temporary DB.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
from pathlib import Path

import base58
import plyvel
import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from nacl.secret import SecretBox

TEST_MNEMONIC = "test test test test test test test test test test test junk"
METAMASK_EXTENSION_ID = "nkbihfbeogaeaoehlefnkodbefgpgknn"
PHANTOM_EXTENSION_ID = "bfnaelmomeimhlpmgjnjophhpkkoljpa"
BRAVE_LINUX_PATH = ".config/BraveSoftware/Brave-Browser"


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Settings pointing at tmp_path; no provider keys, no page delay."""
    monkeypatch.setenv("WALLETLINK_DB_PATH", str(tmp_path / "walletlink.db"))
    monkeypatch.setenv("WALLETLINK_SCRATCH_DIR", str(tmp_path / "scratch"))
    monkeypatch.delenv("ALCHEMY_API_KEY", raising=False)
    monkeypatch.delenv("HELIUS_API_KEY", raising=False)

    from walletlink.config import reset_settings_cache
    from walletlink.config.settings import Settings

    reset_settings_cache()
    yield Settings(
        db_path=tmp_path / "walletlink.db",
        scratch_dir=tmp_path / "scratch",
        page_delay_sec=0.0,
        evm_chains=("ethereum",),
    )
    reset_settings_cache()


@pytest.fixture
def db(settings):
    """Fresh Database with schema in place."""
    from walletlink.database import get_database

    return get_database(settings.db_path)


@pytest.fixture
def add_address(db):
    """Factory: store a credential plus one address and return the DerivedAddress row."""
    from walletlink.database import ExtractedCredential
    from walletlink.database.models import CHAIN_TYPE_EVM, CREDENTIAL_METAMASK_IMPORTED

    def _add(address: str, chain_type: str = CHAIN_TYPE_EVM):
        cred_id, _ = db.insert_credential(
            ExtractedCredential(
                credential_type=CREDENTIAL_METAMASK_IMPORTED,
                profile="Default",
                private_key=f"key-for-{address}",
                label="MetaMask",
            )
        )
        db.insert_address(cred_id, address, chain_type)
        return db.get_address(address, chain_type)

    return _add


@pytest.fixture
def client(db, settings):
    """FastAPI TestClient over the temporary DB; profile discovery sees an empty home."""
    from fastapi.testclient import TestClient

    from walletlink.api_server.server import build_services, create_app
    from walletlink.extraction import ExtractionOrchestrator
    from walletlink.scanner import ScanOrchestrator, ScanState, TransferFetcher

    services = build_services(
        db,
        settings,
        extraction=ExtractionOrchestrator(
            db, scratch_root=settings.scratch_dir, home=settings.db_path.parent / "home", platform="linux"
        ),
        scan=ScanOrchestrator(db, settings, ScanState(), fetcher=TransferFetcher(db, settings, evm_sources={})),
    )
    # context manager keeps one event loop alive so background scan tasks can finish
    with TestClient(create_app(services)) as test_client:
        test_client.services = services
        yield test_client


# -----------------------------------------------------------------------------
# Vault builders
# -----------------------------------------------------------------------------


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b58(data: bytes) -> str:
    return base58.b58encode(data).decode("ascii")


def build_metamask_vault(keyrings: list, password: str, iterations: int = 1000) -> dict:
    """MetaMask vault JSON: PBKDF2-SHA256 key, AES-GCM ciphertext with tag appended."""
    salt = os.urandom(32)
    iv = os.urandom(16)
    key = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations, dklen=32)
    data = AESGCM(key).encrypt(iv, json.dumps(keyrings).encode("utf-8"), None)
    return {
        "data": _b64(data),
        "iv": _b64(iv),
        "salt": _b64(salt),
        "keyMetadata": {"algorithm": "PBKDF2", "params": {"iterations": iterations}},
    }


def seal_phantom(plaintext: bytes, secret: bytes, *, kdf: str = "pbkdf2", iterations: int = 1000) -> dict:
    """Phantom encrypted content: base58 fields, secretbox under a KDF of secret."""
    salt = os.urandom(16)
    nonce = os.urandom(SecretBox.NONCE_SIZE)
    if kdf == "scrypt":
        key = hashlib.scrypt(secret, salt=salt, n=4096, r=8, p=1, dklen=32)
    else:
        key = hashlib.pbkdf2_hmac("sha256", secret, salt, iterations, dklen=32)
    encrypted = SecretBox(key).encrypt(plaintext, nonce).ciphertext
    content = {"encrypted": _b58(encrypted), "nonce": _b58(nonce), "salt": _b58(salt), "kdf": kdf}
    if kdf == "pbkdf2":
        content.update({"iterations": iterations, "digest": "sha256"})
    return content


def build_phantom_entries(
    password: str,
    *,
    seeds: list[dict] = (),
    private_keys: list[dict] = (),
    master_key: bytes | None = None,
) -> dict[str, str]:
    """LevelDB entries for a Phantom vault; seeds/private_keys are plaintext JSON objects."""
    master_key = master_key or os.urandom(32)
    entries = {
        # stored with the {value: "<json>"} envelope and without the leading dot
        "phantom-labs.encryption.encryptionKey": json.dumps(
            {"value": json.dumps({"encryptedKey": seal_phantom(master_key, password.encode("utf-8"))})}
        ),
    }
    for i, seed in enumerate(seeds):
        content = seal_phantom(json.dumps(seed).encode("utf-8"), master_key)
        entries[f".phantom-labs.vault.seed.{i:04d}"] = json.dumps({"content": content})
    for i, pk in enumerate(private_keys):
        content = seal_phantom(json.dumps(pk).encode("utf-8"), master_key)
        entries[f".phantom-labs.vault.privateKey.{i:04d}"] = json.dumps({"content": content})
    return entries


def write_leveldb(path: Path, entries: dict[str, str]) -> Path:
    """Create a LevelDB store at path holding entries (UTF-8 keys and values)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    store = plyvel.DB(str(path), create_if_missing=True)
    try:
        for key, value in entries.items():
            store.put(key.encode("utf-8"), value.encode("utf-8"))
    finally:
        store.close()
    return path


def extension_path(home: Path, extension_id: str, profile: str = "Default") -> Path:
    return home / BRAVE_LINUX_PATH / profile / "Local Extension Settings" / extension_id


@pytest.fixture
def vaults():
    """Namespace of vault builders for tests."""

    class _Vaults:
        metamask = staticmethod(build_metamask_vault)
        phantom_entries = staticmethod(build_phantom_entries)
        seal_phantom = staticmethod(seal_phantom)
        write_leveldb = staticmethod(write_leveldb)
        extension_path = staticmethod(extension_path)

    return _Vaults
