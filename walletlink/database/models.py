"""
Domain models for database entities.

Credentials, derived addresses, transfers, scan cursors and connections.
Used by the repository layer; no ORM coupling so backends stay swappable.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

CREDENTIAL_METAMASK_HD = "metamask_hd"
CREDENTIAL_METAMASK_IMPORTED = "metamask_imported"
CREDENTIAL_PHANTOM_SEED = "phantom_seed"
CREDENTIAL_PHANTOM_KEYPAIR = "phantom_keypair"

CHAIN_TYPE_EVM = "evm"
CHAIN_TYPE_SOLANA = "solana"

CONNECTION_DIRECT = "direct"
CONNECTION_INDIRECT = "indirect"


def normalize_address(address: str) -> str:
    """Case-fold 0x-prefixed (EVM) addresses; base58 addresses are case-sensitive and kept as is."""
    address = (address or "").strip()
    if address[:2].lower() == "0x":
        return address.lower()
    return address


@dataclass
class ExtractedCredential:
    """Recovered secret: an HD mnemonic or a single imported private key."""

    credential_type: str
    profile: str
    mnemonic: str | None = None
    private_key: str | None = None
    browser: str = ""
    label: str | None = None
    id: int | None = None
    extracted_at: int | None = None
    """Unix timestamp (seconds) of first extraction."""

    @property
    def content_hash(self) -> str:
        """Storage identity: same type and secret means same credential, whatever profile it came from."""
        secret = self.mnemonic if self.mnemonic is not None else (self.private_key or "")
        return hashlib.sha256(f"{self.credential_type}\x00{secret}".encode("utf-8")).hexdigest()


@dataclass
class DerivedAddress:
    """Address controlled by a credential. (address, chain_type) is unique."""

    credential_id: int
    address: str
    chain_type: str
    derivation_index: int | None = None
    id: int | None = None
    created_at: int | None = None


@dataclass
class TransferRecord:
    """One on-chain value movement. (tx_hash, from_address, to_address, token) is unique."""

    from_address: str
    to_address: str
    chain: str
    token: str
    amount: str
    tx_hash: str
    block_number: int | None = None
    timestamp: int | None = None
    id: int | None = None


@dataclass
class ScanCursor:
    """Last block processed for an (address, chain) unit; never decreases."""

    address_id: int
    chain: str
    last_block: int = 0
    last_scanned_at: int | None = None


@dataclass
class ConnectionRecord:
    """
    Ownership evidence between two known addresses.

    address_id_a < address_id_b always holds (canonical pair ordering), so the
    same unordered pair maps to one key regardless of transfer direction.
    """

    address_id_a: int
    address_id_b: int
    kind: str
    evidence: str
    """JSON text describing the transfer or shared counterparty."""
    id: int | None = None
    created_at: int | None = None

    def __post_init__(self) -> None:
        if self.address_id_a > self.address_id_b:
            self.address_id_a, self.address_id_b = self.address_id_b, self.address_id_a

    @property
    def evidence_data(self) -> dict[str, Any]:
        try:
            data = json.loads(self.evidence)
        except (json.JSONDecodeError, TypeError):
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "address_id_a": self.address_id_a,
            "address_id_b": self.address_id_b,
            "kind": self.kind,
            "evidence": self.evidence_data,
            "created_at": self.created_at,
        }


@dataclass
class ClusterMember:
    """Address row joined with its owning credential, for cluster views."""

    address_id: int
    address: str
    chain_type: str
    credential_id: int
    credential_type: str
    profile: str
    label: str | None = None
    derivation_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address_id": self.address_id,
            "address": self.address,
            "chain_type": self.chain_type,
            "credential_id": self.credential_id,
            "credential_type": self.credential_type,
            "profile": self.profile,
            "label": self.label,
            "derivation_index": self.derivation_index,
        }
