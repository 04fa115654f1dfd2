"""
Database abstraction layer for extracted credentials, derived addresses,
transfer history, scan cursors and inferred connections.

Uses SQLite; the backend can be swapped via a different DatabaseBackend
implementation. All access goes through the abstract interface. Inserts of
credentials, addresses and transfers are idempotent: uniqueness conflicts are
absorbed here and resolve to the already-recorded row.
"""

from __future__ import annotations

import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from walletlink.core.exceptions import StorageConstraintViolation
from walletlink.database.models import (
    ClusterMember,
    ConnectionRecord,
    DerivedAddress,
    ExtractedCredential,
    ScanCursor,
    TransferRecord,
    normalize_address,
)
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Schema (SQLite).
# -----------------------------------------------------------------------------

SCHEMA_CREDENTIALS = """
CREATE TABLE IF NOT EXISTS credentials (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    credential_type TEXT NOT NULL,
    browser TEXT NOT NULL DEFAULT '',
    profile TEXT NOT NULL,
    mnemonic TEXT,
    private_key TEXT,
    content_hash TEXT NOT NULL UNIQUE,
    label TEXT,
    extracted_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_credentials_profile ON credentials(profile);
"""

SCHEMA_ADDRESSES = """
CREATE TABLE IF NOT EXISTS addresses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    credential_id INTEGER NOT NULL REFERENCES credentials(id),
    address TEXT NOT NULL,
    chain_type TEXT NOT NULL,
    derivation_index INTEGER,
    created_at INTEGER NOT NULL,
    UNIQUE(address, chain_type)
);
CREATE INDEX IF NOT EXISTS ix_addresses_credential ON addresses(credential_id);
"""

SCHEMA_TRANSFERS = """
CREATE TABLE IF NOT EXISTS transfers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    from_address TEXT NOT NULL,
    to_address TEXT NOT NULL,
    chain TEXT NOT NULL,
    token TEXT NOT NULL,
    amount TEXT NOT NULL,
    tx_hash TEXT NOT NULL,
    block_number INTEGER,
    timestamp INTEGER,
    created_at INTEGER NOT NULL,
    UNIQUE(tx_hash, from_address, to_address, token)
);
CREATE INDEX IF NOT EXISTS ix_transfers_from ON transfers(from_address);
CREATE INDEX IF NOT EXISTS ix_transfers_to ON transfers(to_address);
"""

SCHEMA_SCAN_CURSORS = """
CREATE TABLE IF NOT EXISTS scan_cursors (
    address_id INTEGER NOT NULL REFERENCES addresses(id),
    chain TEXT NOT NULL,
    last_block INTEGER NOT NULL DEFAULT 0,
    last_scanned_at INTEGER NOT NULL,
    PRIMARY KEY(address_id, chain)
);
"""

SCHEMA_CONNECTIONS = """
CREATE TABLE IF NOT EXISTS connections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address_id_a INTEGER NOT NULL REFERENCES addresses(id),
    address_id_b INTEGER NOT NULL REFERENCES addresses(id),
    kind TEXT NOT NULL,
    evidence TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    CHECK(address_id_a < address_id_b),
    UNIQUE(address_id_a, address_id_b, kind, evidence)
);
CREATE INDEX IF NOT EXISTS ix_connections_kind ON connections(kind);
"""


def _credential_from_row(row: sqlite3.Row) -> ExtractedCredential:
    return ExtractedCredential(
        id=row["id"],
        credential_type=row["credential_type"],
        browser=row["browser"],
        profile=row["profile"],
        mnemonic=row["mnemonic"],
        private_key=row["private_key"],
        label=row["label"],
        extracted_at=row["extracted_at"],
    )


def _address_from_row(row: sqlite3.Row) -> DerivedAddress:
    return DerivedAddress(
        id=row["id"],
        credential_id=row["credential_id"],
        address=row["address"],
        chain_type=row["chain_type"],
        derivation_index=row["derivation_index"],
        created_at=row["created_at"],
    )


def _connection_from_row(row: sqlite3.Row) -> ConnectionRecord:
    return ConnectionRecord(
        id=row["id"],
        address_id_a=row["address_id_a"],
        address_id_b=row["address_id_b"],
        kind=row["kind"],
        evidence=row["evidence"],
        created_at=row["created_at"],
    )


# -----------------------------------------------------------------------------
# Abstract backend
# -----------------------------------------------------------------------------


class DatabaseBackend(ABC):
    """Abstract interface for persistence."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def insert_credential(self, credential: ExtractedCredential) -> tuple[int, bool]:
        """Insert by content hash. Returns (row id, created); an existing credential returns its id."""
        ...

    @abstractmethod
    def list_credentials(self) -> list[ExtractedCredential]:
        ...

    @abstractmethod
    def insert_address(self, address: DerivedAddress) -> tuple[int, bool]:
        """Insert by (address, chain_type). Returns (row id, created)."""
        ...

    @abstractmethod
    def get_address(self, address: str, chain_type: str) -> DerivedAddress | None:
        ...

    @abstractmethod
    def list_addresses(self, chain_type: str | None = None) -> list[DerivedAddress]:
        """Return known addresses in id order, optionally for one chain type."""
        ...

    @abstractmethod
    def insert_transfer(self, transfer: TransferRecord) -> bool:
        """Insert a transfer; returns False when it was already recorded."""
        ...

    @abstractmethod
    def list_transfers(self) -> list[TransferRecord]:
        ...

    @abstractmethod
    def get_scan_cursor(self, address_id: int, chain: str) -> ScanCursor | None:
        ...

    @abstractmethod
    def set_scan_cursor(self, address_id: int, chain: str, last_block: int) -> int:
        """Upsert keeping MAX(stored, last_block). Returns the stored value."""
        ...

    @abstractmethod
    def clear_connections(self) -> None:
        ...

    @abstractmethod
    def insert_connection(self, connection: ConnectionRecord) -> bool:
        ...

    @abstractmethod
    def replace_connections(self, connections: Iterable[ConnectionRecord]) -> int:
        """Clear all connections and insert the new set in one transaction. Returns count written."""
        ...

    @abstractmethod
    def list_connections(
        self,
        *,
        kind: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ConnectionRecord]:
        ...

    @abstractmethod
    def count_connections(self, kind: str | None = None) -> int:
        ...

    @abstractmethod
    def get_cluster_members(self, address_ids: Iterable[int]) -> dict[int, ClusterMember]:
        """Return address id -> address joined with its owning credential."""
        ...

    @abstractmethod
    def counters(self) -> dict[str, Any]:
        """Totals for status views: credentials, addresses, scanned addresses, transfers, connections, last scan."""
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


class SQLiteBackend(DatabaseBackend):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            for stmt in (
                SCHEMA_CREDENTIALS,
                SCHEMA_ADDRESSES,
                SCHEMA_TRANSFERS,
                SCHEMA_SCAN_CURSORS,
                SCHEMA_CONNECTIONS,
            ):
                cur.executescript(stmt)

    # --- Credentials ---

    def insert_credential(self, credential: ExtractedCredential) -> tuple[int, bool]:
        content_hash = credential.content_hash
        now = int(time.time())
        with self._cursor() as cur:
            try:
                cur.execute(
                    """
                    INSERT INTO credentials (credential_type, browser, profile, mnemonic, private_key, content_hash, label, extracted_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        credential.credential_type,
                        credential.browser,
                        credential.profile,
                        credential.mnemonic,
                        credential.private_key,
                        content_hash,
                        credential.label,
                        now,
                    ),
                )
                return int(cur.lastrowid), True
            except sqlite3.IntegrityError:
                # UNIQUE(content_hash): already extracted, possibly from another profile
                cur.execute("SELECT id FROM credentials WHERE content_hash = ?", (content_hash,))
                row = cur.fetchone()
        if row is None:
            raise StorageConstraintViolation("credential insert rejected")
        return int(row["id"]), False

    def list_credentials(self) -> list[ExtractedCredential]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM credentials ORDER BY id")
            rows = cur.fetchall()
        return [_credential_from_row(row) for row in rows]

    # --- Addresses ---

    def insert_address(self, address: DerivedAddress) -> tuple[int, bool]:
        value = normalize_address(address.address)
        now = int(time.time())
        with self._cursor() as cur:
            try:
                cur.execute(
                    """
                    INSERT INTO addresses (credential_id, address, chain_type, derivation_index, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (address.credential_id, value, address.chain_type, address.derivation_index, now),
                )
                return int(cur.lastrowid), True
            except sqlite3.IntegrityError:
                # UNIQUE(address, chain_type)
                cur.execute(
                    "SELECT id FROM addresses WHERE address = ? AND chain_type = ?",
                    (value, address.chain_type),
                )
                row = cur.fetchone()
        if row is None:
            # not a duplicate: e.g. unknown credential_id (foreign key)
            raise StorageConstraintViolation("address insert rejected")
        return int(row["id"]), False

    def get_address(self, address: str, chain_type: str) -> DerivedAddress | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM addresses WHERE address = ? AND chain_type = ?",
                (normalize_address(address), chain_type),
            )
            row = cur.fetchone()
        return _address_from_row(row) if row is not None else None

    def list_addresses(self, chain_type: str | None = None) -> list[DerivedAddress]:
        sql = "SELECT * FROM addresses"
        params: list[Any] = []
        if chain_type is not None:
            sql += " WHERE chain_type = ?"
            params.append(chain_type)
        sql += " ORDER BY id"
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [_address_from_row(row) for row in rows]

    # --- Transfers ---

    def insert_transfer(self, transfer: TransferRecord) -> bool:
        now = int(time.time())
        with self._cursor() as cur:
            try:
                cur.execute(
                    """
                    INSERT INTO transfers (from_address, to_address, chain, token, amount, tx_hash, block_number, timestamp, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        normalize_address(transfer.from_address),
                        normalize_address(transfer.to_address),
                        transfer.chain,
                        transfer.token,
                        str(transfer.amount),
                        transfer.tx_hash,
                        transfer.block_number,
                        transfer.timestamp,
                        now,
                    ),
                )
                return cur.rowcount > 0
            except sqlite3.IntegrityError:
                # UNIQUE(tx_hash, from_address, to_address, token) duplicate
                return False

    def list_transfers(self) -> list[TransferRecord]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, from_address, to_address, chain, token, amount, tx_hash, block_number, timestamp
                FROM transfers ORDER BY id
                """
            )
            rows = cur.fetchall()
        return [
            TransferRecord(
                id=row["id"],
                from_address=row["from_address"],
                to_address=row["to_address"],
                chain=row["chain"],
                token=row["token"],
                amount=row["amount"],
                tx_hash=row["tx_hash"],
                block_number=row["block_number"],
                timestamp=row["timestamp"],
            )
            for row in rows
        ]

    # --- Scan cursors ---

    def get_scan_cursor(self, address_id: int, chain: str) -> ScanCursor | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT address_id, chain, last_block, last_scanned_at FROM scan_cursors WHERE address_id = ? AND chain = ?",
                (address_id, chain),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return ScanCursor(
            address_id=row["address_id"],
            chain=row["chain"],
            last_block=row["last_block"],
            last_scanned_at=row["last_scanned_at"],
        )

    def set_scan_cursor(self, address_id: int, chain: str, last_block: int) -> int:
        now = int(time.time())
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO scan_cursors (address_id, chain, last_block, last_scanned_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(address_id, chain) DO UPDATE SET
                    last_block = MAX(last_block, excluded.last_block),
                    last_scanned_at = excluded.last_scanned_at
                """,
                (address_id, chain, int(last_block), now),
            )
            cur.execute(
                "SELECT last_block FROM scan_cursors WHERE address_id = ? AND chain = ?",
                (address_id, chain),
            )
            row = cur.fetchone()
        return int(row["last_block"])

    # --- Connections ---

    def clear_connections(self) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM connections")

    @staticmethod
    def _insert_connection(cur: sqlite3.Cursor, connection: ConnectionRecord, now: int) -> bool:
        try:
            cur.execute(
                """
                INSERT INTO connections (address_id_a, address_id_b, kind, evidence, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (connection.address_id_a, connection.address_id_b, connection.kind, connection.evidence, now),
            )
            return cur.rowcount > 0
        except sqlite3.IntegrityError:
            return False

    def insert_connection(self, connection: ConnectionRecord) -> bool:
        with self._cursor() as cur:
            return self._insert_connection(cur, connection, int(time.time()))

    def replace_connections(self, connections: Iterable[ConnectionRecord]) -> int:
        now = int(time.time())
        written = 0
        with self._cursor() as cur:
            cur.execute("DELETE FROM connections")
            for connection in connections:
                if self._insert_connection(cur, connection, now):
                    written += 1
        return written

    def list_connections(
        self,
        *,
        kind: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ConnectionRecord]:
        sql = "SELECT id, address_id_a, address_id_b, kind, evidence, created_at FROM connections"
        params: list[Any] = []
        if kind is not None:
            sql += " WHERE kind = ?"
            params.append(kind)
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, max(0, offset)])
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [_connection_from_row(row) for row in rows]

    def count_connections(self, kind: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS cnt FROM connections"
        params: list[Any] = []
        if kind is not None:
            sql += " WHERE kind = ?"
            params.append(kind)
        with self._cursor() as cur:
            cur.execute(sql, params)
            return int(cur.fetchone()["cnt"])

    def get_cluster_members(self, address_ids: Iterable[int]) -> dict[int, ClusterMember]:
        ids = sorted(set(address_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT a.id AS address_id, a.address, a.chain_type, a.derivation_index,
                       c.id AS credential_id, c.credential_type, c.profile, c.label
                FROM addresses a JOIN credentials c ON c.id = a.credential_id
                WHERE a.id IN ({placeholders})
                """,
                ids,
            )
            rows = cur.fetchall()
        return {
            row["address_id"]: ClusterMember(
                address_id=row["address_id"],
                address=row["address"],
                chain_type=row["chain_type"],
                credential_id=row["credential_id"],
                credential_type=row["credential_type"],
                profile=row["profile"],
                label=row["label"],
                derivation_index=row["derivation_index"],
            )
            for row in rows
        }

    def counters(self) -> dict[str, Any]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM credentials) AS total_credentials,
                    (SELECT COUNT(*) FROM addresses) AS total_addresses,
                    (SELECT COUNT(DISTINCT address_id) FROM scan_cursors) AS scanned_addresses,
                    (SELECT COUNT(*) FROM transfers) AS total_transfers,
                    (SELECT COUNT(*) FROM connections) AS total_connections,
                    (SELECT MAX(last_scanned_at) FROM scan_cursors) AS last_scan_at
                """
            )
            row = cur.fetchone()
        return {key: row[key] for key in row.keys()}


# -----------------------------------------------------------------------------
# Database facade: single entrypoint; backend is swappable.
# -----------------------------------------------------------------------------


class Database:
    """
    Database abstraction: credentials, addresses, transfers, scan cursors, connections.

    Uses a Backend (SQLite by default).
    """

    def __init__(self, backend: DatabaseBackend) -> None:
        self._backend = backend

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        self._backend.ensure_schema()

    # --- Credentials & addresses ---

    def insert_credential(self, credential: ExtractedCredential) -> tuple[int, bool]:
        """Store a credential at most once by content. Returns (id, created)."""
        cred_id, created = self._backend.insert_credential(credential)
        credential.id = cred_id
        return cred_id, created

    def list_credentials(self) -> list[ExtractedCredential]:
        return self._backend.list_credentials()

    def insert_address(
        self,
        credential_id: int,
        address: str,
        chain_type: str,
        derivation_index: int | None = None,
    ) -> tuple[int, bool]:
        """Store an address at most once per chain type. Returns (id, created)."""
        return self._backend.insert_address(
            DerivedAddress(
                credential_id=credential_id,
                address=address,
                chain_type=chain_type,
                derivation_index=derivation_index,
            )
        )

    def get_address(self, address: str, chain_type: str) -> DerivedAddress | None:
        return self._backend.get_address(address, chain_type)

    def list_addresses(self, chain_type: str | None = None) -> list[DerivedAddress]:
        return self._backend.list_addresses(chain_type)

    # --- Transfers ---

    def insert_transfer(self, transfer: TransferRecord) -> bool:
        """Idempotent insert; True only when the row is new."""
        return self._backend.insert_transfer(transfer)

    def list_transfers(self) -> list[TransferRecord]:
        return self._backend.list_transfers()

    # --- Scan cursors ---

    def get_scan_cursor(self, address_id: int, chain: str) -> int:
        """Last processed block for the unit, 0 when never scanned."""
        cursor = self._backend.get_scan_cursor(address_id, chain)
        return cursor.last_block if cursor is not None else 0

    def set_scan_cursor(self, address_id: int, chain: str, last_block: int) -> int:
        """Advance the cursor; a lower value never overwrites a higher one. Returns the stored value."""
        return self._backend.set_scan_cursor(address_id, chain, last_block)

    # --- Connections ---

    def clear_connections(self) -> None:
        self._backend.clear_connections()

    def insert_connection(self, connection: ConnectionRecord) -> bool:
        return self._backend.insert_connection(connection)

    def replace_connections(self, connections: Iterable[ConnectionRecord]) -> int:
        return self._backend.replace_connections(connections)

    def list_connections(
        self,
        *,
        kind: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ConnectionRecord]:
        return self._backend.list_connections(kind=kind, limit=limit, offset=offset)

    def count_connections(self, kind: str | None = None) -> int:
        return self._backend.count_connections(kind)

    def get_cluster_members(self, address_ids: Iterable[int]) -> dict[int, ClusterMember]:
        return self._backend.get_cluster_members(address_ids)

    def counters(self) -> dict[str, Any]:
        return self._backend.counters()


def get_database(path: str | Path | None = None) -> Database:
    """
    Return a Database instance (SQLite) with the schema in place.

    path: Path to the SQLite file. Default: settings.db_path (WALLETLINK_DB_PATH).
    """
    if path is None:
        from walletlink.config import get_settings

        path = get_settings().db_path
    backend = SQLiteBackend(path)
    db = Database(backend)
    db.ensure_schema()
    logger.debug("database_ready", path=str(path))
    return db
