"""
Database abstraction layer: credentials, derived addresses, transfers, scan cursors, connections.

SQLite via Database and get_database(); backend is swappable.
"""

from walletlink.database.database import (
    Database,
    DatabaseBackend,
    SQLiteBackend,
    get_database,
)
from walletlink.database.models import (
    ClusterMember,
    ConnectionRecord,
    DerivedAddress,
    ExtractedCredential,
    ScanCursor,
    TransferRecord,
)

__all__ = [
    "Database",
    "DatabaseBackend",
    "SQLiteBackend",
    "get_database",
    "ClusterMember",
    "ConnectionRecord",
    "DerivedAddress",
    "ExtractedCredential",
    "ScanCursor",
    "TransferRecord",
]
