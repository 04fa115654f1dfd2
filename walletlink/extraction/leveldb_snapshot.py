"""
Snapshot reader for browser-extension LevelDB stores.

The live store is locked by the browser while it runs, so every read works on
a private copy: the directory is copied (without its LOCK file) into a unique
scratch directory, opened with plyvel, fully iterated, closed, and the copy is
removed on every exit path.
"""

from __future__ import annotations

import shutil
import uuid
from pathlib import Path

import plyvel

from walletlink.core.exceptions import VaultNotFoundError
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)


def _scratch_root(scratch_root: str | Path | None) -> Path:
    if scratch_root is not None:
        return Path(scratch_root)
    from walletlink.config import get_settings

    return get_settings().scratch_dir


def read_all_entries_raw(
    db_path: str | Path,
    *,
    scratch_root: str | Path | None = None,
) -> dict[str, bytes]:
    """
    Return every key/value of the LevelDB store at db_path.

    Keys are decoded as UTF-8 (undecodable bytes replaced); values are raw bytes.
    Raises VaultNotFoundError when db_path does not exist.
    """
    source = Path(db_path)
    if not source.is_dir():
        raise VaultNotFoundError(f"extension store not found: {source}")

    scratch = _scratch_root(scratch_root) / uuid.uuid4().hex
    db = None
    try:
        scratch.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, scratch, ignore=shutil.ignore_patterns("LOCK"))
        db = plyvel.DB(str(scratch), create_if_missing=False)
        entries: dict[str, bytes] = {}
        for key, value in db:
            entries[key.decode("utf-8", errors="replace")] = bytes(value)
        logger.debug("leveldb_snapshot_read", path=str(source), entries=len(entries))
        return entries
    finally:
        if db is not None:
            db.close()
        shutil.rmtree(scratch, ignore_errors=True)


def read_all_entries(
    db_path: str | Path,
    *,
    scratch_root: str | Path | None = None,
) -> dict[str, str]:
    """Text variant of read_all_entries_raw: values decoded as UTF-8 with replacement."""
    raw = read_all_entries_raw(db_path, scratch_root=scratch_root)
    return {key: value.decode("utf-8", errors="replace") for key, value in raw.items()}
