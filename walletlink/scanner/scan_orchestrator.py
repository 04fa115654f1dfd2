"""
Scan orchestration: transfer harvesting -> connection detection -> clustering.

Single-flight: at most one scan runs at a time. The ScanState object holds the
running flag, live progress and last result behind a lock; it is passed in by
reference so several orchestrators (or tests) can share or isolate it.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any

from walletlink.config.settings import Settings
from walletlink.core.exceptions import ScanAlreadyRunningError
from walletlink.database import Database
from walletlink.scanner.clustering import Cluster, compute_clusters
from walletlink.scanner.connection_detector import detect_connections
from walletlink.scanner.transfer_fetcher import ScanProgress, TransferFetcher
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)


@dataclass
class ScanResult:
    transfers_found: int = 0
    transfers_inserted: int = 0
    connections_found: int = 0
    clusters_found: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "transfers_found": self.transfers_found,
            "transfers_inserted": self.transfers_inserted,
            "connections_found": self.connections_found,
            "clusters_found": self.clusters_found,
            "errors": list(self.errors),
        }


class ScanState:
    """Mutex-guarded scan status; written only by ScanOrchestrator."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running = False
        self._progress: ScanProgress | None = None
        self._last_result: ScanResult | None = None

    def try_begin(self) -> bool:
        """Claim the running flag. False if a scan is already in progress."""
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._progress = ScanProgress()
            self._last_result = None
            return True

    def finish(self, result: ScanResult) -> None:
        with self._lock:
            self._running = False
            self._progress = None
            self._last_result = result

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def progress(self) -> ScanProgress | None:
        with self._lock:
            return self._progress

    @property
    def last_result(self) -> ScanResult | None:
        with self._lock:
            return self._last_result

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "running": self._running,
                "progress": self._progress.to_dict() if self._progress is not None else None,
                "last_result": self._last_result.to_dict() if self._last_result is not None else None,
            }


class ScanOrchestrator:
    def __init__(
        self,
        db: Database,
        settings: Settings,
        state: ScanState,
        *,
        fetcher: TransferFetcher | None = None,
    ) -> None:
        self._db = db
        self._settings = settings
        self._state = state
        self._fetcher = fetcher or TransferFetcher(db, settings)
        self._task: asyncio.Task[ScanResult] | None = None

    @property
    def state(self) -> ScanState:
        return self._state

    def start_scan(self) -> bool:
        """
        Start a background scan on the running event loop and return at once.

        Returns False (and starts nothing) when a scan is already running.
        Raises RuntimeError without claiming the running flag when called
        outside an event loop.
        """
        loop = asyncio.get_running_loop()
        if not self._state.try_begin():
            logger.info("scan_rejected_already_running")
            return False
        self._task = loop.create_task(self._run_claimed())
        return True

    async def run_scan(self) -> ScanResult:
        """Run a scan to completion. Raises ScanAlreadyRunningError if one is in progress."""
        if not self._state.try_begin():
            raise ScanAlreadyRunningError("scan already in progress")
        return await self._run_claimed()

    async def wait(self) -> ScanResult | None:
        """Await the background scan started by start_scan, if any."""
        if self._task is None:
            return None
        return await self._task

    async def _run_claimed(self) -> ScanResult:
        result = ScanResult()
        progress = self._state.progress or ScanProgress()
        logger.info("scan_started")
        try:
            addresses = self._db.list_addresses()
            await self._fetcher.scan_all(addresses, progress)
            result.transfers_found = progress.transfers_found
            result.transfers_inserted = progress.transfers_inserted
            result.errors.extend(progress.errors)
            result.connections_found = detect_connections(self._db, self._settings.max_fanout)
            result.clusters_found = len(compute_clusters(self._db))
        except Exception as e:
            logger.exception("scan_failed", error_type=type(e).__name__)
            result.errors.append(f"scan failed: {e}")
        finally:
            self._state.finish(result)
        logger.info(
            "scan_finished",
            transfers_found=result.transfers_found,
            transfers_inserted=result.transfers_inserted,
            connections_found=result.connections_found,
            clusters_found=result.clusters_found,
            errors=len(result.errors),
        )
        return result

    def scan_status(self) -> dict[str, Any]:
        """Live state plus persisted counters."""
        status = self._state.snapshot()
        status.update(self._db.counters())
        return status

    def clusters(self) -> list[Cluster]:
        return compute_clusters(self._db)
