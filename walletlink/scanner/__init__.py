"""
Transfer scanning, connection detection and clustering.
"""

from walletlink.scanner.clustering import Cluster, UnionFind, build_clusters, compute_clusters
from walletlink.scanner.connection_detector import detect_connections
from walletlink.scanner.scan_orchestrator import ScanOrchestrator, ScanResult, ScanState
from walletlink.scanner.transfer_fetcher import (
    AlchemyTransferSource,
    HeliusTransferSource,
    ScanProgress,
    TransferFetcher,
)

__all__ = [
    "AlchemyTransferSource",
    "Cluster",
    "HeliusTransferSource",
    "ScanOrchestrator",
    "ScanProgress",
    "ScanResult",
    "ScanState",
    "TransferFetcher",
    "UnionFind",
    "build_clusters",
    "compute_clusters",
    "detect_connections",
]
