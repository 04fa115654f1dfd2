"""
Interactive wallet extraction from local browser profiles.

How to run:
    From project root (with .env configured):
        python -m walletlink.tools.extract_wallets
        python -m walletlink.tools.extract_wallets --family metamask --scan

Passwords are prompted with getpass and never echoed, logged or stored.
After a wrong password the tool offers a retry for that one profile.
Optionally runs a transfer scan afterwards and prints the resulting clusters.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from walletlink.config import get_settings
from walletlink.database import Database, get_database
from walletlink.extraction import ExtractionOrchestrator, ExtractionResult, WalletFamily
from walletlink.extraction.browsers import ExtractionTarget
from walletlink.scanner import ScanOrchestrator, ScanState
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)

MAX_PASSWORD_ATTEMPTS = 3


def _print_targets(targets: list[ExtractionTarget]) -> None:
    print(f"Found {len(targets)} wallet extension(s):")
    for t in targets:
        print(f"  {t.browser:<10} {t.profile:<16} {t.wallet_name} ({t.family.value})")


def _prompt_passwords(families: list[WalletFamily]) -> dict[str, str]:
    passwords: dict[str, str] = {}
    for family in families:
        value = getpass.getpass(f"{family.value} password (empty to skip): ")
        if value:
            passwords[family.value] = value
    return passwords


async def _retry_wrong_passwords(
    orchestrator: ExtractionOrchestrator,
    targets: list[ExtractionTarget],
    result: ExtractionResult,
) -> ExtractionResult:
    """Offer a per-profile retry for every retryable failure. Returns the merged result."""
    merged = ExtractionResult(result.credentials_found, result.addresses_found)
    for err in result.errors:
        if not err.retryable:
            merged.errors.append(err)
            continue
        target = next(
            (t for t in targets if (t.browser, t.profile, t.wallet_name) == (err.browser, err.profile, err.wallet_name)),
            None,
        )
        if target is None:
            merged.errors.append(err)
            continue
        last = err
        for _ in range(MAX_PASSWORD_ATTEMPTS):
            password = getpass.getpass(f"Wrong password for {err.wallet_name} in {err.browser}/{err.profile}. Retry (empty to skip): ")
            if not password:
                break
            retry = await orchestrator.extract_one(
                target.browser, target.profile, target.family, password, wallet_name=target.wallet_name
            )
            merged.credentials_found += retry.credentials_found
            merged.addresses_found += retry.addresses_found
            still_wrong = [e for e in retry.errors if e.retryable]
            merged.errors.extend(e for e in retry.errors if not e.retryable)
            if not still_wrong:
                last = None
                break
            last = still_wrong[0]
        if last is not None:
            merged.errors.append(last)
    return merged


def _print_result(result: ExtractionResult) -> None:
    print(f"New credentials: {result.credentials_found}")
    print(f"New addresses:   {result.addresses_found}")
    for err in result.errors:
        print(f"  error: {err.browser}/{err.profile} {err.wallet_name}: {err.error}")


async def _scan(db: Database) -> None:
    settings = get_settings()
    scan = ScanOrchestrator(db, settings, ScanState())
    result = await scan.run_scan()
    print(
        f"Scan: {result.transfers_inserted} new transfers, "
        f"{result.connections_found} connections, {result.clusters_found} clusters"
    )
    for msg in result.errors:
        print(f"  scan error: {msg}")
    for cluster in scan.clusters():
        addresses = ", ".join(m.address for m in cluster.members)
        print(f"  cluster {cluster.cluster_id}: {addresses}")


async def run(args: argparse.Namespace) -> int:
    db = get_database(args.db) if args.db else get_database()
    orchestrator = ExtractionOrchestrator(db, scratch_root=get_settings().scratch_dir)

    targets = orchestrator.discover()
    if args.family:
        targets = [t for t in targets if t.family.value == args.family]
    if not targets:
        print("No wallet extensions found.")
        return 1
    _print_targets(targets)

    families = sorted({t.family for t in targets}, key=lambda f: f.value)
    passwords = _prompt_passwords(families)
    if not passwords:
        print("No passwords given; nothing to do.")
        return 1

    result = await orchestrator.extract(targets, passwords)
    result = await _retry_wrong_passwords(orchestrator, targets, result)
    _print_result(result)

    if args.scan:
        await _scan(db)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Extract wallet credentials from local browser profiles.")
    parser.add_argument("--family", choices=[f.value for f in WalletFamily], help="Only this wallet family")
    parser.add_argument("--db", help="SQLite database path (default: WALLETLINK_DB_PATH)")
    parser.add_argument("--scan", action="store_true", help="Scan transfers and print clusters after extraction")
    args = parser.parse_args()
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("Interrupted.")
        return 130
    except Exception as e:
        logger.exception("extract_wallets_failed", error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
