"""
Connection detection between known (extracted) addresses from stored transfers.

Direct: a transfer whose both endpoints are known addresses. One connection per
unordered pair; the first transfer seen is kept as evidence.

Indirect: an external counterparty that transacted with several known
addresses. Counterparties touching more than max_fanout known addresses are
treated as exchanges / routers / bridges and ignored.

The whole connection set is recomputed on every run.
"""

from __future__ import annotations

import json
from collections import defaultdict
from itertools import combinations

from walletlink.database import ConnectionRecord, Database, TransferRecord
from walletlink.database.models import CONNECTION_DIRECT, CONNECTION_INDIRECT, normalize_address
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_FANOUT = 10
MIN_FANOUT = 2


def _direct_evidence(transfer: TransferRecord) -> str:
    return json.dumps(
        {
            "type": "direct_transfer",
            "chain": transfer.chain,
            "token": transfer.token,
            "tx_hash": transfer.tx_hash,
        }
    )


def _indirect_evidence(external_address: str) -> str:
    return json.dumps({"type": "shared_counterparty", "external_address": external_address})


def find_direct_connections(
    transfers: list[TransferRecord],
    address_ids: dict[str, int],
) -> list[ConnectionRecord]:
    """One canonical connection per unordered pair of distinct known addresses."""
    seen: set[tuple[int, int]] = set()
    out: list[ConnectionRecord] = []
    for t in transfers:
        from_id = address_ids.get(normalize_address(t.from_address))
        to_id = address_ids.get(normalize_address(t.to_address))
        if from_id is None or to_id is None or from_id == to_id:
            continue
        pair = (min(from_id, to_id), max(from_id, to_id))
        if pair in seen:
            continue
        seen.add(pair)
        out.append(ConnectionRecord(pair[0], pair[1], CONNECTION_DIRECT, _direct_evidence(t)))
    return out


def counterparty_map(
    transfers: list[TransferRecord],
    address_ids: dict[str, int],
) -> dict[str, set[int]]:
    """External address -> known address ids it transacted with (either direction)."""
    counterparties: dict[str, set[int]] = defaultdict(set)
    for t in transfers:
        from_norm = normalize_address(t.from_address)
        to_norm = normalize_address(t.to_address)
        from_id = address_ids.get(from_norm)
        to_id = address_ids.get(to_norm)
        if from_id is not None and to_id is None:
            counterparties[to_norm].add(from_id)
        elif to_id is not None and from_id is None:
            counterparties[from_norm].add(to_id)
    return counterparties


def find_indirect_connections(
    counterparties: dict[str, set[int]],
    max_fanout: int = DEFAULT_MAX_FANOUT,
) -> list[ConnectionRecord]:
    """One connection per pair of known ids sharing a counterparty with fan-out in [2, max_fanout]."""
    out: list[ConnectionRecord] = []
    for external, ids in counterparties.items():
        if len(ids) < MIN_FANOUT or len(ids) > max_fanout:
            continue
        evidence = _indirect_evidence(external)
        for a, b in combinations(sorted(ids), 2):
            out.append(ConnectionRecord(a, b, CONNECTION_INDIRECT, evidence))
    return out


def detect_connections(db: Database, max_fanout: int = DEFAULT_MAX_FANOUT) -> int:
    """
    Rebuild the connection table from all stored transfers.

    Returns the number of connections written.
    """
    address_ids = {normalize_address(a.address): a.id for a in db.list_addresses() if a.id is not None}
    transfers = db.list_transfers()

    direct = find_direct_connections(transfers, address_ids)
    counterparties = counterparty_map(transfers, address_ids)
    indirect = find_indirect_connections(counterparties, max_fanout)
    skipped = sum(1 for ids in counterparties.values() if len(ids) > max_fanout)

    written = db.replace_connections(direct + indirect)
    logger.info(
        "connections_detected",
        known_addresses=len(address_ids),
        transfers=len(transfers),
        direct=len(direct),
        indirect=len(indirect),
        high_fanout_skipped=skipped,
        written=written,
    )
    return written
