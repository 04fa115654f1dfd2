"""
Pytest tests for Union-Find clustering of known addresses.
"""

from __future__ import annotations

from walletlink.database import ConnectionRecord, TransferRecord
from walletlink.database.models import CONNECTION_DIRECT, CONNECTION_INDIRECT
from walletlink.scanner import UnionFind, build_clusters, compute_clusters, detect_connections

EXTERNAL_X = "0x" + "9" * 40


def test_union_find_groups():
    uf = UnionFind()
    for x in (1, 2, 3, 10, 20):
        uf.add(x)
    uf.union(1, 2)
    uf.union(2, 3)
    uf.union(10, 20)
    assert uf.find(1) == uf.find(3)
    assert uf.find(1) != uf.find(10)
    assert sorted(sorted(g) for g in uf.groups().values()) == [[1, 2, 3], [10, 20]]
    assert 3 in uf
    assert 99 not in uf


def test_union_find_sparse_ids():
    """Ids are arbitrary persisted keys, not a dense range."""
    uf = UnionFind()
    uf.add(1_000_000)
    uf.add(7)
    uf.union(7, 1_000_000)
    assert uf.find(7) == uf.find(1_000_000)


def test_indirect_connections_never_merge():
    connections = [ConnectionRecord(1, 2, CONNECTION_INDIRECT, '{"type": "shared_counterparty"}')]
    assert build_clusters(connections) == []


def test_clusters_sorted_by_size_then_smallest_id():
    connections = [
        ConnectionRecord(10, 11, CONNECTION_DIRECT, "{}"),
        ConnectionRecord(1, 2, CONNECTION_DIRECT, "{}"),
        ConnectionRecord(5, 6, CONNECTION_DIRECT, "{}"),
        ConnectionRecord(6, 7, CONNECTION_DIRECT, "{}"),
        # bridges two clusters only indirectly: stays separate
        ConnectionRecord(2, 5, CONNECTION_INDIRECT, "{}"),
    ]
    clusters = build_clusters(connections)
    assert [c.member_ids for c in clusters] == [[5, 6, 7], [1, 2], [10, 11]]
    assert [c.cluster_id for c in clusters] == [1, 2, 3]
    assert len(clusters[0].connections) == 2


def test_direct_plus_shared_counterparty_scenario(db, add_address):
    """A->X and B->X give one indirect link; adding A->B yields cluster {A,B} with both links attached."""
    a = add_address("0x" + "a" * 40)
    b = add_address("0x" + "b" * 40)
    db.insert_transfer(TransferRecord(a.address, EXTERNAL_X, "ethereum", "ETH", "1", "0x1"))
    db.insert_transfer(TransferRecord(b.address, EXTERNAL_X, "ethereum", "ETH", "1", "0x2"))

    assert detect_connections(db) == 1
    [only] = db.list_connections()
    assert (only.kind, only.address_id_a, only.address_id_b) == (CONNECTION_INDIRECT, a.id, b.id)
    assert compute_clusters(db) == []

    db.insert_transfer(TransferRecord(a.address, b.address, "ethereum", "ETH", "1", "0x3"))
    detect_connections(db)
    [cluster] = compute_clusters(db)

    assert cluster.member_ids == [a.id, b.id]
    assert sorted(c.kind for c in cluster.connections) == [CONNECTION_DIRECT, CONNECTION_INDIRECT]
    as_dict = cluster.to_dict()
    assert [m["address"] for m in as_dict["addresses"]] == [a.address, b.address]
    assert as_dict["id"] == 1
