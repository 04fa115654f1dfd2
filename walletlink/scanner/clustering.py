"""
Cluster building: group known addresses that belong to the same owner.

Only direct connections merge addresses (Union-Find). Indirect connections are
supplementary evidence: attached to a cluster when both endpoints are members,
never used to join clusters.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable

from walletlink.database import ClusterMember, ConnectionRecord, Database
from walletlink.database.models import CONNECTION_DIRECT
from walletlink.walletlink_logging import get_logger

logger = get_logger(__name__)


class UnionFind:
    """Disjoint sets over arbitrary hashable ids; path compression and union by rank."""

    def __init__(self) -> None:
        self._parent: dict[Hashable, Hashable] = {}
        self._rank: dict[Hashable, int] = {}

    def __contains__(self, x: Hashable) -> bool:
        return x in self._parent

    def add(self, x: Hashable) -> None:
        if x not in self._parent:
            self._parent[x] = x
            self._rank[x] = 0

    def find(self, x: Hashable) -> Hashable:
        root = x
        while self._parent[root] != root:
            root = self._parent[root]
        while x != root:
            self._parent[x], x = root, self._parent[x]
        return root

    def union(self, x: Hashable, y: Hashable) -> None:
        rx, ry = self.find(x), self.find(y)
        if rx == ry:
            return
        if self._rank[rx] < self._rank[ry]:
            rx, ry = ry, rx
        self._parent[ry] = rx
        if self._rank[rx] == self._rank[ry]:
            self._rank[rx] += 1

    def groups(self) -> dict[Hashable, list[Hashable]]:
        out: dict[Hashable, list[Hashable]] = defaultdict(list)
        for x in self._parent:
            out[self.find(x)].append(x)
        return dict(out)


@dataclass
class Cluster:
    """
    Addresses inferred to share an owner.

    cluster_id: 1-based position after sorting (largest first); not persisted.
    member_ids: address ids, ascending.
    connections: every stored connection with both endpoints in the cluster.
    """

    cluster_id: int
    member_ids: list[int]
    connections: list[ConnectionRecord] = field(default_factory=list)
    members: list[ClusterMember] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.cluster_id,
            "member_ids": self.member_ids,
            "addresses": [m.to_dict() for m in self.members],
            "connections": [c.to_dict() for c in self.connections],
        }


def build_clusters(connections: Iterable[ConnectionRecord]) -> list[Cluster]:
    """Union direct connections; drop singletons; sort by size desc, then smallest member id."""
    connections = list(connections)
    uf = UnionFind()
    for c in connections:
        uf.add(c.address_id_a)
        uf.add(c.address_id_b)
        if c.kind == CONNECTION_DIRECT:
            uf.union(c.address_id_a, c.address_id_b)

    groups = [sorted(members) for members in uf.groups().values() if len(members) >= 2]
    groups.sort(key=lambda ids: (-len(ids), ids[0]))

    clusters: list[Cluster] = []
    for index, member_ids in enumerate(groups, start=1):
        member_set = set(member_ids)
        clusters.append(
            Cluster(
                cluster_id=index,
                member_ids=member_ids,
                connections=[
                    c for c in connections if c.address_id_a in member_set and c.address_id_b in member_set
                ],
            )
        )
    return clusters


def compute_clusters(db: Database) -> list[Cluster]:
    """Clusters from the stored connections, with address and credential details per member."""
    clusters = build_clusters(db.list_connections())
    if not clusters:
        return []
    details = db.get_cluster_members(i for c in clusters for i in c.member_ids)
    for cluster in clusters:
        cluster.members = [details[i] for i in cluster.member_ids if i in details]
    logger.debug("clusters_computed", clusters=len(clusters))
    return clusters
