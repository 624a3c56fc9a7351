"""Collapse near-duplicate search hits into clusters.

Two candidates join when their mutual cosine similarity exceeds the cluster
threshold; membership is transitive (single linkage via union-find). Each
cluster is represented by its highest-scoring member.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from .embeddings import Neighbor, similarity_matrix


class UnionFind:
    """Disjoint sets over 0..n-1 with path compression and union by rank."""

    def __init__(self, n: int) -> None:
        self.parent = list(range(n))
        self.rank = [0] * n
        self.n = n

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, x: int, y: int) -> bool:
        px, py = self.find(x), self.find(y)
        if px == py:
            return False
        if self.rank[px] < self.rank[py]:
            px, py = py, px
        self.parent[py] = px
        if self.rank[px] == self.rank[py]:
            self.rank[px] += 1
        return True

    def components(self) -> List[List[int]]:
        groups: Dict[int, List[int]] = defaultdict(list)
        for i in range(self.n):
            groups[self.find(i)].append(i)
        return list(groups.values())


@dataclass
class Cluster:
    representative: Neighbor
    members: List[Neighbor] = field(default_factory=list)

    @property
    def member_ids(self) -> List[str]:
        return [m.interaction_id for m in self.members]


def cluster_neighbors(
    candidates: Sequence[Neighbor],
    vectors: Dict[str, np.ndarray],
    threshold: float,
) -> List[Cluster]:
    """Group ``candidates`` (already ranked best-first) into clusters.

    Candidates without a vector stay singletons. Clusters come back in the
    order of their representatives, which keeps the input ranking.
    """
    n = len(candidates)
    if n == 0:
        return []

    uf = UnionFind(n)
    indexed = [i for i, c in enumerate(candidates) if c.interaction_id in vectors]
    if len(indexed) > 1:
        sims = similarity_matrix(np.vstack([vectors[candidates[i].interaction_id] for i in indexed]))
        upper_rows, upper_cols = np.triu_indices(len(indexed), k=1)
        close = sims[upper_rows, upper_cols] > threshold
        for a, b in zip(upper_rows[close].tolist(), upper_cols[close].tolist()):
            uf.union(indexed[a], indexed[b])

    # Input order is rank order, so the lowest index in a group is its best member.
    groups = sorted(sorted(members) for members in uf.components())
    return [
        Cluster(representative=candidates[members[0]], members=[candidates[i] for i in members])
        for members in groups
    ]
