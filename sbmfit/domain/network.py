"""Graph store: nodes, node types and weighted undirected adjacency.

Built once from already validated input and read-only afterwards, so a
single instance can be shared by any number of partition states and
worker threads.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Sequence

import numpy as np

from sbmfit.errors import StructuralError


class Network:
    """Immutable weighted network with typed nodes."""

    def __init__(
        self,
        nodes: Iterable[tuple[str, str]],
        edges: Iterable[Sequence],
    ):
        self._types: dict[str, str] = {}
        for node_id, node_type in nodes:
            self._types[str(node_id)] = str(node_type)

        self._adj: dict[str, dict[str, float]] = {n: {} for n in self._types}
        self._loops: dict[str, float] = {}
        self._num_edges = 0
        self._total_weight = 0.0

        for edge in edges:
            u, v = str(edge[0]), str(edge[1])
            w = edge[2] if len(edge) > 2 else 1
            if u not in self._types or v not in self._types:
                missing = u if u not in self._types else v
                raise StructuralError(f"Edge references unknown node: {missing}")
            if u == v:
                self._loops[u] = self._loops.get(u, 0) + w
            else:
                self._adj[u][v] = self._adj[u].get(v, 0) + w
                self._adj[v][u] = self._adj[v].get(u, 0) + w
            self._num_edges += 1
            self._total_weight += w

        self._degree = {
            n: sum(nbrs.values()) + 2 * self._loops.get(n, 0)
            for n, nbrs in self._adj.items()
        }
        self._type_list = list(dict.fromkeys(self._types.values()))

        # Cumulative weights for O(log d) weighted neighbor draws
        self._sampling: dict[str, tuple[list[str], np.ndarray]] = {}
        for n, nbrs in self._adj.items():
            if nbrs:
                ids = list(nbrs)
                self._sampling[n] = (ids, np.cumsum([nbrs[i] for i in ids], dtype=float))

    # ── queries ──

    @property
    def nodes(self) -> list[str]:
        return list(self._types)

    @property
    def types(self) -> list[str]:
        """Distinct node types in order of first appearance."""
        return list(self._type_list)

    @property
    def num_nodes(self) -> int:
        return len(self._types)

    @property
    def num_edges(self) -> int:
        return self._num_edges

    @property
    def total_weight(self) -> float:
        return self._total_weight

    def __contains__(self, node: str) -> bool:
        return node in self._types

    def node_type(self, node: str) -> str:
        return self._types[node]

    def neighbors(self, node: str) -> Mapping[str, float]:
        """Read-only view of neighbor -> summed edge weight, self-loops excluded."""
        return MappingProxyType(self._adj[node])

    def self_loop(self, node: str) -> float:
        return self._loops.get(node, 0)

    def degree(self, node: str) -> float:
        """Weighted degree; a self-loop counts twice."""
        return self._degree[node]

    def nodes_of_type(self, node_type: str) -> list[str]:
        return [n for n, t in self._types.items() if t == node_type]

    def edges(self) -> Iterator[tuple[str, str, float]]:
        """Aggregated undirected edges, each reported once."""
        seen: set[str] = set()
        for u, nbrs in self._adj.items():
            for v, w in nbrs.items():
                if v not in seen:
                    yield u, v, w
            seen.add(u)
        for u, w in self._loops.items():
            yield u, u, w

    def sample_neighbor(self, node: str, rng: np.random.Generator) -> str | None:
        """Draw a neighbor with probability proportional to edge weight."""
        entry = self._sampling.get(node)
        if entry is None:
            return None
        ids, cumulative = entry
        idx = int(np.searchsorted(cumulative, rng.random() * cumulative[-1], side="right"))
        return ids[min(idx, len(ids) - 1)]

    def __repr__(self) -> str:
        return (
            f"Network(nodes={self.num_nodes}, edges={self.num_edges}, "
            f"types={self._type_list})"
        )
