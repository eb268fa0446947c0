"""Shared test fixtures: small networks, partition states and helpers."""

from __future__ import annotations

from itertools import combinations

import numpy as np
import pytest

from sbmfit.domain.network import Network
from sbmfit.domain.partition import PartitionState
from sbmfit.simulate import simulate_block_network


# ── Helpers ──


def assert_counts_consistent(state: PartitionState) -> None:
    """Live count tables match a from-scratch rebuild at every level."""
    for level in range(1, state.num_levels + 1):
        table, degrees = state.recompute_counts(level)
        live = state.counts(level)
        cells = {(a, b) for a, row in table.items() for b in row}
        cells |= {(a, b) for a, row in live.items() for b in row}
        for a, b in cells:
            expected = table.get(a, {}).get(b, 0)
            assert live.get(a, {}).get(b, 0) == pytest.approx(expected, abs=1e-9), (level, a, b)
        live_degrees = state.group_degrees(level)
        for g in set(degrees) | set(live_degrees):
            assert live_degrees.get(g, 0) == pytest.approx(degrees.get(g, 0), abs=1e-9)


def clique_network(num_cliques: int = 2, size: int = 5) -> Network:
    """Disjoint cliques chained together by one bridge edge each."""
    nodes = [(f"c{c}_{i}", "node") for c in range(num_cliques) for i in range(size)]
    edges = [
        (f"c{c}_{i}", f"c{c}_{j}")
        for c in range(num_cliques)
        for i, j in combinations(range(size), 2)
    ]
    edges += [(f"c{c}_0", f"c{c + 1}_1") for c in range(num_cliques - 1)]
    return Network(nodes, edges)


def ring_network(size: int) -> Network:
    """A sparse cycle: every node has degree two."""
    nodes = [(f"n{i}", "node") for i in range(size)]
    edges = [(f"n{i}", f"n{(i + 1) % size}") for i in range(size)]
    return Network(nodes, edges)


# ── Fixtures ──


@pytest.fixture
def rng():
    return np.random.default_rng(7)


@pytest.fixture
def small_network():
    """Two triangles joined by the c-d edge, with a weight-2 e-f edge and a loop on f."""
    nodes = [(n, "node") for n in "abcdef"]
    edges = [
        ("a", "b"),
        ("b", "c"),
        ("a", "c"),
        ("c", "d"),
        ("d", "e"),
        ("e", "f", 2),
        ("d", "f"),
        ("f", "f"),
    ]
    return Network(nodes, edges)


@pytest.fixture
def two_cliques():
    return clique_network(2, 5)


@pytest.fixture
def bipartite_network():
    """People attending events: two communities that share one event."""
    people = [(f"p{i}", "person") for i in range(6)]
    events = [(f"e{i}", "event") for i in range(4)]
    edges = [
        ("p0", "e0"), ("p1", "e0"), ("p2", "e0"),
        ("p0", "e1"), ("p1", "e1"), ("p2", "e1"),
        ("p3", "e2"), ("p4", "e2"), ("p5", "e2"),
        ("p3", "e3"), ("p4", "e3"), ("p5", "e3"),
        ("p2", "e2"),
    ]
    return Network(people + events, edges)


@pytest.fixture(scope="session")
def block_network():
    """Three planted blocks of 40 nodes with strong structure."""
    return simulate_block_network(
        3, 40, p_within=0.4, p_between=0.02, random_seed=11
    ).network


@pytest.fixture
def small_state(small_network):
    return PartitionState(small_network)


@pytest.fixture
def block_state(block_network):
    return PartitionState(block_network)
