"""Simulated networks with planted block structure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from sbmfit.domain.network import Network
from sbmfit.errors import ConfigurationError

log = logging.getLogger(__name__)


@dataclass
class SimulatedNetwork:
    network: Network
    blocks: dict[str, int] = field(default_factory=dict)  # node -> true block

    @property
    def n_nodes(self) -> int:
        return self.network.num_nodes

    @property
    def n_edges(self) -> int:
        return self.network.num_edges


def _check_probability(name: str, p: float) -> None:
    if not 0.0 <= p <= 1.0:
        raise ConfigurationError(f"{name} = {p} is not in [0, 1]")


def simulate_block_network(
    n_blocks: int = 3,
    n_nodes_per_block: int = 40,
    *,
    p_within: float = 0.3,
    p_between: float = 0.02,
    node_type: str = "node",
    random_seed: int | None = None,
) -> SimulatedNetwork:
    """Draw an undirected Bernoulli block network.

    Nodes are named ``g<block>_<i>``; every pair is connected with
    probability ``p_within`` inside a block and ``p_between`` across blocks.
    """
    if n_blocks < 1 or n_nodes_per_block < 1:
        raise ConfigurationError("n_blocks and n_nodes_per_block must be positive")
    _check_probability("p_within", p_within)
    _check_probability("p_between", p_between)

    rng = np.random.default_rng(random_seed)
    names = [f"g{b}_{i}" for b in range(n_blocks) for i in range(n_nodes_per_block)]
    block_of = np.repeat(np.arange(n_blocks), n_nodes_per_block)

    probs = np.where(block_of[:, None] == block_of[None, :], p_within, p_between)
    draws = rng.random(probs.shape) < probs
    rows, cols = np.triu_indices(len(names), k=1)
    keep = draws[rows, cols]
    edges = [(names[i], names[j]) for i, j in zip(rows[keep], cols[keep])]

    network = Network([(n, node_type) for n in names], edges)
    log.info("Simulated %d-block network: %r", n_blocks, network)
    return SimulatedNetwork(network, {n: int(b) for n, b in zip(names, block_of)})


def simulate_random_network(
    n_nodes: int,
    p: float = 0.1,
    *,
    node_type: str = "node",
    random_seed: int | None = None,
) -> Network:
    """Erdős–Rényi network with no block structure."""
    return simulate_block_network(
        1, n_nodes, p_within=p, p_between=0.0, node_type=node_type, random_seed=random_seed
    ).network
