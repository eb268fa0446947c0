"""Tests for the Metropolis move sampler."""

import math
import time
from collections import Counter

import numpy as np
import pytest

from sbmfit.domain.partition import PartitionState
from sbmfit.services.entropy import EntropyModel
from sbmfit.errors import StructuralError
from sbmfit.services.mcmc import MCMCSampler, weighted_choice
from tests.conftest import assert_counts_consistent, ring_network


class TestHelpers:
    def test_weighted_choice_skips_zero_weight(self, rng):
        draws = Counter(weighted_choice({"a": 0.0, "b": 1.0, "c": 3.0}, rng) for _ in range(2000))
        assert "a" not in draws
        assert draws["c"] > 2 * draws["b"]


class TestAcceptance:
    def test_improvements_always_accepted(self, rng):
        sampler = MCMCSampler(rng)
        assert all(sampler.accept(d) for d in (-5.0, -0.1, 0.0))

    def test_large_increase_rejected(self, rng):
        sampler = MCMCSampler(rng, beta=10.0)
        assert not any(sampler.accept(50.0) for _ in range(100))

    def test_acceptance_rate_follows_beta(self):
        sampler = MCMCSampler(np.random.default_rng(3), beta=1.0)
        rate = np.mean([sampler.accept(1.0) for _ in range(5000)])
        assert rate == pytest.approx(np.exp(-1.0), abs=0.03)


class TestProposals:
    def test_proposal_respects_type(self, bipartite_network, rng):
        state = PartitionState(bipartite_network, num_groups=2, rng=rng)
        sampler = MCMCSampler(rng)
        for _ in range(100):
            for node in ("p0", "e3"):
                target = sampler.propose(state, node)
                assert state.group_type(target) == state.entity_type(node)

    def test_isolated_node_proposes_uniformly(self, rng):
        from sbmfit.domain.network import Network

        net = Network([("x", "n"), ("y", "n"), ("z", "n")], [("x", "y")])
        state = PartitionState(net)
        sampler = MCMCSampler(rng)
        proposals = {sampler.propose(state, "z") for _ in range(200)}
        assert proposals == set(state.groups())

    def test_eps_zero_follows_edges(self, two_cliques, rng):
        state = PartitionState(two_cliques)
        sampler = MCMCSampler(rng, eps=0.0)
        clique = {state.parent(f"c0_{i}") for i in range(5)}
        # only c0_0 has an edge leaving the first clique
        for _ in range(200):
            assert sampler.propose(state, "c0_2") in clique | {state.parent("c1_1")}

    def test_excluded_group_never_proposed(self, two_cliques, rng):
        state = PartitionState(two_cliques)
        sampler = MCMCSampler(rng)
        r = state.parent("c0_0")
        neighbor_group = state.parent("c0_1")
        for _ in range(200):
            s = sampler.propose_group(state, neighbor_group, "node", 1, exclude=r)
            assert s != r

    def test_exclude_needs_another_group(self, two_cliques):
        state = PartitionState(two_cliques, num_groups=1, rng=np.random.default_rng(0))
        only = state.groups()[0]
        with pytest.raises(StructuralError, match="other than"):
            MCMCSampler(np.random.default_rng(0)).propose_group(state, None, "node", 1, exclude=only)

    def test_proposals_never_list_groups(self, block_network, rng, monkeypatch):
        state = PartitionState(block_network)

        def listing(*args, **kwargs):
            raise AssertionError("groups were listed while proposing")

        monkeypatch.setattr(PartitionState, "groups", listing)
        sampler = MCMCSampler(rng)
        sampler.sweep(state, num_sweeps=1)
        for node in block_network.nodes[:20]:
            sampler.propose(state, node)


class TestSweeps:
    def test_sweep_bookkeeping(self, rng, block_network):
        state = PartitionState(block_network, num_groups=6, rng=rng)
        model = EntropyModel()
        sampler = MCMCSampler(rng, entropy_model=model)
        before = model.entropy(state)
        result = sampler.sweep(state, num_sweeps=3)

        assert len(result.num_moves) == 3
        assert len(result.entropy_deltas) == 3
        assert result.pair_consensus is None
        assert model.entropy(state) - before == pytest.approx(result.total_delta, abs=1e-6)
        state.validate()
        assert_counts_consistent(state)

    def test_attempt_move_reports_outcome(self, small_state, rng):
        sampler = MCMCSampler(rng)
        outcome = sampler.attempt_move(small_state, "a")
        assert outcome.entity == "a"
        if outcome.accepted:
            assert small_state.parent("a") == outcome.to_group
        else:
            assert small_state.parent("a") == outcome.from_group

    def test_pair_consensus(self, two_cliques, rng):
        state = PartitionState(two_cliques, num_groups=2, rng=rng)
        result = MCMCSampler(rng).sweep(state, num_sweeps=4, track_pairs=True)
        assert result.pair_consensus
        for (u, v), share in result.pair_consensus.items():
            assert u < v
            assert 0 < share <= 1

    def test_seeded_sweeps_are_reproducible(self, block_network):
        def run(seed):
            gen = np.random.default_rng(seed)
            state = PartitionState(block_network, num_groups=4, rng=gen)
            MCMCSampler(gen).sweep(state, num_sweeps=2)
            return state.snapshot()

        assert run(5) == run(5)


class TestScaling:
    def test_sweep_cost_grows_with_edges(self):
        def sweep_seconds(size):
            best = math.inf
            for seed in range(3):
                state = PartitionState(ring_network(size))
                sampler = MCMCSampler(np.random.default_rng(seed), beta=1e6)
                start = time.perf_counter()
                sampler.sweep(state)
                best = min(best, time.perf_counter() - start)
            return best

        # singleton groups: four times the nodes and edges should cost ~4x, not ~16x
        assert sweep_seconds(4000) / sweep_seconds(1000) < 9
