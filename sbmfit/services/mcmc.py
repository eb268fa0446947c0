"""Service: Metropolis MCMC move sampler.

Proposals follow the neighbor-biased scheme: draw a weighted neighbor of
the entity, look at that neighbor's group ``t``, and then either jump to a
uniformly chosen group (probability ``eps * B / (e_t + eps * B)``) or
follow a random edge out of ``t``. Moves are accepted with probability
``min(1, exp(-beta * delta))``.

All randomness comes from the generator handed to the sampler.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from itertools import combinations

import numpy as np

from sbmfit.domain.models import MoveResult, SweepResult
from sbmfit.domain.partition import PartitionState
from sbmfit.errors import StructuralError
from sbmfit.services.entropy import EntropyModel

log = logging.getLogger(__name__)


def weighted_choice(weights: dict[str, float], rng: np.random.Generator) -> str:
    """Draw a key with probability proportional to its value."""
    keys = list(weights)
    cumulative = np.cumsum([weights[k] for k in keys], dtype=float)
    idx = int(np.searchsorted(cumulative, rng.random() * cumulative[-1], side="right"))
    return keys[min(idx, len(keys) - 1)]


class MCMCSampler:
    """Proposes and accepts single-entity moves between groups."""

    def __init__(
        self,
        rng: np.random.Generator,
        *,
        beta: float = 1.5,
        eps: float = 0.1,
        entropy_model: EntropyModel | None = None,
    ):
        self._rng = rng
        self.beta = beta
        self.eps = eps
        self._entropy = entropy_model or EntropyModel()

    # ── proposals ──

    def sample_neighbor(self, state: PartitionState, entity: str, level: int) -> str | None:
        """Weighted random neighbor of an entity at ``level`` (0 = base nodes)."""
        if level == 0:
            return state.network.sample_neighbor(entity, self._rng)
        row = {k: w for k, w in state.entity_row(entity, level).items() if w > 0}
        return weighted_choice(row, self._rng) if row else None

    def propose_group(
        self,
        state: PartitionState,
        neighbor_group: str | None,
        group_type: str,
        level: int,
        exclude: str | None = None,
    ) -> str:
        """Pick a ``group_type`` destination given the group of a sampled neighbor.

        ``exclude`` is never returned; it needs at least one other group of
        the type. The cost is bounded by the size of the neighbor group's
        count row, never by the number of groups.
        """
        num_groups = state.num_groups_of_type(group_type, level)
        if exclude is not None and num_groups < 2:
            raise StructuralError(f"No {group_type!r} group other than {exclude!r} at level {level}")
        if neighbor_group is not None:
            e_t = state.group_degrees(level).get(neighbor_group, 0)
            jump = self.eps * num_groups / (e_t + self.eps * num_groups) if self.eps > 0 else 0.0
            if not self._rng.random() < jump:
                row = {
                    s: w
                    for s, w in state.counts(level).get(neighbor_group, {}).items()
                    if w > 0 and s != exclude and state.group_type(s, level) == group_type
                }
                if row:
                    return weighted_choice(row, self._rng)
        while True:
            group = state.random_group(group_type, self._rng, level)
            if group != exclude:
                return group

    def propose(self, state: PartitionState, entity: str, level: int = 1) -> str:
        """Candidate ``level`` group for an entity at ``level - 1``."""
        group_type = state.entity_type(entity, level - 1)
        neighbor = self.sample_neighbor(state, entity, level - 1)
        neighbor_group = None if neighbor is None else state.parent(neighbor, level)
        return self.propose_group(state, neighbor_group, group_type, level)

    # ── acceptance ──

    def accept(self, delta: float) -> bool:
        """Metropolis rule: min(1, exp(-beta * delta))."""
        if delta <= 0:
            return True
        return self._rng.random() < math.exp(-self.beta * delta)

    def attempt_move(self, state: PartitionState, entity: str, level: int = 1) -> MoveResult:
        source = state.parent(entity, level)
        target = self.propose(state, entity, level)
        if target == source:
            return MoveResult(entity, source, target, 0.0, False)
        delta = self._entropy.move_delta(state, entity, target, level)
        accepted = self.accept(delta)
        if accepted:
            state.move(entity, target, level)
        return MoveResult(entity, source, target, delta, accepted)

    # ── sweeps ──

    def sweep(
        self,
        state: PartitionState,
        num_sweeps: int = 1,
        level: int = 1,
        track_pairs: bool = False,
    ) -> SweepResult:
        """Offer every entity at ``level - 1`` one move per sweep.

        Entities are visited in a fresh random order each sweep and moves
        apply immediately, so later proposals see earlier moves.
        """
        result = SweepResult()
        pair_counts: Counter[tuple[str, str]] = Counter()

        for sweep_idx in range(num_sweeps):
            entities = state.entities(level)
            moves = 0
            total = 0.0
            for idx in self._rng.permutation(len(entities)):
                outcome = self.attempt_move(state, entities[int(idx)], level)
                if outcome.accepted:
                    moves += 1
                    total += outcome.delta
            result.num_moves.append(moves)
            result.entropy_deltas.append(total)
            log.debug(
                "Sweep %d at level %d: %d moves, entropy delta %.4f",
                sweep_idx, level, moves, total,
            )

            if track_pairs:
                for group in state.groups(level):
                    for pair in combinations(sorted(state.members(group, level)), 2):
                        pair_counts[pair] += 1

        if track_pairs:
            result.pair_consensus = {
                pair: count / num_sweeps for pair, count in pair_counts.items()
            } if num_sweeps else {}
        return result
