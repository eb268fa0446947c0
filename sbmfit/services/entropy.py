"""Service: degree-corrected SBM entropy.

For the partition of level L-1 entities into level L groups:

    S = -E - sum_i lgamma(k_i + 1) - 1/2 sum_rs e_rs ln e_rs + sum_r e_r ln e_r

with E the total edge weight, k_i the entity degrees, e_rs the count table
(ordered pairs) and e_r the group degrees. Lower is a better fit. Empty
cells follow the 0 ln 0 = 0 convention, so the value is finite for every
partition, including a single group or an edgeless network.

Deltas are evaluated from the same ChangeSet the partition state applies,
touching only the cells a move or merge would edit.
"""

from __future__ import annotations

import logging
import math

from sbmfit.domain.partition import ZERO_TOL, ChangeSet, PartitionState

log = logging.getLogger(__name__)


def xlogx(x: float) -> float:
    return x * math.log(x) if x > ZERO_TOL else 0.0


class EntropyModel:
    """Full and incremental entropy evaluation."""

    def entropy(self, state: PartitionState, level: int = 1) -> float:
        """Full evaluation, O(non-zero cells) at ``level``."""
        counts = state.counts(level)
        degree_term = sum(
            math.lgamma(state.entity_degree(e, level - 1) + 1) for e in state.entities(level)
        )
        edge_term = sum(xlogx(w) for row in counts.values() for w in row.values())
        group_term = sum(xlogx(d) for d in state.group_degrees(level).values())
        return -state.network.total_weight - degree_term - 0.5 * edge_term + group_term

    def delta(self, state: PartitionState, changes: ChangeSet) -> float:
        """Entropy change if ``changes`` were applied to the state's count table."""
        counts = state.counts(changes.level)
        degrees = state.group_degrees(changes.level)
        edge_delta = 0.0
        for (a, b), dv in changes.cells.items():
            if not dv:
                continue
            old = counts.get(a, {}).get(b, 0)
            edge_delta += xlogx(old + dv) - xlogx(old)
        group_delta = 0.0
        for g, dv in changes.degrees.items():
            if not dv:
                continue
            old = degrees.get(g, 0)
            group_delta += xlogx(old + dv) - xlogx(old)
        return -0.5 * edge_delta + group_delta

    def move_delta(self, state: PartitionState, entity: str, target: str, level: int = 1) -> float:
        """Change from moving ``entity`` into ``target``; O(entity degree)."""
        if state.parent(entity, level) == target:
            return 0.0
        return self.delta(state, state.move_changes(entity, target, level))

    def merge_delta(self, state: PartitionState, group_a: str, group_b: str, level: int = 1) -> float:
        """Change from folding ``group_b`` into ``group_a``."""
        return self.delta(state, state.merge_changes(group_a, group_b, level))
