"""Service: agglomerative collapse of groups.

Repeatedly merges groups at one level, optionally re-equilibrating with
MCMC sweeps between merge steps, and records the (entropy, group count)
trajectory.  INITIALIZED -> COLLAPSING -> TARGET_REACHED | EXHAUSTED.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace

import numpy as np

from sbmfit.domain.models import CollapseResult, CollapseStatus, TrajectoryRecord
from sbmfit.domain.partition import PartitionState
from sbmfit.errors import ConfigurationError
from sbmfit.services.entropy import EntropyModel
from sbmfit.services.mcmc import MCMCSampler, weighted_choice

log = logging.getLogger(__name__)

EXECUTORS = ("thread", "process")


@dataclass
class CollapseConfig:
    sigma: float = 2.0
    greedy: bool = False
    num_group_proposals: int = 5  # ignored when greedy
    num_mcmc_sweeps: int = 0
    beta: float = 1.5
    eps: float = 0.1
    desired_num_groups: int = 1  # per type partition
    report_all_steps: bool = True
    level: int = 1
    # collapse-run scans only
    parallel: bool = False
    max_workers: int | None = None
    executor: str = "thread"

    def validate(self) -> None:
        """Raise ConfigurationError for any invalid option."""
        if not self.sigma > 0:
            raise ConfigurationError(f"sigma must be positive, got {self.sigma}")
        if self.num_group_proposals < 1:
            raise ConfigurationError(
                f"num_group_proposals must be at least 1, got {self.num_group_proposals}"
            )
        if self.num_mcmc_sweeps < 0:
            raise ConfigurationError(f"num_mcmc_sweeps must be >= 0, got {self.num_mcmc_sweeps}")
        if not self.beta > 0:
            raise ConfigurationError(f"beta must be positive, got {self.beta}")
        if self.eps < 0:
            raise ConfigurationError(f"eps must be >= 0, got {self.eps}")
        if self.desired_num_groups < 1:
            raise ConfigurationError(
                f"desired_num_groups must be at least 1, got {self.desired_num_groups}"
            )
        if self.level < 1:
            raise ConfigurationError(f"level must be at least 1, got {self.level}")
        if self.executor not in EXECUTORS:
            raise ConfigurationError(f"Unknown executor {self.executor!r}; use one of {EXECUTORS}")
        if self.sigma <= 1 and self.num_mcmc_sweeps > 0:
            log.warning(
                "sigma=%s <= 1 with %d MCMC sweeps: collapsing one group per step",
                self.sigma, self.num_mcmc_sweeps,
            )

    def with_target(self, desired_num_groups: int) -> "CollapseConfig":
        return replace(self, desired_num_groups=desired_num_groups)


def merges_for_step(num_groups: int, sigma: float) -> int:
    """Merges the sigma rule asks for at a step with ``num_groups`` groups.

    ``B * (1 - 1 / sigma)`` rounded half up, so 2.5 merges become 3.
    """
    if sigma <= 1:
        return 1
    return max(1, math.floor(num_groups * (1 - 1 / sigma) + 0.5))


class CollapseEngine:
    """Agglomerative merging driven by the entropy model."""

    def __init__(
        self,
        config: CollapseConfig,
        rng: np.random.Generator,
        entropy_model: EntropyModel | None = None,
    ):
        config.validate()
        self.config = config
        self._rng = rng
        self._entropy = entropy_model or EntropyModel()
        self._sampler = MCMCSampler(rng, beta=config.beta, eps=config.eps, entropy_model=self._entropy)

    def collapse(self, state: PartitionState) -> CollapseResult:
        cfg = self.config
        level = cfg.level
        if level > state.num_levels:
            raise ConfigurationError(
                f"Cannot collapse level {level}: hierarchy has {state.num_levels} level(s)"
            )
        num_types = len({state.group_type(g, level) for g in state.groups(level)})
        target = cfg.desired_num_groups * num_types
        start_groups = state.num_groups(level)
        if target > start_groups:
            raise ConfigurationError(
                f"desired_num_groups={cfg.desired_num_groups} x {num_types} type(s) exceeds "
                f"the current {start_groups} groups"
            )

        result = CollapseResult(status=CollapseStatus.INITIALIZED)
        entropy = self._entropy.entropy(state, level)
        last = TrajectoryRecord(0, start_groups, entropy, 0.0, state.snapshot())
        if cfg.report_all_steps:
            result.trajectory.append(last)

        log.info(
            "Collapsing level %d from %d to %d groups (sigma=%s, greedy=%s)",
            level, start_groups, target, cfg.sigma, cfg.greedy,
        )
        result.status = CollapseStatus.COLLAPSING
        step = 0
        exhausted = False
        while True:
            num_groups = state.num_groups(level)
            if num_groups <= target:
                result.status = (
                    CollapseStatus.EXHAUSTED if exhausted else CollapseStatus.TARGET_REACHED
                )
                break

            requested = merges_for_step(num_groups, cfg.sigma)
            # a schedule asking past one group per type runs out of groups
            exhausted = target == num_types and requested > num_groups - num_types
            num_merges = min(requested, num_groups - target)
            mergeable = self._mergeable_types(state, level)
            if cfg.greedy:
                candidates = self._all_pairs(state, level, mergeable)
            else:
                candidates = self._sampled_pairs(state, level, mergeable)

            delta, applied = self._apply_merges(state, candidates, num_merges, level)
            if cfg.num_mcmc_sweeps:
                sweeps = self._sampler.sweep(state, cfg.num_mcmc_sweeps, level=level)
                delta += sweeps.total_delta

            step += 1
            entropy += delta
            last = TrajectoryRecord(step, state.num_groups(level), entropy, delta, state.snapshot())
            if cfg.report_all_steps:
                result.trajectory.append(last)
            log.debug(
                "Step %d: %d merges, %d groups left, entropy %.4f (delta %.4f)",
                step, applied, last.num_groups, entropy, delta,
            )

        if not cfg.report_all_steps:
            result.trajectory.append(last)
        result.final_entropy = entropy
        result.num_groups = state.num_groups(level)
        log.info(
            "Collapse finished (%s) after %d steps: %d groups, entropy %.4f",
            result.status.value, step, result.num_groups, entropy,
        )
        return result

    # ── candidate selection ──

    @staticmethod
    def _mergeable_types(state: PartitionState, level: int) -> dict[str, list[str]]:
        return {
            t: state.groups(level, t)
            for t in state.types
            if state.num_groups_of_type(t, level) > 1
        }

    def _all_pairs(
        self, state: PartitionState, level: int, by_type: dict[str, list[str]]
    ) -> list[tuple[float, int, str, str]]:
        """Merge delta of every unordered same-type pair."""
        candidates = []
        for groups in by_type.values():
            for i, a in enumerate(groups):
                for b in groups[i + 1:]:
                    delta = self._entropy.merge_delta(state, a, b, level)
                    candidates.append((delta, len(candidates), a, b))
        return candidates

    def _sampled_pairs(
        self, state: PartitionState, level: int, by_type: dict[str, list[str]]
    ) -> list[tuple[float, int, str, str]]:
        """Best of ``num_group_proposals`` sampled partners for every group."""
        counts = state.counts(level)
        evaluated: dict[tuple[str, str], float] = {}
        candidates = []
        for group_type, groups in by_type.items():
            for r in groups:
                row = {t: w for t, w in counts.get(r, {}).items() if w > 0}
                best: tuple[float, str] | None = None
                for _ in range(self.config.num_group_proposals):
                    neighbor_group = weighted_choice(row, self._rng) if row else None
                    s = self._sampler.propose_group(state, neighbor_group, group_type, level, exclude=r)
                    key = (r, s) if r < s else (s, r)
                    if key not in evaluated:
                        evaluated[key] = self._entropy.merge_delta(state, r, s, level)
                    if best is None or evaluated[key] < best[0]:
                        best = (evaluated[key], s)
                if best is not None:
                    candidates.append((best[0], len(candidates), r, best[1]))
        return candidates

    def _apply_merges(
        self,
        state: PartitionState,
        candidates: list[tuple[float, int, str, str]],
        num_merges: int,
        level: int,
    ) -> tuple[float, int]:
        """Apply the best non-conflicting merges; returns (true delta, merges made)."""
        consumed: set[str] = set()
        total = 0.0
        applied = 0
        for _, _, a, b in sorted(candidates):
            if applied >= num_merges:
                break
            if a in consumed or b in consumed:
                continue
            if state.group_size(b, level) > state.group_size(a, level):
                a, b = b, a
            total += self._entropy.merge_delta(state, a, b, level)
            state.merge_groups(a, b, level)
            consumed.add(b)
            applied += 1
        return total, applied
