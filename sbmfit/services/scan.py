"""Service: collapse-run scan over target group counts.

Every run starts from its own clone of the same initial state and draws
from its own generator seeded with ``(seed, run_index)``, so a parallel scan
follows exactly the same algorithmic path as a sequential one. Runs never
share mutable state; results are joined once every run has finished.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable

import numpy as np

from sbmfit.domain.models import CollapseResult, TrajectoryRecord
from sbmfit.domain.partition import PartitionState
from sbmfit.services.collapse import CollapseConfig, CollapseEngine

log = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Output slot of one run; holds either a result or the run's error."""

    run: int
    target: int
    result: CollapseResult | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScanResult:
    runs: list[RunResult] = field(default_factory=list)

    @property
    def records(self) -> list[TrajectoryRecord]:
        """Trajectories of the successful runs, concatenated in run order."""
        return [
            rec
            for run in self.runs
            if run.result is not None
            for rec in run.result.trajectory
        ]

    @property
    def failures(self) -> list[RunResult]:
        return [run for run in self.runs if not run.ok]

    def table(self) -> list[dict[str, Any]]:
        """Rows with columns run, target, step, num_groups, entropy, entropy_delta, state."""
        return [rec.to_dict() for rec in self.records]


def _execute_run(
    initial: PartitionState,
    config: CollapseConfig,
    target: int,
    seed: int,
    run: int,
) -> RunResult:
    state = initial.clone()
    rng = np.random.default_rng([seed, run])
    try:
        result = CollapseEngine(config.with_target(target), rng).collapse(state)
    except Exception as exc:
        log.warning("Collapse run %d (target %d) failed: %s", run, target, exc)
        return RunResult(run=run, target=target, error=exc)
    for rec in result.trajectory:
        rec.run = run
        rec.target = target
    return RunResult(run=run, target=target, result=result)


def _make_executor(config: CollapseConfig) -> Executor:
    if config.executor == "process":
        return ProcessPoolExecutor(max_workers=config.max_workers)
    return ThreadPoolExecutor(max_workers=config.max_workers)


def collapse_run(
    state: PartitionState,
    targets: Iterable[int],
    config: CollapseConfig | None = None,
    seed: int | None = None,
) -> ScanResult:
    """Run one independent collapse per target group count.

    ``state`` itself is never mutated. Duplicate targets are allowed and
    give repeated runs for stability checks.
    """
    config = config or CollapseConfig()
    config.validate()
    targets = [int(t) for t in targets]
    if seed is None:
        seed = int(np.random.SeedSequence().entropy % 2**63)

    log.info(
        "Scanning %d collapse runs (targets %s, parallel=%s)",
        len(targets), targets, config.parallel,
    )
    if config.parallel and len(targets) > 1:
        runs: list[RunResult] = []
        with _make_executor(config) as pool:
            futures = [
                pool.submit(_execute_run, state, config, target, seed, run)
                for run, target in enumerate(targets)
            ]
            for run, (target, future) in enumerate(zip(targets, futures)):
                try:
                    runs.append(future.result())
                except Exception as exc:
                    log.warning("Collapse run %d (target %d) failed: %s", run, target, exc)
                    runs.append(RunResult(run=run, target=target, error=exc))
    else:
        runs = [
            _execute_run(state, config, target, seed, run)
            for run, target in enumerate(targets)
        ]

    scan = ScanResult(runs=runs)
    log.info("Scan complete: %d runs, %d failed", len(runs), len(scan.failures))
    return scan
