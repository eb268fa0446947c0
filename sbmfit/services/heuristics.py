"""Service: choose the best point on a collapse trajectory.

Records are reduced to one point per distinct group count (the lowest
entropy record for that count) and ordered by ascending group count. The
scored series is either the entropy itself or, by default, the collapse
cost ``(S(n_i) - S(n_{i+1})) / (n_{i+1} - n_i)``: the entropy lost per
merge when dropping to ``n_i`` groups from the next larger count. The
largest count has no cost and is left out.

Every heuristic maps ``(values, num_groups)`` to a score where higher is
better; a point with an undefined score is never chosen.
"""

from __future__ import annotations

import inspect
import logging
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Union

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from sbmfit.domain.models import TrajectoryRecord
from sbmfit.domain.partition import PartitionState
from sbmfit.errors import ConfigurationError

log = logging.getLogger(__name__)

ScoreFn = Callable[[np.ndarray, np.ndarray], np.ndarray]

ROLLING_WINDOW = 3
RATIO_WINDOW = 2
TREND_HALF_WIDTH = 2
NLS_MIN_RUN = 4


class Heuristic(str, Enum):
    LOWEST = "lowest"
    DEV_FROM_ROLLING_MEAN = "dev_from_rolling_mean"
    DELTA_RATIO = "delta_ratio"
    TREND_DEVIATION = "trend_deviation"
    NLS_RESIDUAL = "nls_residual"


# ── built-in scores ──


def score_lowest(values: np.ndarray, num_groups: np.ndarray) -> np.ndarray:
    return -values


def score_dev_from_rolling_mean(values: np.ndarray, num_groups: np.ndarray) -> np.ndarray:
    """How far each point drops below the trailing rolling mean (current point included)."""
    scores = np.empty_like(values)
    for i in range(len(values)):
        window = values[max(0, i - ROLLING_WINDOW + 1): i + 1]
        scores[i] = window.mean() - values[i]
    return scores


def score_delta_ratio(values: np.ndarray, num_groups: np.ndarray) -> np.ndarray:
    """Mean of the values just before a point over the mean from the point on."""
    scores = np.full(len(values), np.nan)
    for i in range(1, len(values)):
        before = values[max(0, i - RATIO_WINDOW): i].mean()
        after = values[i: i + RATIO_WINDOW].mean()
        with np.errstate(divide="ignore", invalid="ignore"):
            scores[i] = np.divide(before, after)
    return scores


def score_trend_deviation(values: np.ndarray, num_groups: np.ndarray) -> np.ndarray:
    """Distance below a linear trend fit to the neighbors on each side."""
    x = num_groups.astype(float)
    scores = np.full(len(values), np.nan)
    for i in range(len(values)):
        idx = [
            j
            for j in range(i - TREND_HALF_WIDTH, i + TREND_HALF_WIDTH + 1)
            if j != i and 0 <= j < len(values)
        ]
        if len(idx) >= 2:
            slope, intercept = np.polyfit(x[idx], values[idx], 1)
            scores[i] = slope * x[i] + intercept - values[i]
        elif idx:
            scores[i] = values[idx[0]] - values[i]
    return scores


def _leading_run(num_groups: np.ndarray) -> int:
    """Length of the run of consecutive group counts starting at the smallest."""
    steps = np.flatnonzero(np.diff(num_groups) != 1)
    return int(steps[0]) + 1 if len(steps) else len(num_groups)


def score_nls_residual(values: np.ndarray, num_groups: np.ndarray) -> np.ndarray:
    """Negative residual from a least-squares fit of ``a + b * log(n)``.

    The fit and the scores cover the leading run of consecutive group
    counts, where every count was visited; counts past the first gap are
    left unscored. A run shorter than ``NLS_MIN_RUN`` falls back to the
    whole series.
    """
    if len(values) < 2:
        raise ConfigurationError("nls_residual needs at least two points to fit")
    window = _leading_run(num_groups)
    if window < NLS_MIN_RUN:
        window = len(values)
    x = num_groups[:window].astype(float)
    y = values[:window]

    def model(n, a, b):
        return a + b * np.log(n)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", OptimizeWarning)
        (a, b), _ = curve_fit(model, x, y, p0=(float(y.max()), -0.5))
    scores = np.full(len(values), np.nan)
    scores[:window] = model(x, a, b) - y
    return scores


_BUILTINS: dict[Heuristic, ScoreFn] = {
    Heuristic.LOWEST: score_lowest,
    Heuristic.DEV_FROM_ROLLING_MEAN: score_dev_from_rolling_mean,
    Heuristic.DELTA_RATIO: score_delta_ratio,
    Heuristic.TREND_DEVIATION: score_trend_deviation,
    Heuristic.NLS_RESIDUAL: score_nls_residual,
}


def _positional_arity(fn: Callable) -> int:
    """Required positional parameters of ``fn``; unknown signatures count as one."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return 1
    count = 0
    for p in params:
        if p.kind == p.VAR_POSITIONAL:
            return max(count, 2)
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty:
            count += 1
    return count


@dataclass(frozen=True)
class Scorer:
    """A built-in heuristic or a custom two-argument score function."""

    name: str
    fn: ScoreFn
    heuristic: Heuristic | None = None

    @classmethod
    def resolve(cls, value: "HeuristicLike") -> "Scorer":
        if isinstance(value, Scorer):
            return value
        if isinstance(value, str):
            try:
                heuristic = Heuristic(value)
            except ValueError:
                choices = ", ".join(h.value for h in Heuristic)
                raise ConfigurationError(
                    f"Unknown heuristic {value!r}; choose one of: {choices}"
                ) from None
            return cls(name=heuristic.value, fn=_BUILTINS[heuristic], heuristic=heuristic)
        if callable(value):
            if _positional_arity(value) == 1:
                def fn(values, num_groups, _one_arg=value):
                    return _one_arg(values)
            else:
                fn = value
            return cls(name=getattr(value, "__name__", "custom"), fn=fn)
        raise ConfigurationError(f"Heuristic must be a name or a callable, got {type(value).__name__}")

    def score(self, values: np.ndarray, num_groups: np.ndarray) -> np.ndarray:
        scores = np.asarray(self.fn(values, num_groups), dtype=float)
        if scores.shape != values.shape:
            raise ConfigurationError(
                f"Heuristic {self.name!r} returned {scores.shape} scores for {values.shape} points"
            )
        return scores


HeuristicLike = Union[str, Heuristic, Scorer, Callable[..., np.ndarray]]


@dataclass
class ScoredPoint:
    num_groups: int
    value: float
    score: float
    record: TrajectoryRecord


@dataclass
class Selection:
    """The chosen record plus every scored point for inspection."""

    record: TrajectoryRecord
    score: float
    heuristic: str
    points: list[ScoredPoint] = field(default_factory=list)

    @property
    def num_groups(self) -> int:
        return self.record.num_groups


def representative_points(records: Iterable[TrajectoryRecord]) -> list[TrajectoryRecord]:
    """Lowest-entropy record per group count, by ascending count."""
    best: dict[int, TrajectoryRecord] = {}
    for rec in records:
        current = best.get(rec.num_groups)
        if current is None or rec.entropy < current.entropy:
            best[rec.num_groups] = rec
    return [best[n] for n in sorted(best)]


def choose_best(
    records: Iterable[TrajectoryRecord],
    heuristic: HeuristicLike = Heuristic.DEV_FROM_ROLLING_MEAN,
    *,
    use_entropy_value: bool = False,
    min_num_groups: int | None = None,
    max_num_groups: int | None = None,
) -> Selection:
    """Score a trajectory and return its best point within the bounds."""
    scorer = Scorer.resolve(heuristic)
    points = representative_points(records)
    entropies = np.array([p.entropy for p in points], dtype=float)
    num_groups = np.array([p.num_groups for p in points], dtype=int)

    if use_entropy_value:
        values = entropies
    else:
        # entropy lost per merge, so gaps between visited counts do not inflate a cost
        values = (entropies[:-1] - entropies[1:]) / np.diff(num_groups)
        num_groups = num_groups[:-1]
        points = points[:-1]
    if len(points) == 0:
        raise ConfigurationError("Not enough distinct group counts to score the trajectory")

    scores = scorer.score(values, num_groups)
    eligible = np.ones(len(points), dtype=bool)
    if min_num_groups is not None:
        eligible &= num_groups >= min_num_groups
    if max_num_groups is not None:
        eligible &= num_groups <= max_num_groups
    if not eligible.any():
        raise ConfigurationError(
            f"No trajectory point has between {min_num_groups} and {max_num_groups} groups"
        )

    defined = eligible & ~np.isnan(scores)
    if not defined.any():
        raise ConfigurationError(f"Heuristic {scorer.name!r} left every eligible point unscored")
    best = int(np.argmax(np.where(defined, scores, -np.inf)))

    scored = [
        ScoredPoint(int(n), float(v), float(s), rec)
        for n, v, s, rec in zip(num_groups, values, scores, points)
    ]
    log.info(
        "Heuristic %s chose %d groups (score %.4f)",
        scorer.name, points[best].num_groups, scores[best],
    )
    return Selection(record=points[best], score=float(scores[best]), heuristic=scorer.name, points=scored)


def select_best_state(
    state: PartitionState,
    records: Iterable[TrajectoryRecord],
    heuristic: HeuristicLike = Heuristic.DEV_FROM_ROLLING_MEAN,
    **kwargs,
) -> Selection:
    """Choose the best point and load its snapshot into ``state``."""
    selection = choose_best(records, heuristic, **kwargs)
    state.restore(selection.record.state)
    return selection
