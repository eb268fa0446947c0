"""Pure domain records shared by the engine services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ── Partition snapshots ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class SnapshotRow:
    """One (id, parent, level, type) entry of a hierarchy snapshot."""

    id: str
    parent: str | None
    level: int
    type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "parent": self.parent,
            "level": self.level,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SnapshotRow":
        return cls(
            id=str(d["id"]),
            parent=None if d.get("parent") is None else str(d["parent"]),
            level=int(d["level"]),
            type=str(d["type"]),
        )


@dataclass(frozen=True)
class PartitionSnapshot:
    """Immutable record sufficient to rebuild a hierarchy.

    Holds one row per node (level 0) and per group; top-level groups have
    a ``None`` parent.
    """

    rows: tuple[SnapshotRow, ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def rows_at(self, level: int) -> list[SnapshotRow]:
        return [r for r in self.rows if r.level == level]

    def num_groups(self, level: int = 1) -> int:
        """Number of distinct parents of the level-(level-1) rows."""
        return len({r.parent for r in self.rows if r.level == level - 1})

    def parent_map(self, level: int = 0) -> dict[str, str | None]:
        return {r.id: r.parent for r in self.rows if r.level == level}

    def to_records(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.rows]

    def to_dict(self) -> dict[str, Any]:
        return {"rows": self.to_records()}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PartitionSnapshot":
        return cls(rows=tuple(SnapshotRow.from_dict(r) for r in d.get("rows", [])))


# ── Collapse trajectory ─────────────────────────────────────────────────────

class CollapseStatus(str, Enum):
    INITIALIZED = "initialized"
    COLLAPSING = "collapsing"
    TARGET_REACHED = "target_reached"
    EXHAUSTED = "exhausted"


@dataclass
class TrajectoryRecord:
    """A single point on a collapse trajectory."""

    step: int
    num_groups: int
    entropy: float
    entropy_delta: float
    state: PartitionSnapshot
    run: int | None = None
    target: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run": self.run,
            "target": self.target,
            "step": self.step,
            "num_groups": self.num_groups,
            "entropy": self.entropy,
            "entropy_delta": self.entropy_delta,
            "state": self.state,
        }


@dataclass
class CollapseResult:
    """Outcome of one collapse run."""

    trajectory: list[TrajectoryRecord] = field(default_factory=list)
    status: CollapseStatus = CollapseStatus.INITIALIZED
    final_entropy: float = 0.0
    num_groups: int = 0

    @property
    def final(self) -> TrajectoryRecord | None:
        return self.trajectory[-1] if self.trajectory else None


# ── MCMC ────────────────────────────────────────────────────────────────────

@dataclass
class MoveResult:
    """Result of one proposed move."""

    entity: str
    from_group: str
    to_group: str
    delta: float
    accepted: bool


@dataclass
class SweepResult:
    """Aggregate statistics of one or more MCMC sweeps."""

    num_moves: list[int] = field(default_factory=list)  # accepted moves per sweep
    entropy_deltas: list[float] = field(default_factory=list)  # per sweep
    pair_consensus: dict[tuple[str, str], float] | None = None

    @property
    def total_delta(self) -> float:
        return float(sum(self.entropy_deltas))

    @property
    def total_moves(self) -> int:
        return sum(self.num_moves)
