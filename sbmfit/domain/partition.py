"""Hierarchical partition state.

Level 0 holds the network nodes, level 1 their groups, level 2 the groups
of groups, and so on. Every level is an id-indexed table: parents are
stored as ids, never as object references, so cloning is a plain copy.

Each level L >= 1 also carries a connection-count table ``e[r][s]`` of
summed edge weight between its groups (``e[r][r]`` is twice the internal
weight) and the group degrees ``e_r``. Both are kept current by every
structural mutation.

Throughout, ``level`` names a grouping level: ``move(x, g, level=1)`` moves
a level-0 node ``x`` into the level-1 group ``g``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping

import numpy as np

from sbmfit.domain.models import PartitionSnapshot, SnapshotRow
from sbmfit.domain.network import Network
from sbmfit.errors import StructuralError

log = logging.getLogger(__name__)

# Cells whose magnitude falls below this are treated as empty
ZERO_TOL = 1e-12

CountTable = dict[str, dict[str, float]]


@dataclass
class ChangeSet:
    """Pending edits to one level's count table and group degrees."""

    level: int
    cells: dict[tuple[str, str], float] = field(default_factory=lambda: defaultdict(int))
    degrees: dict[str, float] = field(default_factory=lambda: defaultdict(int))


def move_changes(
    level: int,
    neighbor_weights: dict[str, float],
    self_weight: float,
    degree: float,
    source: str,
    target: str,
) -> ChangeSet:
    """Edits caused by moving an entity from ``source`` to ``target``.

    ``neighbor_weights`` maps groups at ``level`` to the weight between the
    entity and that group's other members.
    """
    cs = ChangeSet(level)
    cells = cs.cells
    r, s = source, target
    for t, w in neighbor_weights.items():
        if t == r:
            cells[(r, r)] -= 2 * w
            cells[(r, s)] += w
            cells[(s, r)] += w
        elif t == s:
            cells[(r, s)] -= w
            cells[(s, r)] -= w
            cells[(s, s)] += 2 * w
        else:
            cells[(r, t)] -= w
            cells[(t, r)] -= w
            cells[(s, t)] += w
            cells[(t, s)] += w
    if self_weight:
        cells[(r, r)] -= 2 * self_weight
        cells[(s, s)] += 2 * self_weight
    cs.degrees[r] -= degree
    cs.degrees[s] += degree
    return cs


def merge_changes(level: int, row_b: dict[str, float], degree_b: float, a: str, b: str) -> ChangeSet:
    """Edits caused by folding group ``b`` (with count row ``row_b``) into ``a``."""
    cs = ChangeSet(level)
    cells = cs.cells
    for t, w in row_b.items():
        if t == b:
            cells[(b, b)] -= w
            cells[(a, a)] += w
        elif t == a:
            cells[(a, b)] -= w
            cells[(b, a)] -= w
            cells[(a, a)] += 2 * w
        else:
            cells[(b, t)] -= w
            cells[(t, b)] -= w
            cells[(a, t)] += w
            cells[(t, a)] += w
    cs.degrees[a] += degree_b
    cs.degrees[b] -= degree_b
    return cs


def _build_index(types: dict[str, str]) -> tuple[dict[str, list[str]], dict[str, int]]:
    index: dict[str, list[str]] = {}
    slots: dict[str, int] = {}
    for group, group_type in types.items():
        ids = index.setdefault(group_type, [])
        slots[group] = len(ids)
        ids.append(group)
    return index, slots


class PartitionState:
    """Mutable multi-level assignment of nodes to groups."""

    def __init__(
        self,
        network: Network,
        levels: int = 1,
        *,
        num_groups: int | None = None,
        rng: np.random.Generator | None = None,
    ):
        self._network = network
        # _parents[L]: entity at level L -> group at level L+1
        self._parents: list[dict[str, str]] = []
        # _members[L], _types[L], _counts[L], _degrees[L] for L >= 1 (index 0 unused)
        self._members: list[dict[str, dict[str, None]]] = [{}]
        self._types: list[dict[str, str]] = [{}]
        self._counts: list[CountTable] = [{}]
        self._degrees: list[dict[str, float]] = [{}]
        # _index[L][type] lists the groups of that type; _slots[L][group] is its position
        self._index: list[dict[str, list[str]]] = [{}]
        self._slots: list[dict[str, int]] = [{}]
        self._next_id = 0
        self.initialize(levels, num_groups=num_groups, rng=rng)

    # ── construction ──

    def initialize(
        self,
        levels: int = 1,
        *,
        num_groups: int | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        """Reset to singleton groups, or ``num_groups`` random groups per type."""
        if levels < 1:
            raise StructuralError(f"A hierarchy needs at least one level, got {levels}")
        self._parents = []
        self._members = [{}]
        self._types = [{}]
        self._counts = [{}]
        self._degrees = [{}]
        self._index = [{}]
        self._slots = [{}]
        self._next_id = 0

        net = self._network
        if num_groups is None:
            assignment = {n: self._new_group_id(net.node_type(n), 1) for n in net.nodes}
        else:
            if rng is None:
                raise StructuralError("Random initialization requires a random generator")
            assignment = {}
            for node_type in net.types:
                nodes = net.nodes_of_type(node_type)
                k = min(num_groups, len(nodes))
                ids = [self._new_group_id(node_type, 1) for _ in range(k)]
                for i, idx in enumerate(rng.permutation(len(nodes))):
                    assignment[nodes[int(idx)]] = ids[i % k]
        self._append_level(assignment, {n: net.node_type(n) for n in net.nodes})

        for _ in range(levels - 1):
            self.add_level()

    def add_level(self) -> None:
        """Stack a singleton level above the current top."""
        top = self.num_levels
        assignment = {g: self._new_group_id(t, top + 1) for g, t in self._types[top].items()}
        self._append_level(assignment, self._types[top])

    def _new_group_id(self, group_type: str, level: int) -> str:
        self._next_id += 1
        return f"{group_type}-{level}_{self._next_id}"

    def _append_level(self, assignment: dict[str, str], child_types: dict[str, str]) -> None:
        members: dict[str, dict[str, None]] = {}
        types: dict[str, str] = {}
        for child, group in assignment.items():
            members.setdefault(group, {})[child] = None
            types.setdefault(group, child_types[child])
        self._parents.append(dict(assignment))
        self._members.append(members)
        self._types.append(types)
        self._counts.append({})
        self._degrees.append({})
        index, slots = _build_index(types)
        self._index.append(index)
        self._slots.append(slots)
        level = len(self._members) - 1
        self._counts[level], self._degrees[level] = self.recompute_counts(level)

    # ── queries ──

    @property
    def network(self) -> Network:
        return self._network

    @property
    def num_levels(self) -> int:
        """Number of grouping levels above the nodes."""
        return len(self._members) - 1

    @property
    def types(self) -> list[str]:
        return self._network.types

    def _check_level(self, level: int) -> None:
        if not 1 <= level <= self.num_levels:
            raise StructuralError(f"No grouping level {level} (hierarchy has {self.num_levels})")

    def groups(self, level: int = 1, group_type: str | None = None) -> list[str]:
        self._check_level(level)
        if group_type is None:
            return list(self._members[level])
        return list(self._index[level].get(group_type, ()))

    def num_groups(self, level: int = 1) -> int:
        self._check_level(level)
        return len(self._members[level])

    def num_groups_of_type(self, group_type: str, level: int = 1) -> int:
        self._check_level(level)
        return len(self._index[level].get(group_type, ()))

    def random_group(self, group_type: str, rng: np.random.Generator, level: int = 1) -> str:
        """Uniform draw among the groups of ``group_type`` in constant time."""
        self._check_level(level)
        ids = self._index[level].get(group_type)
        if not ids:
            raise StructuralError(f"No groups of type {group_type!r} at level {level}")
        return ids[int(rng.integers(len(ids)))]

    def entities(self, level: int = 1) -> list[str]:
        """Entities grouped at ``level``: nodes for level 1, groups otherwise."""
        self._check_level(level)
        return list(self._parents[level - 1])

    def parent(self, entity: str, level: int = 1) -> str:
        """Group at ``level`` containing ``entity`` from ``level - 1``."""
        self._check_level(level)
        try:
            return self._parents[level - 1][entity]
        except KeyError:
            raise StructuralError(f"Unknown entity {entity!r} at level {level - 1}") from None

    def ancestor(self, node: str, level: int) -> str:
        """Group at ``level`` containing the base node."""
        current = node
        for lvl in range(level):
            current = self._parents[lvl][current]
        return current

    def members(self, group: str, level: int = 1) -> list[str]:
        self._check_level(level)
        return list(self._members[level][group])

    def group_size(self, group: str, level: int = 1) -> int:
        return len(self._members[level][group])

    def has_group(self, group: str, level: int = 1) -> bool:
        return 1 <= level <= self.num_levels and group in self._members[level]

    def group_type(self, group: str, level: int = 1) -> str:
        self._check_level(level)
        return self._types[level][group]

    def entity_type(self, entity: str, level: int = 0) -> str:
        if level == 0:
            return self._network.node_type(entity)
        return self._types[level][entity]

    def counts(self, level: int = 1) -> CountTable:
        """The live count table at ``level``; treat as read-only."""
        self._check_level(level)
        return self._counts[level]

    def group_degrees(self, level: int = 1) -> dict[str, float]:
        self._check_level(level)
        return self._degrees[level]

    def entity_degree(self, entity: str, level: int = 0) -> float:
        if level == 0:
            return self._network.degree(entity)
        return self._degrees[level].get(entity, 0)

    def entity_row(self, entity: str, level: int = 0) -> Mapping[str, float]:
        """Weights from ``entity`` to other entities at its own level."""
        if level == 0:
            return self._network.neighbors(entity)
        row = self._counts[level].get(entity, {})
        return {k: w for k, w in row.items() if k != entity}

    def neighbor_weights(self, entity: str, level: int = 1) -> tuple[dict[str, float], float, float]:
        """(weights to each ``level`` group, self weight, degree) for an entity at ``level - 1``."""
        below = level - 1
        parents = self._parents[below]
        weights: dict[str, float] = defaultdict(int)
        for other, w in self.entity_row(entity, below).items():
            weights[parents[other]] += w
        if below == 0:
            self_weight = self._network.self_loop(entity)
        else:
            self_weight = self._counts[below].get(entity, {}).get(entity, 0) / 2
        return weights, self_weight, self.entity_degree(entity, below)

    # ── change sets ──

    def move_changes(self, entity: str, target: str, level: int = 1) -> ChangeSet:
        """Count edits at ``level`` that moving ``entity`` into ``target`` would cause."""
        source = self._validate_move(entity, target, level)
        weights, self_weight, degree = self.neighbor_weights(entity, level)
        return move_changes(level, weights, self_weight, degree, source, target)

    def merge_changes(self, group_a: str, group_b: str, level: int = 1) -> ChangeSet:
        """Count edits at ``level`` that folding ``group_b`` into ``group_a`` would cause."""
        self._validate_merge(group_a, group_b, level)
        row_b = self._counts[level].get(group_b, {})
        return merge_changes(level, row_b, self._degrees[level].get(group_b, 0), group_a, group_b)

    def _validate_move(self, entity: str, target: str, level: int) -> str:
        self._check_level(level)
        source = self.parent(entity, level)
        if target not in self._members[level]:
            raise StructuralError(f"Unknown target group {target!r} at level {level}")
        if self._types[level][target] != self.entity_type(entity, level - 1):
            raise StructuralError(
                f"Cannot move {entity!r} of type {self.entity_type(entity, level - 1)!r} "
                f"into group {target!r} of type {self._types[level][target]!r}"
            )
        return source

    def _validate_merge(self, group_a: str, group_b: str, level: int) -> None:
        self._check_level(level)
        for g in (group_a, group_b):
            if g not in self._members[level]:
                raise StructuralError(f"Unknown group {g!r} at level {level}")
        if group_a == group_b:
            raise StructuralError(f"Cannot merge group {group_a!r} with itself")
        if self._types[level][group_a] != self._types[level][group_b]:
            raise StructuralError(
                f"Cannot merge groups of different types: {group_a!r} "
                f"({self._types[level][group_a]}) and {group_b!r} ({self._types[level][group_b]})"
            )

    # ── mutations ──

    def move_node(self, node: str, target_group: str) -> None:
        """Reassign a base node to another level-1 group."""
        self.move(node, target_group, level=1)

    def move(self, entity: str, target: str, level: int = 1) -> None:
        """Reassign ``entity`` (at ``level - 1``) to ``target`` (at ``level``).

        Updates the count tables of ``level`` and every level above it. A
        group left without members is removed, cascading upward.
        """
        source = self._validate_move(entity, target, level)
        if source == target:
            return
        weights, self_weight, degree = self.neighbor_weights(entity, level)
        self._apply(move_changes(level, weights, self_weight, degree, source, target))
        self._propagate(weights, self_weight, degree, source, target, level)

        self._parents[level - 1][entity] = target
        del self._members[level][source][entity]
        self._members[level][target][entity] = None
        if not self._members[level][source]:
            self._remove_group(source, level)

    def merge_groups(self, group_a: str, group_b: str, level: int = 1) -> None:
        """Fold every member of ``group_b`` into ``group_a`` and delete ``group_b``."""
        self._validate_merge(group_a, group_b, level)
        row_b = dict(self._counts[level].get(group_b, {}))
        degree_b = self._degrees[level].get(group_b, 0)

        if level < self.num_levels:
            parents = self._parents[level]
            up_source, up_target = parents[group_b], parents[group_a]
            if up_source != up_target:
                weights: dict[str, float] = defaultdict(int)
                for other, w in row_b.items():
                    if other != group_b:
                        weights[parents[other]] += w
                self_weight = row_b.get(group_b, 0) / 2
                self._apply(
                    move_changes(level + 1, weights, self_weight, degree_b, up_source, up_target)
                )
                self._propagate(weights, self_weight, degree_b, up_source, up_target, level + 1)

        self._apply(merge_changes(level, row_b, degree_b, group_a, group_b))

        child_parents = self._parents[level - 1]
        for child in self._members[level][group_b]:
            child_parents[child] = group_a
            self._members[level][group_a][child] = None
        self._members[level][group_b] = {}
        self._remove_group(group_b, level)

    def _propagate(
        self,
        weights: dict[str, float],
        self_weight: float,
        degree: float,
        source: str,
        target: str,
        level: int,
    ) -> None:
        """Carry a move at ``level`` up through every level where the ancestors differ."""
        while level < self.num_levels:
            parents = self._parents[level]
            up_source, up_target = parents[source], parents[target]
            if up_source == up_target:
                return
            up_weights: dict[str, float] = defaultdict(int)
            for group, w in weights.items():
                up_weights[parents[group]] += w
            level += 1
            self._apply(move_changes(level, up_weights, self_weight, degree, up_source, up_target))
            weights, source, target = up_weights, up_source, up_target

    def _apply(self, changes: ChangeSet) -> None:
        table = self._counts[changes.level]
        for (a, b), delta in changes.cells.items():
            if not delta:
                continue
            row = table.setdefault(a, {})
            value = row.get(b, 0) + delta
            if abs(value) <= ZERO_TOL:
                row.pop(b, None)
                if not row:
                    del table[a]
            else:
                row[b] = value
        degrees = self._degrees[changes.level]
        for group, delta in changes.degrees.items():
            value = degrees.get(group, 0) + delta
            if abs(value) <= ZERO_TOL:
                degrees.pop(group, None)
            else:
                degrees[group] = value

    def _remove_group(self, group: str, level: int) -> None:
        if self._members[level][group]:
            raise StructuralError(f"Refusing to remove non-empty group {group!r}")
        del self._members[level][group]
        ids = self._index[level][self._types[level].pop(group)]
        slots = self._slots[level]
        last = ids.pop()
        position = slots.pop(group)
        if last != group:
            ids[position] = last
            slots[last] = position
        self._counts[level].pop(group, None)
        self._degrees[level].pop(group, None)
        log.debug("Removed empty group %s at level %d", group, level)
        if level < self.num_levels:
            parent = self._parents[level].pop(group)
            del self._members[level + 1][parent][group]
            if not self._members[level + 1][parent]:
                self._remove_group(parent, level + 1)

    # ── consistency ──

    def recompute_counts(self, level: int = 1) -> tuple[CountTable, dict[str, float]]:
        """Build the level's count table from the base edges."""
        net = self._network
        ancestor = {n: self.ancestor(n, level) for n in net.nodes}
        table: CountTable = {}
        for u in net.nodes:
            a = ancestor[u]
            for v, w in net.neighbors(u).items():
                row = table.setdefault(a, {})
                b = ancestor[v]
                row[b] = row.get(b, 0) + w
            loop = net.self_loop(u)
            if loop:
                row = table.setdefault(a, {})
                row[a] = row.get(a, 0) + 2 * loop
        degrees = {g: sum(row.values()) for g, row in table.items()}
        return table, {g: d for g, d in degrees.items() if abs(d) > ZERO_TOL}

    def validate(self) -> None:
        """Raise StructuralError on empty groups, dangling parents or mixed types."""
        for level in range(1, self.num_levels + 1):
            parents = self._parents[level - 1]
            below = self._network.nodes if level == 1 else list(self._members[level - 1])
            if set(parents) != set(below):
                raise StructuralError(f"Level {level - 1} entities and parent map disagree")
            for group, members in self._members[level].items():
                if not members:
                    raise StructuralError(f"Empty group {group!r} at level {level}")
                for child in members:
                    if parents.get(child) != group:
                        raise StructuralError(f"Dangling parent reference for {child!r}")
                    if self.entity_type(child, level - 1) != self._types[level][group]:
                        raise StructuralError(f"Group {group!r} mixes types")
            for child, group in parents.items():
                if group not in self._members[level]:
                    raise StructuralError(f"{child!r} points at missing group {group!r}")
            index = self._index[level]
            indexed = {g: t for t, ids in index.items() for g in ids}
            if indexed != self._types[level] or sum(map(len, index.values())) != len(indexed):
                raise StructuralError(f"Group index at level {level} is out of date")
            for group, position in self._slots[level].items():
                if self._index[level][self._types[level][group]][position] != group:
                    raise StructuralError(f"Group index slot of {group!r} is out of date")

    # ── snapshots ──

    def snapshot(self) -> PartitionSnapshot:
        rows: list[SnapshotRow] = []
        for level, parents in enumerate(self._parents):
            for entity, parent in parents.items():
                rows.append(SnapshotRow(entity, parent, level, self.entity_type(entity, level)))
        top = self.num_levels
        for group, group_type in self._types[top].items():
            rows.append(SnapshotRow(group, None, top, group_type))
        return PartitionSnapshot(rows=tuple(rows))

    def restore(self, snapshot: PartitionSnapshot) -> None:
        """Replace the hierarchy with ``snapshot`` and rebuild every count table."""
        by_level: dict[int, list[SnapshotRow]] = defaultdict(list)
        for row in snapshot.rows:
            by_level[row.level].append(row)
        if not by_level or 0 not in by_level:
            raise StructuralError("Snapshot has no level-0 rows")

        node_rows = {r.id: r for r in by_level[0]}
        if set(node_rows) != set(self._network.nodes):
            raise StructuralError("Snapshot nodes do not match the network")
        for node, row in node_rows.items():
            if row.type != self._network.node_type(node):
                raise StructuralError(f"Snapshot type of {node!r} does not match the network")

        deepest = max(
            (lvl for lvl, rows in by_level.items() if any(r.parent for r in rows)), default=None
        )
        if deepest is None:
            raise StructuralError("Snapshot has no parent references")
        top = deepest + 1
        parents: list[dict[str, str]] = []
        members: list[dict[str, dict[str, None]]] = [{}]
        types: list[dict[str, str]] = [{}]
        child_types = {r.id: r.type for r in by_level[0]}
        for level in range(top):
            rows = by_level.get(level, [])
            if level > 0 and {r.id for r in rows} != set(members[level]):
                raise StructuralError(f"Snapshot level {level} rows do not match their children")
            level_parents: dict[str, str] = {}
            level_members: dict[str, dict[str, None]] = {}
            level_types: dict[str, str] = {}
            for r in rows:
                if r.parent is None:
                    raise StructuralError(f"Dangling parent reference for {r.id!r}")
                level_parents[r.id] = r.parent
                level_members.setdefault(r.parent, {})[r.id] = None
                if level_types.setdefault(r.parent, child_types[r.id]) != child_types[r.id]:
                    raise StructuralError(f"Group {r.parent!r} mixes types")
            parents.append(level_parents)
            members.append(level_members)
            types.append(level_types)
            child_types = level_types

        self._parents = parents
        self._members = members
        self._types = types
        self._index = [{}]
        self._slots = [{}]
        self._counts = [{}]
        self._degrees = [{}]
        for level in range(1, top + 1):
            index, slots = _build_index(types[level])
            self._index.append(index)
            self._slots.append(slots)
            table, degrees = self.recompute_counts(level)
            self._counts.append(table)
            self._degrees.append(degrees)
        self._next_id = max(self._next_id, len(snapshot.rows))

    def clone(self) -> "PartitionState":
        """Independent copy sharing the read-only network."""
        other = PartitionState.__new__(PartitionState)
        other._network = self._network
        other._parents = [dict(p) for p in self._parents]
        other._members = [{g: dict(m) for g, m in level.items()} for level in self._members]
        other._types = [dict(t) for t in self._types]
        other._index = [{t: list(ids) for t, ids in level.items()} for level in self._index]
        other._slots = [dict(s) for s in self._slots]
        other._counts = [{g: dict(row) for g, row in table.items()} for table in self._counts]
        other._degrees = [dict(d) for d in self._degrees]
        other._next_id = self._next_id
        return other

    def __repr__(self) -> str:
        sizes = [len(m) for m in self._members[1:]]
        return f"PartitionState(levels={self.num_levels}, groups_per_level={sizes})"
