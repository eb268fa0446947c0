"""Adapter: build a validated Network from tabular edge/node records.

Records are plain dicts (one per row), as produced by ``csv.DictReader``
or a JSON array.
"""

from __future__ import annotations

import csv
import logging
import warnings
from pathlib import Path
from typing import Any

from sbmfit.domain.network import Network
from sbmfit.errors import NetworkValidationError

log = logging.getLogger(__name__)


def _warn(message: str, show_warnings: bool) -> None:
    log.warning(message)
    if show_warnings:
        warnings.warn(message, UserWarning, stacklevel=3)


def build_network(
    edges: list[dict[str, Any]],
    nodes: list[dict[str, Any]] | None = None,
    *,
    from_column: str = "from",
    to_column: str = "to",
    weight_column: str | None = None,
    bipartite_edges: bool = False,
    default_node_type: str = "node",
    show_warnings: bool = True,
) -> Network:
    """Validate edge (and optional node) records and build the graph store.

    Without a node table the nodes are the sorted union of edge endpoints,
    typed ``default_node_type``, or typed by column name when
    ``bipartite_edges`` is set.
    """
    if not edges:
        raise NetworkValidationError("No edges provided")
    first = edges[0]
    if from_column not in first:
        raise NetworkValidationError(
            f"Edges data does not have the specified from column: {from_column}"
        )
    if to_column not in first:
        raise NetworkValidationError(
            f"Edges data does not have the specified to column: {to_column}"
        )

    edge_list: list[tuple[str, str, float]] = []
    for row in edges:
        weight = 1
        if weight_column is not None:
            weight = float(row.get(weight_column, 1))
            if weight < 0:
                raise NetworkValidationError(f"Negative edge weight {weight} is not allowed")
        edge_list.append((str(row[from_column]), str(row[to_column]), weight))
    seen = {u for u, _, _ in edge_list} | {v for _, v, _ in edge_list}

    if nodes is not None:
        if bipartite_edges:
            _warn("bipartite_edges setting ignored due to nodes dataframe being provided.", show_warnings)
        if any("id" not in n for n in nodes):
            raise NetworkValidationError("Nodes dataframe needs an id column.")
        unseen = [str(n["id"]) for n in nodes if str(n["id"]) not in seen]
        if unseen:
            _warn(
                f"Node(s) {', '.join(unseen)} are not seen in any of the edges "
                "and have been removed from data.",
                show_warnings,
            )
        node_list = [
            (str(n["id"]), str(n.get("type") or default_node_type))
            for n in nodes
            if str(n["id"]) in seen
        ]
        missing = seen - {node_id for node_id, _ in node_list}
        if missing:
            raise NetworkValidationError(
                f"Edges reference node(s) missing from the nodes data: {', '.join(sorted(missing))}"
            )
    elif bipartite_edges:
        froms = {u for u, _, _ in edge_list}
        tos = {v for _, v, _ in edge_list}
        if froms & tos:
            raise NetworkValidationError(
                "Bipartite edge structure was requested but some nodes appeared in both "
                "from and two columns of supplied edges."
            )
        node_list = [(n, from_column) for n in sorted(froms)] + [(n, to_column) for n in sorted(tos)]
    else:
        node_list = [(n, default_node_type) for n in sorted(seen)]

    network = Network(node_list, edge_list)
    log.info("Built %r", network)
    return network


def read_records(path: str | Path) -> list[dict[str, Any]]:
    """Read a CSV file into a list of row dicts."""
    with open(path, newline="") as f:
        return list(csv.DictReader(f))


def write_records(path: str | Path, rows: list[dict[str, Any]], columns: list[str]) -> None:
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns)
        writer.writeheader()
        for row in rows:
            writer.writerow({c: row.get(c) for c in columns})
