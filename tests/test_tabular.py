"""Tests for building networks from tabular records."""

import pytest

from sbmfit.adapters.tabular import build_network, read_records, write_records
from sbmfit.errors import NetworkValidationError

EDGES = [
    {"from": "a1", "to": "b1"},
    {"from": "a1", "to": "b2"},
    {"from": "a2", "to": "b2"},
]


class TestBuildNetwork:
    def test_default_node_type(self):
        net = build_network(EDGES)
        assert net.nodes == ["a1", "a2", "b1", "b2"]
        assert net.types == ["node"]
        assert net.num_edges == 3

    def test_missing_from_column(self):
        with pytest.raises(NetworkValidationError) as err:
            build_network(EDGES, from_column="source")
        assert str(err.value) == "Edges data does not have the specified from column: source"

    def test_missing_to_column(self):
        with pytest.raises(NetworkValidationError) as err:
            build_network(EDGES, to_column="target")
        assert str(err.value) == "Edges data does not have the specified to column: target"

    def test_no_edges(self):
        with pytest.raises(NetworkValidationError):
            build_network([])

    def test_bipartite_types_from_columns(self):
        net = build_network(EDGES, bipartite_edges=True)
        assert net.node_type("a1") == "from"
        assert net.node_type("b2") == "to"

    def test_bipartite_overlap_rejected(self):
        edges = EDGES + [{"from": "b1", "to": "a2"}]
        with pytest.raises(NetworkValidationError, match="appeared in both"):
            build_network(edges, bipartite_edges=True)

    def test_node_table_types(self):
        nodes = [
            {"id": "a1", "type": "author"},
            {"id": "a2", "type": "author"},
            {"id": "b1", "type": "book"},
            {"id": "b2", "type": "book"},
        ]
        net = build_network(EDGES, nodes)
        assert net.types == ["author", "book"]

    def test_unseen_nodes_dropped_with_warning(self):
        nodes = [{"id": n, "type": "x"} for n in ("a1", "a2", "b1", "b2", "z9")]
        with pytest.warns(UserWarning, match="Node\\(s\\) z9 are not seen in any of the edges"):
            net = build_network(EDGES, nodes)
        assert "z9" not in net

    def test_bipartite_flag_ignored_with_nodes(self):
        nodes = [{"id": n, "type": "x"} for n in ("a1", "a2", "b1", "b2")]
        with pytest.warns(UserWarning, match="bipartite_edges setting ignored"):
            net = build_network(EDGES, nodes, bipartite_edges=True)
        assert net.types == ["x"]

    def test_warnings_can_be_silenced(self, recwarn):
        nodes = [{"id": n} for n in ("a1", "a2", "b1", "b2", "z9")]
        build_network(EDGES, nodes, show_warnings=False)
        assert not [w for w in recwarn if issubclass(w.category, UserWarning)]

    def test_nodes_need_id(self):
        with pytest.raises(NetworkValidationError, match="needs an id column"):
            build_network(EDGES, [{"name": "a1"}])

    def test_edge_endpoint_missing_from_nodes(self):
        with pytest.raises(NetworkValidationError, match="b2"):
            build_network(EDGES, [{"id": n} for n in ("a1", "a2", "b1")])

    def test_weight_column(self):
        edges = [dict(e, w=str(i + 1)) for i, e in enumerate(EDGES)]
        net = build_network(edges, weight_column="w")
        assert net.total_weight == 6
        assert net.degree("b2") == 5

    def test_negative_weight_rejected(self):
        edges = [dict(EDGES[0], w=-1)]
        with pytest.raises(NetworkValidationError, match="Negative"):
            build_network(edges, weight_column="w")


class TestRecordFiles:
    def test_csv_round_trip(self, tmp_path):
        path = tmp_path / "edges.csv"
        write_records(path, EDGES, ["from", "to"])
        assert read_records(path) == EDGES
