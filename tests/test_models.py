"""Tests for domain records and snapshot files."""

import json

import pytest

from sbmfit.adapters.snapshot_json import export_snapshot, import_snapshot
from sbmfit.domain.models import (
    CollapseResult,
    CollapseStatus,
    PartitionSnapshot,
    SnapshotRow,
    SweepResult,
    TrajectoryRecord,
)


class TestSnapshot:
    def test_row_dict(self):
        row = SnapshotRow("a", None, 1, "node")
        assert row.to_dict() == {"id": "a", "parent": None, "level": 1, "type": "node"}
        assert SnapshotRow.from_dict(row.to_dict()) == row

    def test_queries(self):
        snap = PartitionSnapshot(
            rows=(
                SnapshotRow("x", "g1", 0, "n"),
                SnapshotRow("y", "g1", 0, "n"),
                SnapshotRow("z", "g2", 0, "n"),
                SnapshotRow("g1", None, 1, "n"),
                SnapshotRow("g2", None, 1, "n"),
            )
        )
        assert len(snap) == 5
        assert snap.num_groups() == 2
        assert snap.parent_map() == {"x": "g1", "y": "g1", "z": "g2"}
        assert [r.id for r in snap.rows_at(1)] == ["g1", "g2"]

    def test_json_file(self, small_state, tmp_path):
        snap = small_state.snapshot()
        path = tmp_path / "out" / "snapshot.json"
        export_snapshot(snap, path)
        assert json.loads(path.read_text())["rows"][0]["level"] == 0
        assert import_snapshot(path) == snap

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            import_snapshot(tmp_path / "nope.json")


class TestResults:
    def test_trajectory_record_dict(self):
        rec = TrajectoryRecord(2, 5, -10.0, 1.5, PartitionSnapshot(), run=1, target=5)
        assert rec.to_dict()["num_groups"] == 5
        assert rec.to_dict()["run"] == 1

    def test_collapse_result_defaults(self):
        result = CollapseResult()
        assert result.status == CollapseStatus.INITIALIZED
        assert result.final is None

    def test_sweep_totals(self):
        result = SweepResult(num_moves=[3, 1], entropy_deltas=[-2.0, 0.5])
        assert result.total_moves == 4
        assert result.total_delta == pytest.approx(-1.5)
