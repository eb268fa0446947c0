"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from sbmfit.cli import main


@pytest.fixture
def runner(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    return CliRunner()


@pytest.fixture
def edges_csv(runner, tmp_path):
    path = tmp_path / "edges.csv"
    result = runner.invoke(
        main,
        ["simulate", str(path), "--blocks", "3", "--nodes-per-block", "15",
         "--p-within", "0.6", "--p-between", "0.02", "--seed", "4"],
    )
    assert result.exit_code == 0, result.output
    return path


class TestCLI:
    def test_simulate(self, edges_csv):
        header = edges_csv.read_text().splitlines()[0]
        assert header == "from,to"

    def test_fit_writes_snapshot(self, runner, edges_csv, tmp_path):
        out = tmp_path / "best.json"
        result = runner.invoke(
            main,
            ["fit", str(edges_csv), "--targets", "1-6", "--heuristic", "delta_ratio",
             "--seed", "1", "-o", str(out)],
        )
        assert result.exit_code == 0, result.output
        assert "Best state:" in result.output
        assert json.loads(out.read_text())["rows"]

    def test_entropy_of_snapshot(self, runner, edges_csv, tmp_path):
        out = tmp_path / "best.json"
        runner.invoke(main, ["fit", str(edges_csv), "--targets", "2-4", "-o", str(out)])
        result = runner.invoke(main, ["entropy", str(edges_csv), "--snapshot", str(out)])
        assert result.exit_code == 0, result.output
        assert "Entropy:" in result.output

    def test_fit_with_config_file(self, runner, edges_csv, tmp_path):
        config = tmp_path / "custom.yaml"
        config.write_text("collapse:\n  greedy: true\nmcmc:\n  num_sweeps: 1\n  track_pairs: true\n")
        result = runner.invoke(main, ["-c", str(config), "fit", str(edges_csv), "--targets", "2,3"])
        assert result.exit_code == 0, result.output
        assert "Refinement:" in result.output

    def test_unknown_heuristic_fails(self, runner, edges_csv):
        result = runner.invoke(main, ["fit", str(edges_csv), "--targets", "2-3", "--heuristic", "nope"])
        assert result.exit_code != 0
