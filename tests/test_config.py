"""Tests for configuration loading."""

import logging
import os

import pytest

from sbmfit.config import get_settings, load_settings, parse_targets, reset_settings
from sbmfit.errors import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory with no SBMFIT__ overrides."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("SBMFIT__"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()


class TestConfig:
    def test_default_settings(self):
        settings = load_settings("missing.yaml")
        assert settings.collapse.sigma == 2.0
        assert settings.scan.targets == list(range(1, 11))
        assert settings.heuristic.name == "dev_from_rolling_mean"
        assert settings.random_seed == 42

    def test_settings_singleton(self):
        s1 = get_settings()
        s2 = get_settings()
        assert s1 is s2
        reset_settings()
        assert get_settings() is not s1

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "sbmfit.yaml"
        path.write_text(
            "random_seed: 7\n"
            "collapse:\n  sigma: 3\n  greedy: true\n"
            "scan:\n  targets: '2-4'\n  parallel: true\n"
            "heuristic:\n  name: nls_residual\n  max_num_groups: 6\n"
        )
        settings = load_settings(str(path))
        assert settings.random_seed == 7
        assert settings.collapse.sigma == 3
        assert settings.collapse.greedy is True
        assert settings.scan.targets == [2, 3, 4]
        assert settings.heuristic_bounds() == {"min_num_groups": None, "max_num_groups": 6}

        config = settings.collapse_config()
        assert config.parallel is True
        assert config.max_workers is None

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "sbmfit.yaml"
        path.write_text("collapse:\n  sigma: 3\n")
        monkeypatch.setenv("SBMFIT__COLLAPSE__SIGMA", "1.5")
        monkeypatch.setenv("SBMFIT__COLLAPSE__NUM_MCMC_SWEEPS", "4")
        monkeypatch.setenv("SBMFIT__SCAN__TARGETS", "2,5")
        monkeypatch.setenv("SBMFIT__RANDOM_SEED", "99")
        settings = load_settings(str(path))
        assert settings.collapse.sigma == 1.5
        assert settings.collapse.num_mcmc_sweeps == 4
        assert settings.scan.targets == [2, 5]
        assert settings.random_seed == 99

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("SBMFIT__HEURISTIC__NAME=delta_ratio\n")
        try:
            assert load_settings(None).heuristic.name == "delta_ratio"
        finally:
            os.environ.pop("SBMFIT__HEURISTIC__NAME", None)

    def test_unknown_key_warns(self, tmp_path, caplog):
        path = tmp_path / "sbmfit.yaml"
        path.write_text("collapse:\n  sigmaa: 3\n")
        with caplog.at_level(logging.WARNING, logger="sbmfit.config"):
            settings = load_settings(str(path))
        assert "collapse.sigmaa" in caplog.text
        assert settings.collapse.sigma == 2.0

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "sbmfit.yaml"
        path.write_text("collapse:\n  sigma: -1\n")
        with pytest.raises(ConfigurationError):
            load_settings(str(path))


class TestParseTargets:
    def test_forms(self):
        assert parse_targets("1-3") == [1, 2, 3]
        assert parse_targets("2, 4,6") == [2, 4, 6]
        assert parse_targets("1-2,5") == [1, 2, 5]
        assert parse_targets(range(3, 5)) == [3, 4]

    def test_empty(self):
        with pytest.raises(ConfigurationError):
            parse_targets(" , ")
