"""YAML config loader with environment variable overlay.

Env vars take precedence over YAML values; a ``.env`` file in the working
directory is loaded first.
Env var naming: SBMFIT__{section}__{key} (double underscore separator)
e.g., SBMFIT__COLLAPSE__SIGMA overrides collapse.sigma and
SBMFIT__RANDOM_SEED overrides random_seed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from sbmfit.errors import ConfigurationError
from sbmfit.services.collapse import CollapseConfig

log = logging.getLogger(__name__)

ENV_PREFIX = "SBMFIT__"


@dataclass
class MCMCConfig:
    num_sweeps: int = 0  # refinement sweeps after a state is chosen
    track_pairs: bool = False


@dataclass
class ScanConfig:
    targets: list[int] = field(default_factory=lambda: list(range(1, 11)))
    parallel: bool = False
    max_workers: int = 0  # 0 lets the executor decide
    executor: str = "thread"


@dataclass
class HeuristicConfig:
    name: str = "dev_from_rolling_mean"
    use_entropy_value: bool = False
    min_num_groups: int = 0  # 0 = unbounded
    max_num_groups: int = 0


@dataclass
class Settings:
    collapse: CollapseConfig = field(default_factory=CollapseConfig)
    mcmc: MCMCConfig = field(default_factory=MCMCConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    heuristic: HeuristicConfig = field(default_factory=HeuristicConfig)
    random_seed: int = 42

    def collapse_config(self) -> CollapseConfig:
        """Collapse options with the scan section's execution settings applied."""
        return replace(
            self.collapse,
            parallel=self.scan.parallel,
            max_workers=self.scan.max_workers or None,
            executor=self.scan.executor,
        )

    def heuristic_bounds(self) -> dict[str, int | None]:
        return {
            "min_num_groups": self.heuristic.min_num_groups or None,
            "max_num_groups": self.heuristic.max_num_groups or None,
        }


_SECTIONS = ("collapse", "mcmc", "scan", "heuristic")

_settings: Settings | None = None


def get_settings(config_path: str = "sbmfit.yaml") -> Settings:
    """Get the global settings instance, loading from config if not yet loaded."""
    global _settings
    if _settings is None:
        _settings = load_settings(config_path)
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings
    _settings = None


def load_settings(config_path: str | None = "sbmfit.yaml") -> Settings:
    """Load settings from YAML file with env var overlay."""
    load_dotenv(Path(".env"))
    settings = Settings()

    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            with open(config_file) as f:
                yaml_config = yaml.safe_load(f) or {}
            settings = _apply_yaml(settings, yaml_config)
        else:
            log.debug("No config file at %s, using defaults", config_file)

    settings = _apply_env_vars(settings)
    settings.collapse_config().validate()
    return settings


def parse_targets(value: str | list[int] | range) -> list[int]:
    """Parse ``"1-10"``, ``"2,4,6"`` or a list into target group counts."""
    if isinstance(value, (list, tuple, range)):
        return [int(v) for v in value]
    targets: list[int] = []
    for part in str(value).split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            lo, hi = part.split("-", 1)
            targets.extend(range(int(lo), int(hi) + 1))
        else:
            targets.append(int(part))
    if not targets:
        raise ConfigurationError(f"No target group counts in {value!r}")
    return targets


def _apply_yaml(settings: Settings, yaml_config: dict[str, Any]) -> Settings:
    """Apply YAML config values to settings."""
    for section in _SECTIONS:
        if section in yaml_config:
            current = getattr(settings, section)
            setattr(settings, section, _merge_section(section, current, yaml_config[section] or {}))

    if "random_seed" in yaml_config:
        settings.random_seed = int(yaml_config["random_seed"])

    if "targets" in (yaml_config.get("scan") or {}):
        settings.scan.targets = parse_targets(settings.scan.targets)

    return settings


def _merge_section(section: str, current: Any, values: dict[str, Any]) -> Any:
    known = {f.name for f in fields(current)}
    for key in values:
        if key not in known:
            log.warning("Ignoring unknown config key %s.%s", section, key)
    return replace(current, **{k: v for k, v in values.items() if k in known})


def _apply_env_vars(settings: Settings) -> Settings:
    """Apply environment variable overrides. Format: SBMFIT__SECTION__KEY."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        parts = key[len(ENV_PREFIX):].lower().split("__")
        if len(parts) == 1 and parts[0] == "random_seed":
            settings.random_seed = int(value)
        elif len(parts) == 2:
            section, field_name = parts
            _set_field(settings, section, field_name, value)

    return settings


def _set_field(settings: Settings, section: str, field_name: str, value: str) -> None:
    """Set a field on the settings object from an env var value."""
    if section not in _SECTIONS:
        return
    section_obj = getattr(settings, section)

    if not hasattr(section_obj, field_name):
        return

    current_value = getattr(type(section_obj)(), field_name)

    # Type coercion based on the field's default type
    if isinstance(current_value, bool):
        setattr(section_obj, field_name, value.lower() in ("true", "1", "yes"))
    elif isinstance(current_value, int):
        setattr(section_obj, field_name, int(value))
    elif isinstance(current_value, float):
        setattr(section_obj, field_name, float(value))
    elif isinstance(current_value, list):
        setattr(section_obj, field_name, parse_targets(value))
    elif current_value is None:
        setattr(section_obj, field_name, int(value) if value.lstrip("-").isdigit() else value)
    else:
        setattr(section_obj, field_name, value)
