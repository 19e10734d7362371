# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Configuration and data root resolution for Ambros.

Handles:
- Data root resolution (AMBROS_DATA_HOME, ~/.local/share)
- DB / log path helpers
- Packaged YAML defaults (ambros/defaults/system.yaml)
- Optional user overrides (<data_root>/ambros/config.yaml)
- ANSI colour constants for status lines
"""

from __future__ import annotations

import copy
import os
from importlib import resources as importlib_resources
from pathlib import Path
from typing import Any

import yaml

from .errors import InvalidInputError
from .models import ExecutionMode

# -----------------------
# Colour constants
# -----------------------

ANSI_COLORS: dict[str, str] = {
    "cyan": "\033[38;5;69;1m",
    "yellow": "\033[38;5;226;1m",
    "green": "\033[32m",
    "red": "\033[31m",
    "dim": "\033[2m",
    "reset": "\033[0m",
}


# -----------------------
# Config model wrapper
# -----------------------


class YAMLConfig:
    """Read-only view over the merged configuration mapping."""

    def __init__(self, config_dict: dict[str, Any]):
        self._config = config_dict

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def get_path(self, path: str, default: Any = None) -> Any:
        """
        Nested lookup using dot-separated path.
        Example: get_path("execution.default_mode", "auto")
        """
        if not path:
            return default

        cur: Any = self._config
        for part in path.split("."):
            if not isinstance(cur, dict):
                return default
            if part not in cur:
                return default
            cur = cur[part]
        return cur

    @property
    def default_mode(self) -> ExecutionMode:
        return ExecutionMode.parse(
            self.get_path("execution.default_mode", "auto")
        )

    @property
    def store_runs(self) -> bool:
        return bool(self.get_path("execution.store", True))

    @property
    def store_chain_results(self) -> bool:
        return bool(self.get_path("chain.store_results", False))

    @property
    def cleanup_max_age_days(self) -> int:
        value = self.get_path("cleanup.max_age_days", 90)
        try:
            days = int(value)
        except (TypeError, ValueError):
            raise InvalidInputError(
                f"cleanup.max_age_days must be an integer, got {value!r}"
            ) from None
        if days < 0:
            raise InvalidInputError("cleanup.max_age_days must be >= 0")
        return days

    @property
    def log_level(self) -> str:
        return str(self.get_path("logging.level", "WARNING")).upper()

    @property
    def log_file(self) -> str | None:
        value = self.get_path("logging.file")
        return str(value) if value else None


# -----------------------
# Data root + paths
# -----------------------


def get_data_root() -> Path:
    """Get the data root directory.

    Resolution order:
    1. AMBROS_DATA_HOME environment variable (if set)
    2. ~/.local/share (default)
    """
    data_home = os.getenv("AMBROS_DATA_HOME")
    if data_home:
        root = Path(data_home)
    else:
        root = Path.home() / ".local" / "share"

    root.mkdir(parents=True, exist_ok=True)
    return root


def db_path(data_root: Path) -> Path:
    """<data_root>/ambros/ambros.db"""
    return data_root / "ambros" / "ambros.db"


def user_config_path(data_root: Path) -> Path:
    """<data_root>/ambros/config.yaml"""
    return data_root / "ambros" / "config.yaml"


def logs_dir(data_root: Path) -> Path:
    return data_root / "ambros" / "logs"


# -----------------------
# YAML loading
# -----------------------


def _defaults_dir() -> Path:
    return Path(
        importlib_resources.files("ambros.defaults")
    )  # type: ignore[arg-type]


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise InvalidInputError(
            f"Config YAML {path} must load to a mapping/dict."
        )
    return data


def load_defaults_yaml(filename: str = "system.yaml") -> dict[str, Any]:
    """Load a YAML file from ambros/defaults/."""
    defaults_dir = _defaults_dir()
    path = defaults_dir / filename
    if not path.exists():
        raise FileNotFoundError(
            f"Missing defaults YAML: {filename} "
            f"(looked in {defaults_dir})"
        )
    return _load_yaml(path)


def merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge override into a copy of base."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(data_root: Path | None = None) -> YAMLConfig:
    """Packaged defaults, overlaid with the user's config.yaml if present."""
    config = load_defaults_yaml()
    root = data_root if data_root is not None else get_data_root()
    override = user_config_path(root)
    if override.exists():
        config = merge(config, _load_yaml(override))
    return YAMLConfig(config)
