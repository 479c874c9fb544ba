"""Load and merge configuration from config.toml and env vars."""

from __future__ import annotations

import dataclasses
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from platformdirs import user_config_dir

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from repomon.config.schema import (
    DIFF_ALGORITHMS,
    LOG_LEVELS,
    GitConfig,
    LogConfig,
    RepomonConfig,
    StoreConfig,
    WatchConfig,
)

APP_NAME = "repomon"
CONFIG_FILENAME = "config.toml"


class ConfigError(Exception):
    """Raised when config is malformed or unreadable."""


def default_config_path() -> Path:
    return Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILENAME


def find_config_file(override: Optional[str] = None) -> Optional[Path]:
    """Locate the config file. *override* takes precedence."""
    if override:
        p = Path(override)
        if not p.is_file():
            raise ConfigError(f"Config file not found: {override}")
        return p
    candidate = default_config_path()
    return candidate if candidate.is_file() else None


def _parse_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc


def _positive_int(val: str) -> Optional[int]:
    try:
        number = int(val)
    except ValueError:
        return None
    return number if number >= 0 else None


def _merge_env_overrides(cfg: RepomonConfig) -> None:
    """Apply REPOMON_* environment variable overrides. Invalid values are ignored."""
    if val := os.environ.get("REPOMON_LOG_LEVEL"):
        if val.upper() in LOG_LEVELS:
            cfg.log.level = val.upper()  # type: ignore[assignment]
    if val := os.environ.get("REPOMON_GIT_TIMEOUT"):
        try:
            timeout = float(val)
        except ValueError:
            timeout = 0.0
        if timeout > 0:
            cfg.git.timeout_s = timeout
    if val := os.environ.get("REPOMON_CONTENT_DEBOUNCE_MS"):
        if (ms := _positive_int(val)) is not None:
            cfg.watch.content_debounce_ms = ms
    if val := os.environ.get("REPOMON_METADATA_DEBOUNCE_MS"):
        if (ms := _positive_int(val)) is not None:
            cfg.watch.metadata_debounce_ms = ms
    if val := os.environ.get("REPOMON_STORE_PATH"):
        cfg.store.path = val


def _build_section(data: Dict[str, Any], cls: type, section: str):
    """Build a dataclass from a TOML section dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    raw = data.get(section, {})
    if not isinstance(raw, dict):
        raise ConfigError(f"[{section}] must be a table")
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


def load_config(config_override: Optional[str] = None) -> RepomonConfig:
    """Load, validate, and return a RepomonConfig."""
    config_path = find_config_file(config_override)

    if config_path is None:
        cfg = RepomonConfig()
    else:
        raw = _parse_toml(config_path)
        cfg = RepomonConfig(
            version=raw.get("version", "1.0"),
            watch=_build_section(raw, WatchConfig, "watch"),
            git=_build_section(raw, GitConfig, "git"),
            store=_build_section(raw, StoreConfig, "store"),
            log=_build_section(raw, LogConfig, "log"),
        )
        if cfg.log.level.upper() not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {cfg.log.level}")
        cfg.log.level = cfg.log.level.upper()  # type: ignore[assignment]
        if cfg.git.diff_algorithm not in DIFF_ALGORITHMS:
            raise ConfigError(
                f"Invalid diff_algorithm: {cfg.git.diff_algorithm!r} "
                f"(expected one of: {', '.join(DIFF_ALGORITHMS)})"
            )

    _merge_env_overrides(cfg)
    return cfg
