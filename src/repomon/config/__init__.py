"""Configuration loading, schema, and defaults."""

from repomon.config.loader import ConfigError, default_config_path, load_config
from repomon.config.schema import (
    GitConfig,
    LogConfig,
    RepomonConfig,
    StoreConfig,
    WatchConfig,
)

__all__ = [
    "ConfigError",
    "GitConfig",
    "LogConfig",
    "RepomonConfig",
    "StoreConfig",
    "WatchConfig",
    "default_config_path",
    "load_config",
]
