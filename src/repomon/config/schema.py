"""Configuration schema — dataclasses for every config section."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

DiffAlgorithm = Literal["myers", "minimal", "patience", "histogram"]

DIFF_ALGORITHMS = ("myers", "minimal", "patience", "histogram")


@dataclass
class WatchConfig:
    content_debounce_ms: int = 400  # working-tree edits
    metadata_debounce_ms: int = 800  # refs/HEAD/index writes by git itself
    stabilization_ms: int = 300  # wait for in-progress writes to finish
    extra_ignore: List[str] = field(default_factory=list)  # gitwildmatch globs

    @property
    def content_debounce(self) -> float:
        return self.content_debounce_ms / 1000.0

    @property
    def metadata_debounce(self) -> float:
        return self.metadata_debounce_ms / 1000.0

    @property
    def stabilization(self) -> float:
        return self.stabilization_ms / 1000.0


@dataclass
class GitConfig:
    timeout_s: float = 10.0
    diff_algorithm: DiffAlgorithm = "histogram"
    max_file_kb: int = 1024  # larger untracked files get a placeholder diff


@dataclass
class StoreConfig:
    path: str = ""  # empty = platform config dir


@dataclass
class LogConfig:
    level: LogLevel = "WARNING"


@dataclass
class RepomonConfig:
    version: str = "1.0"
    watch: WatchConfig = field(default_factory=WatchConfig)
    git: GitConfig = field(default_factory=GitConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log: LogConfig = field(default_factory=LogConfig)
