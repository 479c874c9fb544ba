"""Git interface layer — adapter, diff parsing, models."""

from repomon.git.adapter import (
    GitOracle,
    get_file_diff,
    get_git_dir,
    get_repo_root,
    get_status,
    is_repository,
    parse_porcelain_status,
)
from repomon.git.diff_parser import DiffParser, diff_stats, parse_diff
from repomon.git.models import (
    DiffStats,
    FileChange,
    FileStatus,
    Hunk,
    LineType,
    ParsedDiff,
    RepoStatus,
    Snapshot,
    classify_line,
)

__all__ = [
    "DiffParser",
    "DiffStats",
    "FileChange",
    "FileStatus",
    "GitOracle",
    "Hunk",
    "LineType",
    "ParsedDiff",
    "RepoStatus",
    "Snapshot",
    "classify_line",
    "diff_stats",
    "get_file_diff",
    "get_git_dir",
    "get_repo_root",
    "get_status",
    "is_repository",
    "parse_diff",
    "parse_porcelain_status",
]
