"""Data models for git status, parsed diffs, and snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Optional, Tuple


class LineType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    CONTEXT = "context"
    NO_NEWLINE = "no_newline"


class FileStatus(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


def classify_line(line: str) -> LineType:
    """Classify a hunk body line by its leading character."""
    if line.startswith("+"):
        return LineType.ADDED
    if line.startswith("-"):
        return LineType.REMOVED
    if line.startswith("\\"):
        return LineType.NO_NEWLINE
    return LineType.CONTEXT


@dataclass(frozen=True)
class DiffStats:
    additions: int = 0
    deletions: int = 0

    def __add__(self, other: "DiffStats") -> "DiffStats":
        return DiffStats(
            additions=self.additions + other.additions,
            deletions=self.deletions + other.deletions,
        )


@dataclass
class Hunk:
    """One ``@@`` block of a unified diff."""

    header: str
    old_start: int
    new_start: int
    lines: List[str] = field(default_factory=list)

    def numbered_lines(
        self,
    ) -> Iterator[Tuple[str, LineType, Optional[int], Optional[int]]]:
        """Yield ``(line, type, old_no, new_no)`` for every body line.

        Added lines consume a new-side number only, removed lines an old-side
        number only, context lines both. No-newline markers consume neither.
        """
        old_no = self.old_start
        new_no = self.new_start
        for line in self.lines:
            kind = classify_line(line)
            if kind is LineType.ADDED:
                yield line, kind, None, new_no
                new_no += 1
            elif kind is LineType.REMOVED:
                yield line, kind, old_no, None
                old_no += 1
            elif kind is LineType.NO_NEWLINE:
                yield line, kind, None, None
            else:
                yield line, kind, old_no, new_no
                old_no += 1
                new_no += 1


@dataclass
class ParsedDiff:
    hunks: List[Hunk] = field(default_factory=list)
    stats: DiffStats = field(default_factory=DiffStats)
    first_changed_line: Optional[int] = None


@dataclass(frozen=True)
class RepoStatus:
    """Working-tree status as reported by the oracle. The four sets may overlap."""

    branch: Optional[str] = None
    modified: Tuple[str, ...] = ()
    created: Tuple[str, ...] = ()
    deleted: Tuple[str, ...] = ()
    untracked: Tuple[str, ...] = ()

    @property
    def is_clean(self) -> bool:
        return not (self.modified or self.created or self.deleted or self.untracked)


@dataclass(frozen=True)
class FileChange:
    """A single classified path in a snapshot.

    ``diff_text`` is never empty. When git could not produce a real diff it
    holds a diff-shaped placeholder and ``failure_reason`` says why.
    """

    relative_path: str
    classification: FileStatus
    diff_text: str
    failure_reason: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Snapshot:
    """The state of one repository at ``computed_at``, or a repository-level error."""

    repository_id: str
    branch: Optional[str] = None
    files: Tuple[FileChange, ...] = ()
    computed_at: datetime = field(default_factory=_utcnow)
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def failed(cls, repository_id: str, error: str) -> "Snapshot":
        return cls(repository_id=repository_id, error=error)
