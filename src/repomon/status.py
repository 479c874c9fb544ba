"""Status computer — turns oracle output into a per-repository Snapshot.

Failure policy: only a repository-level failure (not a repository, git
unusable) yields an error Snapshot. Anything narrower degrades to a
placeholder diff for that single file.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from repomon.errors import FileReadFailed, OracleCommandFailed
from repomon.git.diff_parser import diff_stats, split_lines
from repomon.git.models import DiffStats, FileChange, FileStatus, RepoStatus, Snapshot

logger = logging.getLogger(__name__)

NOT_A_REPOSITORY = "Not a Git repository"
DEFAULT_MAX_FILE_BYTES = 1024 * 1024
_BINARY_SNIFF_BYTES = 8000


class Oracle(Protocol):
    def is_repository(self, path: Path) -> bool: ...

    def status(self, path: Path) -> RepoStatus: ...

    def diff(self, path: Path, file: str) -> str: ...

    def repo_root(self, path: Path) -> Path: ...

    def git_dir(self, path: Path) -> Path: ...


# --- Placeholder diffs ---


def _placeholder(file: str, header: str, hunk: str, body: List[str]) -> str:
    lines = [f"diff --git a/{file} b/{file}", *header.splitlines(), hunk, *body]
    return "\n".join(lines) + "\n"


def added_placeholder(file: str, description: str) -> str:
    return _placeholder(
        file,
        f"new file mode 100644\nindex 0000000..0000000\n--- /dev/null\n+++ b/{file}",
        "@@ -0,0 +1,1 @@",
        [f"+<{description}>"],
    )


def deleted_placeholder(file: str) -> str:
    return _placeholder(
        file,
        f"deleted file mode 100644\nindex 0000000..0000000\n--- a/{file}\n+++ /dev/null",
        "@@ -1 +0,0 @@",
        [f"-<File deleted: {file}>"],
    )


def modified_placeholder(file: str, before: str, after: str) -> str:
    return _placeholder(
        file,
        f"index 0000000..0000000\n--- a/{file}\n+++ b/{file}",
        "@@ -1 +1 @@",
        [f"-<{before}>", f"+<{after}>"],
    )


def synthesize_added_diff(file: str, content: str) -> str:
    """Present every line of *content* as an addition to a new file."""
    lines = split_lines(content)
    out = [
        f"diff --git a/{file} b/{file}",
        "new file mode 100644",
        "index 0000000..0000000",
        "--- /dev/null",
        f"+++ b/{file}",
    ]
    if lines:
        out.append(f"@@ -0,0 +1,{len(lines)} @@")
        out.extend(f"+{line}" for line in lines)
        if not content.endswith("\n"):
            out.append("\\ No newline at end of file")
    return "\n".join(out) + "\n"


def classify(status: RepoStatus) -> Dict[str, FileStatus]:
    """Tag every path once. Created/untracked beat modified, which beats deleted."""
    tagged: Dict[str, FileStatus] = {}
    for path in status.deleted:
        tagged[path] = FileStatus.DELETED
    for path in status.modified:
        tagged[path] = FileStatus.MODIFIED
    for path in (*status.created, *status.untracked):
        tagged[path] = FileStatus.ADDED
    return tagged


class StatusComputer:
    """Compute snapshots through a version-control oracle.

    At most one computation runs per repository path at any instant; a second
    caller for the same path waits for the first to finish.
    """

    def __init__(self, oracle: Oracle, *, max_file_bytes: int = DEFAULT_MAX_FILE_BYTES) -> None:
        self.oracle = oracle
        self.max_file_bytes = max_file_bytes
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, repository_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(repository_id, threading.Lock())

    def forget(self, repository_id: str) -> None:
        """Drop the per-repository lock once *repository_id* is no longer tracked."""
        with self._locks_guard:
            self._locks.pop(repository_id, None)

    def compute(self, repo_path: Union[str, Path]) -> Snapshot:
        """Return a Snapshot for *repo_path*. Never raises for per-file problems."""
        path = Path(repo_path)
        repository_id = str(repo_path)
        with self._lock_for(repository_id):
            return self._compute(path, repository_id)

    def _compute(self, path: Path, repository_id: str) -> Snapshot:
        try:
            if not self.oracle.is_repository(path):
                return Snapshot.failed(repository_id, NOT_A_REPOSITORY)
            computed_at = datetime.now(timezone.utc)
            status = self.oracle.status(path)
        except OracleCommandFailed as exc:
            logger.error("Status query failed for %s: %s", repository_id, exc)
            return Snapshot.failed(repository_id, str(exc))

        files = [
            self._file_change(path, rel, classification)
            for rel, classification in sorted(classify(status).items())
        ]
        logger.debug(
            "Computed %s: branch=%s files=%d", repository_id, status.branch, len(files)
        )
        return Snapshot(
            repository_id=repository_id,
            branch=status.branch,
            files=tuple(files),
            computed_at=computed_at,
        )

    # ---- per-file ----

    def _file_change(self, root: Path, rel: str, classification: FileStatus) -> FileChange:
        if classification is FileStatus.ADDED:
            return self._added(root, rel)
        if classification is FileStatus.DELETED:
            return self._deleted(root, rel)
        return self._modified(root, rel)

    def _read_text(self, file_path: Path) -> str:
        try:
            size = file_path.stat().st_size
            if size > self.max_file_bytes:
                raise FileReadFailed(f"File too large to display ({size} bytes)")
            data = file_path.read_bytes()
        except FileNotFoundError as exc:
            raise FileReadFailed("File no longer exists") from exc
        except OSError as exc:
            raise FileReadFailed(f"Unable to read file: {exc.strerror or exc}") from exc
        if b"\0" in data[:_BINARY_SNIFF_BYTES]:
            raise FileReadFailed("Binary file")
        return data.decode("utf-8", errors="replace")

    def _added(self, root: Path, rel: str) -> FileChange:
        clean = rel.rstrip("/")
        file_path = root / clean
        if file_path.is_dir():
            return FileChange(
                relative_path=rel,
                classification=FileStatus.ADDED,
                diff_text=added_placeholder(clean, f"Directory: {clean}"),
                failure_reason="Path is a directory",
            )
        try:
            content = self._read_text(file_path)
        except FileReadFailed as exc:
            logger.warning("Cannot read %s: %s", file_path, exc)
            return FileChange(
                relative_path=rel,
                classification=FileStatus.ADDED,
                diff_text=added_placeholder(clean, f"{exc}: {clean}"),
                failure_reason=str(exc),
            )
        return FileChange(
            relative_path=rel,
            classification=FileStatus.ADDED,
            diff_text=synthesize_added_diff(clean, content),
        )

    def _deleted(self, root: Path, rel: str) -> FileChange:
        try:
            diff_text = self.oracle.diff(root, rel)
        except OracleCommandFailed as exc:
            logger.warning("Diff failed for deleted file %s: %s", rel, exc)
            return FileChange(
                relative_path=rel,
                classification=FileStatus.DELETED,
                diff_text=deleted_placeholder(rel),
                failure_reason=str(exc),
            )
        return FileChange(rel, FileStatus.DELETED, diff_text)

    def _modified(self, root: Path, rel: str) -> FileChange:
        file_path = root / rel
        if not file_path.exists():
            return FileChange(
                relative_path=rel,
                classification=FileStatus.MODIFIED,
                diff_text=modified_placeholder(
                    rel, "File no longer exists", "File reported as modified but not found"
                ),
                failure_reason="File reported as modified but not found",
            )
        if file_path.is_dir():
            return FileChange(
                relative_path=rel,
                classification=FileStatus.MODIFIED,
                diff_text=modified_placeholder(rel, "Directory", f"Directory: {rel} modified"),
                failure_reason="Path is a directory",
            )
        try:
            diff_text = self.oracle.diff(root, rel)
        except OracleCommandFailed as exc:
            logger.warning("Diff failed for modified file %s: %s", rel, exc)
            return FileChange(
                relative_path=rel,
                classification=FileStatus.MODIFIED,
                diff_text=modified_placeholder(rel, "File content before", f"File modified: {rel}"),
                failure_reason=str(exc),
            )
        return FileChange(rel, FileStatus.MODIFIED, diff_text)

    # ---- aggregates ----

    @staticmethod
    def aggregate_stats(snapshot: Optional[Snapshot]) -> DiffStats:
        """Sum add/delete counts over every file of *snapshot*."""
        total = DiffStats()
        if snapshot is None or snapshot.is_error:
            return total
        for change in snapshot.files:
            try:
                total = total + diff_stats(change.diff_text)
            except ValueError:
                logger.warning("Could not parse diff for %s", change.relative_path)
        return total
