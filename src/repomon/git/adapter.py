"""Git subprocess wrapper — repository probe, porcelain status, per-file diff."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from repomon.errors import OracleCommandFailed
from repomon.git.models import RepoStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _run_git(args: list[str], cwd: Path, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run a git command and return stdout. Raises OracleCommandFailed on failure."""
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError:
        raise OracleCommandFailed("git is not installed or not on PATH")
    except NotADirectoryError:
        raise OracleCommandFailed(f"not a directory: {cwd}")
    except subprocess.TimeoutExpired:
        raise OracleCommandFailed(
            f"git command timed out after {timeout}s: git {' '.join(args)}"
        )

    if result.returncode != 0:
        stderr = result.stderr.strip()
        # Non-zero exit without a fatal message is not an error (e.g. diff --exit-code)
        if not stderr or not any(
            marker in stderr.lower() for marker in ("fatal", "error:")
        ):
            return result.stdout
        raise OracleCommandFailed(f"git error: {stderr}")
    return result.stdout


def get_repo_root(cwd: Optional[Path] = None, timeout: float = DEFAULT_TIMEOUT) -> Path:
    """Return the root of the git repository containing *cwd*."""
    cwd = cwd or Path.cwd()
    out = _run_git(["rev-parse", "--show-toplevel"], cwd=cwd, timeout=timeout)
    return Path(out.strip())


def get_git_dir(repo_path: Path, timeout: float = DEFAULT_TIMEOUT) -> Path:
    """Return the absolute ``.git`` directory for *repo_path*."""
    out = _run_git(["rev-parse", "--absolute-git-dir"], cwd=repo_path, timeout=timeout)
    return Path(out.strip())


def is_repository(path: Path, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """Return True if *path* is inside a git working tree.

    Raises OracleCommandFailed only when git itself is unusable.
    """
    if not path.is_dir():
        return False
    try:
        out = _run_git(["rev-parse", "--is-inside-work-tree"], cwd=path, timeout=timeout)
    except OracleCommandFailed as exc:
        if "not installed" in str(exc) or "timed out" in str(exc):
            raise
        return False
    return out.strip() == "true"


def _parse_branch(header: str) -> Optional[str]:
    """Parse the ``## ...`` line of ``git status --branch`` output."""
    info = header[3:] if header.startswith("## ") else header
    for prefix in ("No commits yet on ", "Initial commit on "):
        if info.startswith(prefix):
            return info[len(prefix):].strip() or None
    if info.startswith("HEAD (no branch)"):
        return "HEAD"
    # main...origin/main [ahead 1]
    info = info.split(" [", 1)[0]
    return info.split("...", 1)[0].strip() or None


def parse_porcelain_status(output: str) -> RepoStatus:
    """Parse ``git status --porcelain=v1 --branch -z`` output."""
    branch: Optional[str] = None
    modified: List[str] = []
    created: List[str] = []
    deleted: List[str] = []
    untracked: List[str] = []

    entries = output.split("\0")
    idx = 0
    while idx < len(entries):
        entry = entries[idx]
        idx += 1
        if not entry:
            continue
        if entry.startswith("## "):
            branch = _parse_branch(entry)
            continue
        if len(entry) < 4:
            continue

        x, y, path = entry[0], entry[1], entry[3:]
        code = x + y

        if code == "??":
            untracked.append(path)
        elif code == "!!":
            continue
        elif x in "RC":
            # Rename/copy: the source path follows as its own NUL-terminated entry
            source = entries[idx] if idx < len(entries) else ""
            idx += 1
            created.append(path)
            if x == "R" and source:
                deleted.append(source)
            if y == "M":
                modified.append(path)
        elif "U" in code or code in ("AA", "DD"):
            modified.append(path)
        else:
            if x == "A":
                created.append(path)
            if x == "D" or y == "D":
                deleted.append(path)
            if x == "M" or y == "M" or x == "T" or y == "T":
                modified.append(path)

    return RepoStatus(
        branch=branch,
        modified=tuple(modified),
        created=tuple(created),
        deleted=tuple(deleted),
        untracked=tuple(untracked),
    )


def get_status(repo_path: Path, timeout: float = DEFAULT_TIMEOUT) -> RepoStatus:
    """Return the working-tree status of *repo_path*."""
    output = _run_git(
        ["status", "--porcelain=v1", "--branch", "-z", "--untracked-files=all"],
        cwd=repo_path,
        timeout=timeout,
    )
    return parse_porcelain_status(output)


def has_commits(repo_path: Path, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """Return True once HEAD points at a commit (False on an unborn branch)."""
    try:
        out = _run_git(
            ["rev-parse", "--verify", "--quiet", "HEAD"], cwd=repo_path, timeout=timeout
        )
    except OracleCommandFailed:
        return False
    return bool(out.strip())


def get_file_diff(
    repo_path: Path,
    file: str,
    *,
    algorithm: str = "histogram",
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Return the unified diff of *file* against HEAD (or the index without commits).

    Raises OracleCommandFailed when git fails or produces no hunk, which is
    what happens for binary content and mode-only changes.
    """
    base = ["diff", "HEAD"] if has_commits(repo_path, timeout) else ["diff", "--cached"]
    output = _run_git(
        [*base, "--no-color", "--no-ext-diff", f"--diff-algorithm={algorithm}", "--", file],
        cwd=repo_path,
        timeout=timeout,
    )
    if "\n@@ " not in output and not output.startswith("@@ "):
        if output.strip():
            raise OracleCommandFailed(f"no textual diff for {file} (binary or mode change)")
        raise OracleCommandFailed(f"empty diff for {file}")
    return output


class GitOracle:
    """The version-control oracle consumed by the status computer and registry."""

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT, diff_algorithm: str = "histogram") -> None:
        self.timeout = timeout
        self.diff_algorithm = diff_algorithm

    def is_repository(self, path: Path) -> bool:
        return is_repository(Path(path), timeout=self.timeout)

    def status(self, path: Path) -> RepoStatus:
        return get_status(Path(path), timeout=self.timeout)

    def diff(self, path: Path, file: str) -> str:
        return get_file_diff(
            Path(path), file, algorithm=self.diff_algorithm, timeout=self.timeout
        )

    def repo_root(self, path: Path) -> Path:
        return get_repo_root(Path(path), timeout=self.timeout)

    def git_dir(self, path: Path) -> Path:
        return get_git_dir(Path(path), timeout=self.timeout)
