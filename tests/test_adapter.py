"""Tests for the git adapter — porcelain parsing and real git round trips."""

import subprocess
from pathlib import Path

import pytest

from repomon.errors import OracleCommandFailed
from repomon.git.adapter import (
    GitOracle,
    _parse_branch,
    get_file_diff,
    get_git_dir,
    get_status,
    has_commits,
    is_repository,
    parse_porcelain_status,
)


class TestParseBranch:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("## main", "main"),
            ("## main...origin/main", "main"),
            ("## feature/x...origin/feature/x [ahead 2, behind 1]", "feature/x"),
            ("## No commits yet on main", "main"),
            ("## Initial commit on trunk", "trunk"),
            ("## HEAD (no branch)", "HEAD"),
        ],
    )
    def test_headers(self, header, expected):
        assert _parse_branch(header) == expected


class TestParsePorcelain:
    def test_clean(self):
        status = parse_porcelain_status("## main\0")
        assert status.branch == "main"
        assert status.is_clean

    def test_basic_codes(self):
        output = "\0".join([
            "## main",
            " M app.py",
            "M  staged.py",
            "A  new.py",
            " D gone.py",
            "D  staged_gone.py",
            "?? scratch.txt",
            "!! ignored.log",
            "",
        ])
        status = parse_porcelain_status(output)
        assert status.modified == ("app.py", "staged.py")
        assert status.created == ("new.py",)
        assert status.deleted == ("gone.py", "staged_gone.py")
        assert status.untracked == ("scratch.txt",)

    def test_added_then_modified_lands_in_both(self):
        status = parse_porcelain_status("AM both.py\0")
        assert status.created == ("both.py",)
        assert status.modified == ("both.py",)

    def test_rename_consumes_source_entry(self):
        status = parse_porcelain_status("## main\0R  new_name.py\0old_name.py\0 M other.py\0")
        assert status.created == ("new_name.py",)
        assert status.deleted == ("old_name.py",)
        assert status.modified == ("other.py",)

    def test_copy_keeps_source(self):
        status = parse_porcelain_status("C  copy.py\0orig.py\0")
        assert status.created == ("copy.py",)
        assert status.deleted == ()

    def test_conflict_is_modified(self):
        status = parse_porcelain_status("UU merge.py\0AA both_added.py\0")
        assert status.modified == ("merge.py", "both_added.py")

    def test_type_change_is_modified(self):
        assert parse_porcelain_status(" T link\0").modified == ("link",)

    def test_paths_with_spaces(self):
        status = parse_porcelain_status("?? my notes.txt\0")
        assert status.untracked == ("my notes.txt",)


class TestRepositoryProbe:
    def test_repo(self, tmp_git_repo: Path):
        assert is_repository(tmp_git_repo) is True

    def test_plain_dir(self, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        assert is_repository(plain) is False

    def test_missing_dir(self, tmp_path: Path):
        assert is_repository(tmp_path / "nope") is False

    def test_git_dir(self, tmp_git_repo: Path):
        assert get_git_dir(tmp_git_repo) == (tmp_git_repo / ".git").resolve()

    def test_has_commits(self, tmp_git_repo: Path, empty_git_repo: Path):
        assert has_commits(tmp_git_repo) is True
        assert has_commits(empty_git_repo) is False


class TestRealGit:
    def test_status_clean(self, tmp_git_repo: Path):
        status = get_status(tmp_git_repo)
        assert status.branch == "main"
        assert status.is_clean

    def test_status_untracked_in_subdir(self, tmp_git_repo: Path):
        (tmp_git_repo / "pkg").mkdir()
        (tmp_git_repo / "pkg" / "mod.py").write_text("x = 1\n")
        status = get_status(tmp_git_repo)
        assert status.untracked == ("pkg/mod.py",)

    def test_status_no_commits(self, empty_git_repo: Path):
        (empty_git_repo / "a.txt").write_text("a\n")
        status = get_status(empty_git_repo)
        assert status.branch == "main"
        assert status.untracked == ("a.txt",)

    def test_file_diff(self, tmp_git_repo: Path):
        (tmp_git_repo / "app.py").write_text("a\nB\n")
        diff = get_file_diff(tmp_git_repo, "app.py")
        assert "@@ -1,2 +1,2 @@" in diff
        assert "-b\n" in diff
        assert "+B\n" in diff

    def test_file_diff_staged_in_empty_repo(self, empty_git_repo: Path):
        (empty_git_repo / "a.txt").write_text("one\n")
        subprocess.run(["git", "add", "a.txt"], cwd=empty_git_repo, capture_output=True, check=True)
        diff = get_file_diff(empty_git_repo, "a.txt")
        assert "+one" in diff

    def test_status_added_then_deleted(self, empty_git_repo: Path):
        (empty_git_repo / "a.txt").write_text("one\n")
        subprocess.run(["git", "add", "a.txt"], cwd=empty_git_repo, capture_output=True, check=True)
        (empty_git_repo / "a.txt").unlink()
        status = get_status(empty_git_repo)
        assert status.created == ("a.txt",)
        assert status.deleted == ("a.txt",)

    def test_unchanged_file_raises(self, tmp_git_repo: Path):
        with pytest.raises(OracleCommandFailed):
            get_file_diff(tmp_git_repo, "README.md")

    def test_status_outside_repo_raises(self, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        with pytest.raises(OracleCommandFailed):
            get_status(plain)


class TestGitOracle:
    def test_delegates(self, tmp_git_repo: Path):
        oracle = GitOracle(timeout=5.0, diff_algorithm="myers")
        (tmp_git_repo / "README.md").unlink()
        assert oracle.is_repository(tmp_git_repo)
        assert oracle.status(tmp_git_repo).deleted == ("README.md",)
        assert "-# Test" in oracle.diff(tmp_git_repo, "README.md")

    def test_repo_root_from_subdirectory(self, tmp_git_repo: Path):
        sub = tmp_git_repo / "pkg" / "inner"
        sub.mkdir(parents=True)
        assert GitOracle().repo_root(sub).resolve() == tmp_git_repo.resolve()

    def test_git_dir_through_facade(self, tmp_git_repo: Path):
        assert GitOracle().git_dir(tmp_git_repo).resolve() == (tmp_git_repo / ".git").resolve()
