"""Shared test fixtures — sample diffs, fake collaborators, temp git repos."""

from __future__ import annotations

import subprocess
import textwrap
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from repomon.errors import OracleCommandFailed
from repomon.git.models import RepoStatus

_ENV_VARS = (
    "REPOMON_LOG_LEVEL",
    "REPOMON_GIT_TIMEOUT",
    "REPOMON_CONTENT_DEBOUNCE_MS",
    "REPOMON_METADATA_DEBOUNCE_MS",
    "REPOMON_STORE_PATH",
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory, monkeypatch) -> Path:
    """Point the config file at an empty temp dir and clear REPOMON_* overrides."""
    config_dir = tmp_path_factory.mktemp("config")
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "repomon.config.loader.default_config_path", lambda: config_dir / "config.toml"
    )
    monkeypatch.setattr(
        "repomon.store.default_store_path", lambda: config_dir / "repomon-config.json"
    )
    return config_dir


# ── sample diffs ──────────────────────────────────────────────────────────────


@pytest.fixture
def sample_diff_modified() -> str:
    """One line replaced by two near the top of a file."""
    return textwrap.dedent("""\
        diff --git a/app.py b/app.py
        index 1234567..abcdef0 100644
        --- a/app.py
        +++ b/app.py
        @@ -1,2 +1,3 @@
         a
        -b
        +c
        +d
    """)


@pytest.fixture
def sample_diff_added() -> str:
    return textwrap.dedent("""\
        diff --git a/hello.py b/hello.py
        new file mode 100644
        index 0000000..e69de29
        --- /dev/null
        +++ b/hello.py
        @@ -0,0 +1,3 @@
        +def greet(name):
        +    return f"Hello, {name}!"
        +
    """)


@pytest.fixture
def sample_diff_deletion_only() -> str:
    """Two lines removed from the middle of a file."""
    return textwrap.dedent("""\
        diff --git a/notes.txt b/notes.txt
        index 1234567..abcdef0 100644
        --- a/notes.txt
        +++ b/notes.txt
        @@ -4,4 +4,2 @@
         keep
        -drop one
        -drop two
         keep too
    """)


@pytest.fixture
def sample_diff_two_hunks() -> str:
    return textwrap.dedent("""\
        diff --git a/main.c b/main.c
        index 1234567..abcdef0 100644
        --- a/main.c
        +++ b/main.c
        @@ -3,3 +3,3 @@ int main(void)
         {
        -    return 1;
        +    return 0;
         }
        @@ -20,2 +20,3 @@ static void helper(void)
         x();
        +y();
         z();
    """)


@pytest.fixture
def sample_diff_no_newline() -> str:
    """A diff with 'No newline at end of file' marker."""
    return textwrap.dedent("""\
        diff --git a/data.txt b/data.txt
        new file mode 100644
        index 0000000..abc1234
        --- /dev/null
        +++ b/data.txt
        @@ -0,0 +1 @@
        +final line without newline
        \\ No newline at end of file
    """)


@pytest.fixture
def sample_diff_binary() -> str:
    """A diff with a binary file."""
    return textwrap.dedent("""\
        diff --git a/image.png b/image.png
        new file mode 100644
        Binary files /dev/null and b/image.png differ
    """)


# ── fakes ─────────────────────────────────────────────────────────────────────


class FakeOracle:
    """Scripted oracle. Paths in ``repositories`` are repositories."""

    def __init__(
        self,
        status: Optional[RepoStatus] = None,
        diffs: Optional[Dict[str, str]] = None,
        repositories: Optional[List[Path]] = None,
        roots: Optional[Dict[Path, Path]] = None,
        git_dirs: Optional[Dict[Path, Path]] = None,
    ) -> None:
        self.status_result = status or RepoStatus(branch="main")
        self.diffs = diffs or {}
        self.repositories = repositories
        self.roots = roots or {}
        self.git_dirs = git_dirs or {}
        self.git_dir_calls: List[Path] = []
        self.status_calls = 0
        self.status_error: Optional[OracleCommandFailed] = None

    def is_repository(self, path: Path) -> bool:
        if self.repositories is None:
            return Path(path).is_dir()
        return Path(path) in self.repositories

    def status(self, path: Path) -> RepoStatus:
        self.status_calls += 1
        if self.status_error is not None:
            raise self.status_error
        return self.status_result

    def diff(self, path: Path, file: str) -> str:
        if file not in self.diffs:
            raise OracleCommandFailed(f"empty diff for {file}")
        return self.diffs[file]

    def repo_root(self, path: Path) -> Path:
        return self.roots.get(Path(path), Path(path))

    def git_dir(self, path: Path) -> Path:
        self.git_dir_calls.append(Path(path))
        if Path(path) not in self.git_dirs:
            raise OracleCommandFailed(f"git error: fatal: not a git repository: {path}")
        return self.git_dirs[Path(path)]


class FakeTimer:
    """Stand-in for threading.Timer that fires only when told to."""

    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function()


class FakeTimers:
    """Timer factory that records every timer it hands out."""

    def __init__(self) -> None:
        self.created: List[FakeTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.created.append(timer)
        return timer

    @property
    def live(self) -> List[FakeTimer]:
        return [t for t in self.created if t.started and not t.cancelled]

    def fire_live(self) -> None:
        for timer in self.live:
            timer.cancelled = True
            timer.fire()


class FakeSubscription:
    def __init__(self, root: Path, callback, on_error=None) -> None:
        self.root = root
        self.callback = callback
        self.on_error = on_error
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSubscriber:
    """Records subscriptions; set ``fail_on`` to make a root unwatchable."""

    def __init__(self, fail_on: Optional[Path] = None) -> None:
        self.subscriptions: List[FakeSubscription] = []
        self.fail_on = fail_on

    def subscribe(self, root: Path, ignore, callback, on_error=None) -> FakeSubscription:
        from repomon.errors import WatcherError

        if self.fail_on is not None and Path(root) == self.fail_on:
            raise WatcherError(f"Cannot watch {root}: too many open files")
        sub = FakeSubscription(Path(root), callback, on_error)
        self.subscriptions.append(sub)
        return sub


@pytest.fixture
def fake_oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def fake_timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def fake_subscriber() -> FakeSubscriber:
    return FakeSubscriber()


# ── git repos ─────────────────────────────────────────────────────────────────


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return result.stdout


def _init_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init")
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(path, "config", "user.email", "test@test.com")
    git(path, "config", "user.name", "Test")
    git(path, "config", "commit.gpgsign", "false")
    return path


@pytest.fixture
def empty_git_repo(tmp_path: Path) -> Path:
    """A repository on ``main`` with no commits yet."""
    return _init_repo(tmp_path / "empty")


@pytest.fixture
def tmp_git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository for integration tests."""
    repo = _init_repo(tmp_path / "repo")
    # Initial commit
    (repo / "README.md").write_text("# Test\n")
    (repo / "app.py").write_text("a\nb\n")
    git(repo, "add", ".")
    git(repo, "commit", "-m", "init")
    return repo


@pytest.fixture
def make_git_repo(tmp_path: Path):
    """Factory for extra committed repositories under tmp_path."""

    def _make(name: str) -> Path:
        repo = _init_repo(tmp_path / name)
        (repo / "README.md").write_text(f"# {name}\n")
        git(repo, "add", ".")
        git(repo, "commit", "-m", "init")
        return repo

    return _make
