"""Tests for watchdog event translation and subscriptions."""

from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from repomon.errors import WatcherError
from repomon.watch.events import (
    METADATA_IGNORES,
    WORKTREE_IGNORES,
    EventKind,
    FsEvent,
    WatchdogSubscriber,
    _FilteringHandler,
    build_ignore_spec,
)


@pytest.fixture
def received():
    return []


def _handler(root: Path, received, patterns=WORKTREE_IGNORES) -> _FilteringHandler:
    return _FilteringHandler(root, build_ignore_spec(patterns), received.append)


class TestFilteringHandler:
    def test_event_kinds(self, tmp_path: Path, received):
        handler = _handler(tmp_path, received)
        handler.dispatch(FileCreatedEvent(str(tmp_path / "a.py")))
        handler.dispatch(FileModifiedEvent(str(tmp_path / "a.py")))
        handler.dispatch(FileDeletedEvent(str(tmp_path / "a.py")))
        assert [e.kind for e in received] == [EventKind.ADD, EventKind.CHANGE, EventKind.REMOVE]
        assert received[0] == FsEvent(EventKind.ADD, tmp_path / "a.py")

    def test_move_is_remove_then_add(self, tmp_path: Path, received):
        handler = _handler(tmp_path, received)
        handler.dispatch(FileMovedEvent(str(tmp_path / "old.py"), str(tmp_path / "new.py")))
        assert received == [
            FsEvent(EventKind.REMOVE, tmp_path / "old.py"),
            FsEvent(EventKind.ADD, tmp_path / "new.py"),
        ]

    def test_directory_events_skipped(self, tmp_path: Path, received):
        handler = _handler(tmp_path, received)
        handler.dispatch(DirCreatedEvent(str(tmp_path / "pkg")))
        assert received == []

    @pytest.mark.parametrize(
        "rel",
        [
            ".git/index",
            "node_modules/left-pad/index.js",
            "web/node_modules/x.js",
            "dist/bundle.js",
            "__pycache__/m.cpython-312.pyc",
            "assets/logo.png",
            "._resource",
            ".DS_Store",
        ],
    )
    def test_worktree_ignores(self, tmp_path: Path, received, rel):
        handler = _handler(tmp_path, received)
        handler.dispatch(FileModifiedEvent(str(tmp_path / rel)))
        assert received == []

    def test_regular_source_passes(self, tmp_path: Path, received):
        handler = _handler(tmp_path, received)
        handler.dispatch(FileModifiedEvent(str(tmp_path / "src" / "build_tools.py")))
        assert len(received) == 1

    def test_paths_outside_root_dropped(self, tmp_path: Path, received):
        handler = _handler(tmp_path / "repo", received)
        handler.dispatch(FileModifiedEvent(str(tmp_path / "elsewhere.py")))
        assert received == []

    def test_metadata_ignores(self, tmp_path: Path, received):
        git_dir = tmp_path / ".git"
        handler = _handler(git_dir, received, METADATA_IGNORES)
        handler.dispatch(FileModifiedEvent(str(git_dir / "objects" / "ab" / "cdef")))
        handler.dispatch(FileCreatedEvent(str(git_dir / "index.lock")))
        handler.dispatch(FileModifiedEvent(str(git_dir / "logs" / "HEAD")))
        handler.dispatch(FileModifiedEvent(str(git_dir / "HEAD")))
        handler.dispatch(FileModifiedEvent(str(git_dir / "refs" / "heads" / "main")))
        assert [e.path.name for e in received] == ["HEAD", "main"]


class TestLostRoot:
    def test_root_deletion_reported(self, tmp_path: Path, received):
        errors = []
        handler = _FilteringHandler(
            tmp_path, build_ignore_spec(WORKTREE_IGNORES), received.append, errors.append
        )
        handler.dispatch(DirDeletedEvent(str(tmp_path)))
        (exc,) = errors
        assert isinstance(exc, WatcherError)
        assert str(exc) == f"Watched directory removed: {tmp_path}"
        assert received == []

    def test_root_move_reported_once(self, tmp_path: Path, received):
        errors = []
        root = tmp_path / "repo"
        handler = _FilteringHandler(root, build_ignore_spec(()), received.append, errors.append)
        handler.dispatch(DirMovedEvent(str(root), str(tmp_path / "renamed")))
        handler.dispatch(DirDeletedEvent(str(root)))
        handler.dispatch(FileModifiedEvent(str(root / "a.py")))
        assert len(errors) == 1
        assert received == []

    def test_subdirectory_deletion_is_not_fatal(self, tmp_path: Path, received):
        errors = []
        handler = _FilteringHandler(
            tmp_path, build_ignore_spec(()), received.append, errors.append
        )
        handler.dispatch(DirDeletedEvent(str(tmp_path / "pkg")))
        handler.dispatch(FileDeletedEvent(str(tmp_path / "pkg" / "m.py")))
        assert errors == []
        assert received == [FsEvent(EventKind.REMOVE, tmp_path / "pkg" / "m.py")]


class _BrokenObserver:
    def schedule(self, handler, path, recursive=False):
        raise OSError(28, "inotify watch limit reached")

    def start(self):
        pass


class TestWatchdogSubscriber:
    def test_schedule_failure_is_watcher_error(self, tmp_path: Path):
        subscriber = WatchdogSubscriber(observer_factory=_BrokenObserver)
        with pytest.raises(WatcherError, match="inotify watch limit"):
            subscriber.subscribe(tmp_path, (), lambda event: None)

    def test_subscribe_and_close(self, tmp_path: Path):
        subscription = WatchdogSubscriber().subscribe(tmp_path, WORKTREE_IGNORES, lambda event: None)
        assert not subscription.closed
        subscription.close()
        subscription.close()
        assert subscription.closed
