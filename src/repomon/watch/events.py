"""Filesystem change notification on top of watchdog observers.

One observer per subscription, so each stream can be torn down on its own.
Ignore globs use gitwildmatch syntax and are matched against the path
relative to the watched root.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol, Sequence

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from repomon.errors import WatcherError

logger = logging.getLogger(__name__)

BINARY_EXTENSIONS = (
    "jpg", "jpeg", "png", "gif", "ico", "db", "sqlite", "mov", "mp4", "mp3",
    "zip", "tar", "gz", "tgz", "7z", "pdf", "dmg", "pkg", "woff", "ttf",
)

WORKTREE_IGNORES = (
    ".git/",
    "node_modules/",
    "build/",
    "dist/",
    "tmp/",
    "temp/",
    "__pycache__/",
    ".venv/",
    "._*",
    ".DS_Store",
    "Thumbs.db",
    *(f"*.{ext}" for ext in BINARY_EXTENSIONS),
)

# Relative to the git dir. Object storage and reflogs churn on every commit
# without adding anything that refs/HEAD/index writes do not already signal.
METADATA_IGNORES = (
    "objects/",
    "logs/",
    "*.lock",
)


class EventKind(str, Enum):
    ADD = "add"
    CHANGE = "change"
    REMOVE = "remove"


@dataclass(frozen=True)
class FsEvent:
    kind: EventKind
    path: Path


EventCallback = Callable[[FsEvent], None]
ErrorCallback = Callable[[WatcherError], None]


def build_ignore_spec(patterns: Iterable[str]) -> PathSpec:
    return PathSpec.from_lines(GitWildMatchPattern, list(patterns))


class Subscription(Protocol):
    def close(self) -> None: ...


class Subscriber(Protocol):
    def subscribe(
        self,
        root: Path,
        ignore: Sequence[str],
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...


class _FilteringHandler(FileSystemEventHandler):
    """Translate watchdog events to FsEvents, dropping ignored and directory paths.

    Losing the watched root itself is reported once through *on_error*.
    """

    def __init__(
        self,
        root: Path,
        spec: PathSpec,
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        super().__init__()
        self._root = root
        self._spec = spec
        self._callback = callback
        self._on_error = on_error
        self._root_lost = False

    def _ignored(self, path: Path) -> bool:
        try:
            rel = path.relative_to(self._root)
        except ValueError:
            return True
        if rel == Path("."):
            return True
        return self._spec.match_file(rel.as_posix())

    def _emit(self, kind: EventKind, raw_path) -> None:
        path = Path(os.fsdecode(raw_path))
        if self._ignored(path):
            return
        logger.debug("fs %s: %s", kind.value, path)
        self._callback(FsEvent(kind, path))

    def _check_root(self, event: FileSystemEvent) -> bool:
        if event.event_type not in ("deleted", "moved"):
            return False
        if Path(os.fsdecode(event.src_path)) != self._root:
            return False
        if not self._root_lost:
            self._root_lost = True
            exc = WatcherError(f"Watched directory removed: {self._root}")
            logger.warning("%s", exc)
            if self._on_error is not None:
                self._on_error(exc)
        return True

    def on_any_event(self, event: FileSystemEvent) -> None:
        if self._check_root(event) or self._root_lost:
            return
        if event.is_directory:
            return
        if event.event_type == "created":
            self._emit(EventKind.ADD, event.src_path)
        elif event.event_type == "modified":
            self._emit(EventKind.CHANGE, event.src_path)
        elif event.event_type == "deleted":
            self._emit(EventKind.REMOVE, event.src_path)
        elif event.event_type == "moved":
            self._emit(EventKind.REMOVE, event.src_path)
            self._emit(EventKind.ADD, event.dest_path)


class WatchdogSubscription:
    def __init__(self, observer: Observer, root: Path) -> None:
        self._observer = observer
        self._root = root
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop delivering events. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._observer.unschedule_all()
        self._observer.stop()
        if threading.current_thread() is not self._observer:
            self._observer.join(timeout=2.0)
        logger.debug("Unsubscribed from %s", self._root)


class WatchdogSubscriber:
    """Filesystem change-notification capability backed by watchdog."""

    def __init__(self, observer_factory: Optional[Callable[[], Observer]] = None) -> None:
        self._observer_factory = observer_factory or Observer

    def subscribe(
        self,
        root: Path,
        ignore: Sequence[str],
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> WatchdogSubscription:
        root = Path(root)
        handler = _FilteringHandler(root, build_ignore_spec(ignore), callback, on_error)
        observer = self._observer_factory()
        try:
            observer.schedule(handler, str(root), recursive=True)
            observer.start()
        except (OSError, RuntimeError) as exc:
            raise WatcherError(f"Cannot watch {root}: {exc}") from exc
        logger.debug("Subscribed to %s", root)
        return WatchdogSubscription(observer, root)
