"""Repository registry — the registered set, the current selection, and their sessions.

All mutations run under one re-entrant lock, so an add and a remove of the
same path cannot interleave. Subscribers receive :class:`SnapshotEvent` and
:class:`RepositoriesEvent` objects; ``SnapshotEvent(None, None)`` means no
repository is selected.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from repomon.errors import (
    AlreadyRegistered,
    NotAGitRepository,
    PathNotFound,
    RepositoryNotRegistered,
    WatcherError,
)
from repomon.git.models import DiffStats, Snapshot
from repomon.status import StatusComputer
from repomon.store import KeyValueStore, MemoryStore
from repomon.watch.session import WatchSession, WatchState

logger = logging.getLogger(__name__)

REPOSITORIES_KEY = "repositories"
CURRENT_KEY = "currentRepository"
RECENT_KEY = "recentRepositories"
MAX_RECENT = 20

SessionFactory = Callable[[Path, Callable[[Snapshot], None]], WatchSession]


@dataclass
class Repository:
    id: str
    display_name: str
    registered_at: datetime
    branch: Optional[str] = None
    last_snapshot: Optional[Snapshot] = None
    stats: DiffStats = field(default_factory=DiffStats)
    session: Optional[WatchSession] = field(default=None, repr=False)

    @property
    def watch_state(self) -> WatchState:
        return self.session.state if self.session is not None else WatchState.STOPPED

    @property
    def changed_files(self) -> int:
        if self.last_snapshot is None or self.last_snapshot.is_error:
            return 0
        return len(self.last_snapshot.files)


@dataclass(frozen=True)
class RepoSummary:
    id: str
    display_name: str
    branch: Optional[str]
    additions: int
    deletions: int
    changed_files: int
    watch_state: WatchState
    is_current: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class SnapshotEvent:
    repository_id: Optional[str]
    snapshot: Optional[Snapshot]

    @property
    def no_selection(self) -> bool:
        return self.repository_id is None


@dataclass(frozen=True)
class RepositoriesEvent:
    repositories: Tuple[RepoSummary, ...]
    current_id: Optional[str]


RegistryEvent = Union[SnapshotEvent, RepositoriesEvent]
Listener = Callable[[RegistryEvent], None]


class Subscription:
    """Handle returned by :meth:`RepoRegistry.subscribe`."""

    def __init__(self, registry: "RepoRegistry", listener: Listener) -> None:
        self._registry = registry
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._registry._remove_subscription(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


def canonical_path(path: Union[str, Path]) -> Path:
    return Path(os.path.expanduser(str(path))).resolve()


class RepoRegistry:
    """Owns every registered repository and its WatchSession."""

    def __init__(
        self,
        computer: StatusComputer,
        store: Optional[KeyValueStore] = None,
        *,
        session_factory: Optional[SessionFactory] = None,
        watch: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.computer = computer
        self.store = store if store is not None else MemoryStore()
        self._session_factory = session_factory or self._default_session
        self._watch = watch
        self._clock = clock
        self._lock = threading.RLock()
        self._repos: Dict[str, Repository] = {}
        self._current: Optional[str] = None
        self._subscriptions: List[Subscription] = []
        self._subs_lock = threading.Lock()

    def _default_session(self, path: Path, sink: Callable[[Snapshot], None]) -> WatchSession:
        return WatchSession(path, self.computer, sink)

    # ---- context manager ----

    def __enter__(self) -> "RepoRegistry":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---- queries ----

    @property
    def current_id(self) -> Optional[str]:
        return self._current

    def get(self, repo_id: str) -> Repository:
        with self._lock:
            repo = self._repos.get(self._key(repo_id))
            if repo is None:
                raise RepositoryNotRegistered(f"Repository not registered: {repo_id}")
            return repo

    def list(self) -> List[RepoSummary]:
        """Registered repositories in registration order."""
        with self._lock:
            return [self._summary(repo) for repo in self._repos.values()]

    def recent(self) -> List[Dict[str, Any]]:
        return list(self.store.get(RECENT_KEY, []) or [])

    def get_snapshot(self, repo_id: str) -> Snapshot:
        """Return the cached snapshot, computing one if none has arrived yet."""
        repo = self.get(repo_id)
        if repo.last_snapshot is not None:
            return repo.last_snapshot
        snapshot = self.computer.compute(repo.id)
        self._on_snapshot(repo.id, snapshot)
        return snapshot

    # ---- mutations ----

    def add_repository(self, path: Union[str, Path], *, select: bool = True) -> str:
        """Register *path* and start watching it. Returns the repository id.

        Raises PathNotFound, AlreadyRegistered or NotAGitRepository and leaves
        the registry unchanged when validation fails.
        """
        with self._lock:
            repo = self._register(path, registered_at=self._clock())
            self._persist_repositories()
            self._push_recent(repo)
            if select or self._current is None:
                self._set_current(repo.id)
            else:
                self._publish_repositories()
        return repo.id

    def _register(self, path: Union[str, Path], *, registered_at: datetime) -> Repository:
        canonical = canonical_path(path)
        if not canonical.exists():
            raise PathNotFound(f"Path does not exist: {path}")
        if str(canonical) in self._repos:
            raise AlreadyRegistered(f"Repository already registered: {canonical}")
        if not self.computer.oracle.is_repository(canonical):
            raise NotAGitRepository(f"Not a Git repository: {canonical}")
        # A subdirectory registers as the working tree that contains it
        canonical = canonical_path(self.computer.oracle.repo_root(canonical))
        repo_id = str(canonical)
        if repo_id in self._repos:
            raise AlreadyRegistered(f"Repository already registered: {repo_id}")

        repo = Repository(
            id=repo_id,
            display_name=canonical.name or repo_id,
            registered_at=registered_at,
        )
        self._repos[repo_id] = repo
        logger.info("Registered %s", repo_id)
        if self._watch:
            repo.session = self._session_factory(
                canonical, lambda snapshot, rid=repo_id: self._on_snapshot(rid, snapshot)
            )
            repo.session.on_error = lambda exc, rid=repo_id: self._on_watcher_error(rid, exc)
            repo.session.start()
        return repo

    def remove_repository(self, repo_id: str) -> None:
        """Stop watching and forget *repo_id*, reselecting if it was current."""
        with self._lock:
            key = self._key(repo_id)
            repo = self._repos.get(key)
            if repo is None:
                raise RepositoryNotRegistered(f"Repository not registered: {repo_id}")
            if repo.session is not None:
                repo.session.stop()
            del self._repos[key]
            self.computer.forget(key)
            logger.info("Removed %s", key)
            self._persist_repositories()

            if self._current == key:
                successor = self._most_recent()
                if successor is None:
                    self._current = None
                    self.store.set(CURRENT_KEY, None)
                    self._publish_repositories()
                    self._publish(SnapshotEvent(None, None))
                else:
                    self._set_current(successor)
            else:
                self._publish_repositories()

    def select_current(self, repo_id: str) -> None:
        """Make *repo_id* current and request a fresh snapshot for it."""
        with self._lock:
            key = self._key(repo_id)
            if key not in self._repos:
                raise RepositoryNotRegistered(f"Repository not registered: {repo_id}")
            self._set_current(key)

    def restore(self) -> List[str]:
        """Re-register persisted repositories and the persisted selection.

        Entries whose path vanished or stopped being a repository are logged
        and dropped. Returns the ids that came back.
        """
        restored: List[str] = []
        with self._lock:
            saved_current = self.store.get(CURRENT_KEY)
            for entry in self.store.get(REPOSITORIES_KEY, []) or []:
                path = entry.get("path") if isinstance(entry, dict) else entry
                if not path:
                    continue
                try:
                    repo = self._register(path, registered_at=_parse_timestamp(entry, self._clock))
                except AlreadyRegistered:
                    continue
                except (PathNotFound, NotAGitRepository) as exc:
                    logger.warning("Skipping persisted repository %s: %s", path, exc)
                    continue
                restored.append(repo.id)
            self._persist_repositories()

            if saved_current and saved_current in self._repos:
                self._set_current(saved_current)
            elif self._repos:
                self._set_current(self._most_recent())
            else:
                self._current = None
                self.store.set(CURRENT_KEY, None)
                self._publish_repositories()
        return restored

    def close(self) -> None:
        """Stop every session. Registrations stay persisted."""
        with self._lock:
            for repo in self._repos.values():
                if repo.session is not None:
                    repo.session.stop()

    # ---- subscriptions ----

    def subscribe(self, listener: Listener) -> Subscription:
        subscription = Subscription(self, listener)
        with self._subs_lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: Subscription) -> None:
        with self._subs_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _publish(self, event: RegistryEvent) -> None:
        with self._subs_lock:
            listeners = [s.listener for s in self._subscriptions if s.active]
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Registry subscriber raised on %s", type(event).__name__)

    def _publish_repositories(self) -> None:
        self._publish(RepositoriesEvent(tuple(self.list()), self._current))

    # ---- internals ----

    def _key(self, repo_id: str) -> str:
        if repo_id in self._repos:
            return repo_id
        return str(canonical_path(repo_id))

    def _most_recent(self) -> Optional[str]:
        if not self._repos:
            return None
        # max() keeps the first of equal timestamps; iterate newest-registered first
        ordered = list(reversed(list(self._repos.values())))
        return max(ordered, key=lambda r: r.registered_at).id

    def _set_current(self, repo_id: str) -> None:
        self._current = repo_id
        self.store.set(CURRENT_KEY, repo_id)
        self._publish_repositories()
        repo = self._repos[repo_id]
        if repo.session is not None and repo.session.refresh():
            return
        # Session is not active (error or stopped); compute directly
        self._on_snapshot(repo_id, self.computer.compute(repo_id))

    def _on_snapshot(self, repo_id: str, snapshot: Snapshot) -> None:
        with self._lock:
            repo = self._repos.get(repo_id)
            if repo is None:
                logger.debug("Dropping snapshot for removed repository %s", repo_id)
                return
            before = self._summary(repo)
            repo.last_snapshot = snapshot
            if not snapshot.is_error:
                repo.branch = snapshot.branch
                repo.stats = self.computer.aggregate_stats(snapshot)
            changed = self._summary(repo) != before
        self._publish(SnapshotEvent(repo_id, snapshot))
        if changed:
            self._publish_repositories()

    def _on_watcher_error(self, repo_id: str, exc: WatcherError) -> None:
        logger.error("Repository %s is no longer watched: %s", repo_id, exc)

    def _summary(self, repo: Repository) -> RepoSummary:
        snapshot = repo.last_snapshot
        return RepoSummary(
            id=repo.id,
            display_name=repo.display_name,
            branch=repo.branch,
            additions=repo.stats.additions,
            deletions=repo.stats.deletions,
            changed_files=repo.changed_files,
            watch_state=repo.watch_state,
            is_current=repo.id == self._current,
            error=snapshot.error if snapshot is not None else None,
        )

    def _persist_repositories(self) -> None:
        self.store.set(
            REPOSITORIES_KEY,
            [
                {
                    "path": repo.id,
                    "name": repo.display_name,
                    "registeredAt": repo.registered_at.isoformat(),
                }
                for repo in self._repos.values()
            ],
        )

    def _push_recent(self, repo: Repository) -> None:
        recents = [
            r for r in (self.store.get(RECENT_KEY, []) or [])
            if isinstance(r, dict) and r.get("path") != repo.id
        ]
        recents.insert(
            0,
            {
                "path": repo.id,
                "name": repo.display_name,
                "timestamp": self._clock().isoformat(),
            },
        )
        self.store.set(RECENT_KEY, recents[:MAX_RECENT])


def _parse_timestamp(entry: Any, fallback: Callable[[], datetime]) -> datetime:
    raw = entry.get("registeredAt") if isinstance(entry, dict) else None
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return fallback()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return fallback()
