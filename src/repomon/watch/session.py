"""Per-repository watch session — two event streams, one debounced computation.

Lifecycle::

    STOPPED -> STARTING -> ACTIVE -> STOPPED
                              \\-> ERROR   (terminal; create a new session)

Debounce phases while ACTIVE::

    IDLE --event--> PENDING(timer) --event--> PENDING(timer re-armed)
    PENDING --timer fires--> COMPUTING --done--> IDLE
    COMPUTING --event--> COMPUTING(rerun) --done--> PENDING

A computation is only ever started from PENDING, and PENDING is only entered
when no computation is running, so there is never more than one in flight.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Set

from repomon.errors import OracleCommandFailed, WatcherError
from repomon.git.adapter import get_git_dir
from repomon.git.models import Snapshot
from repomon.status import Oracle, StatusComputer
from repomon.watch.events import (
    METADATA_IGNORES,
    WORKTREE_IGNORES,
    FsEvent,
    Subscriber,
    Subscription,
    WatchdogSubscriber,
)

logger = logging.getLogger(__name__)

SnapshotSink = Callable[[Snapshot], None]


class WatchState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"
    ERROR = "error"


class DebouncePhase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMPUTING = "computing"


class Timer(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]

# Consecutive stabilization waits before computing regardless of mtimes
MAX_SETTLE_WAITS = 5


def locate_git_dir(repo_path: Path, oracle: Optional[Oracle] = None) -> Optional[Path]:
    """Return the git dir of *repo_path*, or None when it cannot be found.

    A plain ``.git`` directory wins; otherwise (worktrees, submodules) the
    oracle is asked.
    """
    candidate = repo_path / ".git"
    if candidate.is_dir():
        return candidate
    try:
        if oracle is not None:
            return oracle.git_dir(repo_path)
        return get_git_dir(repo_path)
    except OracleCommandFailed as exc:
        logger.warning("No git dir for %s, metadata events disabled: %s", repo_path, exc)
        return None


class WatchSession:
    """Owns the filesystem subscriptions and debounce state of one repository."""

    def __init__(
        self,
        repo_path: Path,
        computer: StatusComputer,
        sink: SnapshotSink,
        *,
        subscriber: Optional[Subscriber] = None,
        git_dir: Optional[Path] = None,
        content_debounce: float = 0.4,
        metadata_debounce: float = 0.8,
        stabilization: float = 0.3,
        extra_ignore: Sequence[str] = (),
        timer_factory: TimerFactory = threading.Timer,
        on_error: Optional[Callable[[WatcherError], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repo_path = Path(repo_path)
        self.repository_id = str(repo_path)
        self.computer = computer
        self.sink = sink
        self.subscriber = subscriber or WatchdogSubscriber()
        self.git_dir = git_dir
        self.content_debounce = content_debounce
        self.metadata_debounce = metadata_debounce
        self.stabilization = stabilization
        self.ignore = (*WORKTREE_IGNORES, *extra_ignore)
        self.on_error = on_error
        self._timer_factory = timer_factory
        self._clock = clock

        self._lock = threading.RLock()
        self._state = WatchState.STOPPED
        self._phase = DebouncePhase.IDLE
        self._subscriptions: List[Subscription] = []
        self._timer: Optional[Timer] = None
        self._generation = 0
        self._rerun = False
        self._pending_metadata = False
        self._touched: Set[Path] = set()
        self._settle_waits = 0
        self.computations = 0

    # ---- introspection ----

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def phase(self) -> DebouncePhase:
        return self._phase

    def __enter__(self) -> "WatchSession":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ---- lifecycle ----

    def start(self) -> None:
        """Subscribe to both event streams and schedule the initial snapshot."""
        with self._lock:
            if self._state is WatchState.ERROR:
                raise WatcherError("session has failed; create a new session to retry")
            if self._state is not WatchState.STOPPED:
                return
            self._state = WatchState.STARTING

        subscriptions: List[Subscription] = []
        try:
            subscriptions.append(
                self.subscriber.subscribe(
                    self.repo_path, self.ignore, self._on_content_event, on_error=self._fail
                )
            )
            git_dir = self.git_dir or locate_git_dir(self.repo_path, self.computer.oracle)
            if git_dir is not None:
                subscriptions.append(
                    self.subscriber.subscribe(
                        git_dir, METADATA_IGNORES, self._on_metadata_event, on_error=self._fail
                    )
                )
        except WatcherError as exc:
            for sub in subscriptions:
                sub.close()
            self._fail(exc)
            return

        with self._lock:
            if self._state is not WatchState.STARTING:
                # stop() raced with start()
                for sub in subscriptions:
                    sub.close()
                return
            self._subscriptions = subscriptions
            self._state = WatchState.ACTIVE
            logger.info("Watching %s", self.repo_path)
            self._arm(0.0)

    def stop(self) -> None:
        """Tear down subscriptions, then pending timers. Idempotent."""
        with self._lock:
            if self._state is WatchState.STOPPED:
                return
            if self._state is not WatchState.ERROR:
                self._state = WatchState.STOPPED
            subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            sub.close()
        with self._lock:
            self._cancel_timer()
            self._phase = DebouncePhase.IDLE
            self._rerun = False
            self._touched.clear()
            self._settle_waits = 0
        logger.info("Stopped watching %s", self.repo_path)

    def refresh(self) -> bool:
        """Request an immediate computation. Returns False unless ACTIVE."""
        with self._lock:
            if self._state is not WatchState.ACTIVE:
                return False
            if self._phase is DebouncePhase.COMPUTING:
                self._rerun = True
            else:
                self._arm(0.0)
            return True

    def _fail(self, exc: WatcherError) -> None:
        """Move to ERROR, tear down, and report *exc* once. May run on an observer thread."""
        with self._lock:
            if self._state in (WatchState.STOPPED, WatchState.ERROR):
                return
            self._state = WatchState.ERROR
            subscriptions, self._subscriptions = self._subscriptions, []
            self._cancel_timer()
            self._phase = DebouncePhase.IDLE
        for sub in subscriptions:
            sub.close()
        logger.error("Watcher failed for %s: %s", self.repo_path, exc)
        self._deliver(Snapshot.failed(self.repository_id, f"Watcher error: {exc}"))
        if self.on_error is not None:
            self.on_error(exc)

    # ---- events ----

    def _on_content_event(self, event: FsEvent) -> None:
        with self._lock:
            self._touched.add(event.path)
            self._trigger(self.content_debounce)

    def _on_metadata_event(self, event: FsEvent) -> None:
        with self._lock:
            self._pending_metadata = True
            self._trigger(self.metadata_debounce)

    def _trigger(self, window: float) -> None:
        if self._state is not WatchState.ACTIVE:
            return
        if self._phase is DebouncePhase.COMPUTING:
            self._rerun = True
            return
        self._arm(self._window(window))

    def _window(self, window: float) -> float:
        if self._pending_metadata:
            return max(window, self.metadata_debounce)
        return window

    # ---- timer ----

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._generation += 1

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        generation = self._generation
        timer = self._timer_factory(delay, lambda: self._fire(generation))
        timer.daemon = True
        self._timer = timer
        self._phase = DebouncePhase.PENDING
        timer.start()

    def _stabilization_remaining(self) -> float:
        if self.stabilization <= 0 or not self._touched:
            return 0.0
        newest = 0.0
        for path in self._touched:
            try:
                newest = max(newest, os.stat(path).st_mtime)
            except OSError:
                continue
        if not newest:
            return 0.0
        age = self._clock() - newest
        if age < 0 or age >= self.stabilization:
            # A future mtime (clock skew, restored archives) counts as settled
            return 0.0
        return self.stabilization - age

    def _fire(self, generation: int) -> None:
        with self._lock:
            if (
                self._state is not WatchState.ACTIVE
                or generation != self._generation
                or self._phase is not DebouncePhase.PENDING
            ):
                return
            self._timer = None
            wait = self._stabilization_remaining()
            if wait > 0 and self._settle_waits < MAX_SETTLE_WAITS:
                self._settle_waits += 1
                logger.debug("Writes still settling in %s, waiting %.2fs", self.repo_path, wait)
                self._arm(wait)
                return
            self._phase = DebouncePhase.COMPUTING
            self._pending_metadata = False
            self._rerun = False
            self._touched.clear()
            self._settle_waits = 0
            self.computations += 1

        snapshot = self._compute()

        with self._lock:
            active = self._state is WatchState.ACTIVE
        if active:
            self._deliver(snapshot)
        else:
            logger.debug("Discarding snapshot for stopped session %s", self.repo_path)

        with self._lock:
            if self._state is not WatchState.ACTIVE:
                self._phase = DebouncePhase.IDLE
            elif self._rerun:
                self._rerun = False
                self._arm(self._window(self.content_debounce))
            else:
                self._phase = DebouncePhase.IDLE

    def _compute(self) -> Snapshot:
        try:
            return self.computer.compute(self.repo_path)
        except Exception as exc:
            logger.exception("Status computation crashed for %s", self.repo_path)
            return Snapshot.failed(self.repository_id, f"Status computation failed: {exc}")

    def _deliver(self, snapshot: Snapshot) -> None:
        try:
            self.sink(snapshot)
        except Exception:
            logger.exception("Snapshot sink raised for %s", self.repo_path)
