"""Filesystem subscriptions and per-repository watch sessions."""

from repomon.watch.events import EventKind, FsEvent, WatchdogSubscriber
from repomon.watch.session import DebouncePhase, WatchSession, WatchState

__all__ = [
    "DebouncePhase",
    "EventKind",
    "FsEvent",
    "WatchSession",
    "WatchState",
    "WatchdogSubscriber",
]
