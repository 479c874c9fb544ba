"""Error taxonomy shared by the oracle, status computer, sessions and registry."""

from __future__ import annotations


class RepomonError(Exception):
    """Base class for every error raised by repomon."""


class PathNotFound(RepomonError):
    """The path handed to the registry does not exist on disk."""


class NotAGitRepository(RepomonError):
    """The oracle rejected the path as a git working tree."""


class AlreadyRegistered(RepomonError):
    """A repository with the same canonical path is already registered."""


class RepositoryNotRegistered(RepomonError):
    """The repository id is unknown to the registry."""


class OracleCommandFailed(RepomonError):
    """Raised when git is unavailable or a status/diff query fails."""


class FileReadFailed(RepomonError):
    """A working-tree file could not be read. Never fatal for a snapshot."""


class WatcherError(RepomonError):
    """A filesystem subscription could not be established or died."""
