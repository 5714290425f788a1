"""Operation kinds and the table of operations currently in flight."""

from __future__ import annotations

from collections import Counter
from enum import Enum

__all__ = [
    "Operation",
    "OperationsTable",
    "RepositoryState",
    "is_read_only",
    "should_show_progress",
]


class RepositoryState(str, Enum):
    """Lifecycle state of a repository session.

    Running is not a state of its own: it is observed through
    :class:`OperationsTable`.
    """

    IDLE = "idle"
    DISPOSED = "disposed"


class Operation(str, Enum):
    """Logical operations the engine serializes."""

    ADD = "add"
    ADD_CHANGELIST = "add_changelist"
    CHANGES = "changes"
    CLEANUP = "cleanup"
    COMMIT = "commit"
    CURRENT_BRANCH = "current_branch"
    IGNORE = "ignore"
    INFO = "info"
    LIST = "list"
    LOG = "log"
    MERGE = "merge"
    NEW_BRANCH = "new_branch"
    PATCH = "patch"
    REMOVE = "remove"
    REMOVE_CHANGELIST = "remove_changelist"
    RENAME = "rename"
    RESOLVE = "resolve"
    REVERT = "revert"
    SHOW = "show"
    STATUS = "status"
    STATUS_REMOTE = "status_remote"
    SWITCH_BRANCH = "switch_branch"
    UPDATE = "update"


_READ_ONLY: frozenset[Operation] = frozenset(
    {
        Operation.CURRENT_BRANCH,
        Operation.LOG,
        Operation.SHOW,
        Operation.INFO,
        Operation.CHANGES,
        Operation.LIST,
    }
)

_NO_PROGRESS: frozenset[Operation] = frozenset(
    {Operation.CURRENT_BRANCH, Operation.SHOW, Operation.INFO}
)


def is_read_only(operation: Operation) -> bool:
    """Return True if *operation* cannot change working-copy status."""
    return operation in _READ_ONLY


def should_show_progress(operation: Operation) -> bool:
    """Return True if *operation* is wrapped in a progress indicator."""
    return operation not in _NO_PROGRESS


class OperationsTable:
    """Counts in-flight operations per kind."""

    def __init__(self) -> None:
        self._running: Counter[Operation] = Counter()

    def start(self, operation: Operation) -> None:
        self._running[operation] += 1

    def end(self, operation: Operation) -> None:
        count = self._running[operation] - 1
        if count > 0:
            self._running[operation] = count
        else:
            self._running.pop(operation, None)

    def is_running(self, operation: Operation) -> bool:
        return self._running[operation] > 0

    def is_idle(self) -> bool:
        return not any(self._running.values())

    def running(self) -> list[Operation]:
        """Return the operations currently in flight."""
        return [op for op, count in self._running.items() if count > 0]
