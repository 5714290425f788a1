"""Operation engine exceptions."""

from __future__ import annotations

from lodestar.exceptions.base import LodestarError


class RepositoryError(LodestarError):
    """Base exception for repository engine failures.

    Attributes:
        message: Human-readable error message.
        root: Working-copy root the error relates to.
    """

    def __init__(self, message: str, *, root: str | None = None) -> None:
        self.root = root
        super().__init__(message)


class RepositoryNotIdleError(RepositoryError):
    """``run()`` was called while the repository could not start an operation.

    This is a caller bug, not a retryable condition: operations are not
    queued inside the engine.

    Attributes:
        operation: The operation that was refused.
    """

    def __init__(
        self,
        message: str = "Repository not initialized",
        *,
        operation: str | None = None,
        root: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, root=root)


class RepositoryDisposedError(RepositoryNotIdleError):
    """The repository has been closed and accepts no further work.

    A disposed repository is never idle again, so this is a
    :class:`RepositoryNotIdleError` too.
    """

    def __init__(
        self,
        message: str = "Repository is disposed",
        *,
        operation: str | None = None,
        root: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, root=root)


__all__ = [
    "RepositoryDisposedError",
    "RepositoryError",
    "RepositoryNotIdleError",
]
