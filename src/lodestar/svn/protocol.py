"""Collaborator protocols consumed by the operation engine.

The engine never talks to ``svn`` or to the editor directly. Everything
it needs from the outside is described here and satisfied via structural
typing, so tests can pass simple fakes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from lodestar.svn.models import Credential, RepositoryInfo, StatusEntry

if TYPE_CHECKING:
    from lodestar.events import Event


@runtime_checkable
class SvnBackend(Protocol):
    """Narrow interface over one svn working copy.

    Failures are reported as :class:`~lodestar.exceptions.SvnError` with
    ``error_code`` set.
    """

    root: str
    workspace_root: str
    info: RepositoryInfo
    username: str | None
    password: str | None

    async def get_status(
        self,
        *,
        include_ignored: bool = False,
        include_externals: bool = True,
        check_remote_changes: bool = False,
    ) -> list[StatusEntry]:
        """Return the raw status snapshot of the working copy."""
        ...

    async def get_repository_uuid(self) -> str:
        """Return the UUID of the repository the working copy points at."""
        ...

    async def get_current_branch(self) -> str:
        """Return the branch name derived from the working-copy URL."""
        ...

    async def update_info(self) -> None:
        """Refresh the cached ``info`` record."""
        ...

    async def get_branches(self) -> list[str]: ...

    async def add_files(self, files: Sequence[str]) -> str: ...

    async def add_changelist(self, files: Sequence[str], changelist: str) -> str: ...

    async def remove_changelist(self, files: Sequence[str]) -> str: ...

    async def commit_files(self, message: str, files: Sequence[str]) -> str: ...

    async def revert(self, files: Sequence[str], depth: str) -> str: ...

    async def remove_files(self, files: Sequence[str], keep_local: bool) -> str: ...

    async def cleanup(self) -> str: ...

    async def resolve(self, files: Sequence[str], action: str) -> str: ...

    async def update(self, ignore_externals: bool) -> str: ...

    async def switch_branch(self, name: str, force: bool) -> str: ...

    async def new_branch(self, name: str, commit_message: str) -> str: ...

    async def merge(self, name: str, reintegrate: bool, accept_action: str) -> str: ...

    async def show(self, path: str, revision: str | None) -> str: ...

    async def get_info(self, path: str, revision: str | None) -> Any: ...

    async def log(
        self, rfrom: str, rto: str, limit: int, target: str | None
    ) -> list[Any]: ...

    async def ls(self, path: str) -> list[Any]: ...

    async def get_changes(self) -> list[Any]: ...


@runtime_checkable
class SecretStore(Protocol):
    """Key/value secret storage owned by the host editor."""

    async def get(self, key: str) -> str | None: ...

    async def store(self, key: str, value: str) -> None: ...


@runtime_checkable
class FocusTracker(Protocol):
    """Host window focus state."""

    @property
    def focused(self) -> bool: ...

    @property
    def on_did_change_focus(self) -> Event[bool]: ...


#: Asks the user for new credentials; None means the prompt was dismissed.
CredentialPrompt = Callable[[str | None, str | None], Awaitable[Credential | None]]

#: Asks the user what to do with files deleted outside of svn.
DeletedFilesPrompt = Callable[[list[str]], Awaitable[None]]

#: Wraps an operation in a user-visible progress indicator.
ProgressReporter = Callable[[str], AbstractAsyncContextManager[Any]]

#: Builds a backend for a working-copy path.
BackendFactory = Callable[[str], Awaitable[SvnBackend]]


__all__ = [
    "BackendFactory",
    "CredentialPrompt",
    "DeletedFilesPrompt",
    "FocusTracker",
    "ProgressReporter",
    "SecretStore",
    "SvnBackend",
]
