"""One svn working copy: operation execution and status synchronization.

The :class:`Repository` serializes operations against its backend, retries
transient failures, keeps its resource groups in sync with ``svn status``
and reacts to filesystem changes, focus changes and the remote change
timer.

Example:
    ```python
    from lodestar.config import ConfigurationReader, load_config
    from lodestar.repository import Repository

    repository = await Repository.create(
        backend,
        config=ConfigurationReader(load_config()),
        secrets=secret_store,
        credential_prompt=ask_for_credentials,
    )
    await repository.commit_files("fix typo", ["/work/trunk/README"])
    print(repository.count, [r.path for r in repository.changes.resources])
    ```
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Any, TypeVar

from lodestar.config import ConfigurationReader
from lodestar.constants import (
    DELETED_FILES_DEBOUNCE_SECONDS,
    FS_CHANGE_DEBOUNCE_SECONDS,
    SETTLE_DELAY_SECONDS,
    UPDATE_MODEL_STATE_KEY,
)
from lodestar.events import Disposable, Event, any_event, dispose_all
from lodestar.exceptions import RepositoryDisposedError, RepositoryNotIdleError
from lodestar.logging import get_logger
from lodestar.repository.credentials import CredentialManager
from lodestar.repository.groups import (
    ResourceGroup,
    ResourceGroupManager,
    SourceControlPanel,
)
from lodestar.repository.operations import (
    Operation,
    OperationsTable,
    RepositoryState,
    is_read_only,
    should_show_progress,
)
from lodestar.repository.remote_changes import RemoteChangePoller
from lodestar.repository.retry import SleepFunc, retry_run
from lodestar.repository.status import Resource, StatusService
from lodestar.repository.watcher import RepositoryFilesWatcher
from lodestar.svn.error_codes import SvnErrorCode
from lodestar.svn.models import Status, StatusEntry
from lodestar.svn.protocol import (
    CredentialPrompt,
    DeletedFilesPrompt,
    FocusTracker,
    ProgressReporter,
    SecretStore,
    SvnBackend,
)
from lodestar.utils.async_utils import (
    cancel_debounced,
    debounce,
    global_sequentialize,
    memoize,
    throttle,
)
from lodestar.utils.globs import match_all
from lodestar.utils.sanitize import sanitize_error_log

__all__ = ["Repository"]

logger = get_logger(__name__)

T = TypeVar("T")


def _no_progress(title: str) -> AbstractAsyncContextManager[Any]:
    return nullcontext()


async def _noop() -> None:
    return None


class Repository:
    """Operation engine and status model for one working copy.

    Args:
        backend: svn backend for the working copy.
        config: Live configuration.
        secrets: Secret store for saved credentials.
        credential_prompt: Asks the user for credentials.
        focus: Window focus state; refreshes wait for focus when given.
        progress: Wraps long operations in a progress indicator.
        deleted_files_prompt: Called with files deleted outside of svn when
            ``delete.action_for_deleted_files`` is ``prompt``.
        panel: Panel to create resource groups on.
        watcher: Filesystem watcher; one rooted at ``backend.root`` by default.
        sleep: Coroutine used for retry backoff and the settle delay.
    """

    def __init__(
        self,
        backend: SvnBackend,
        *,
        config: ConfigurationReader | None = None,
        secrets: SecretStore | None = None,
        credential_prompt: CredentialPrompt | None = None,
        focus: FocusTracker | None = None,
        progress: ProgressReporter | None = None,
        deleted_files_prompt: DeletedFilesPrompt | None = None,
        panel: SourceControlPanel | None = None,
        watcher: RepositoryFilesWatcher | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self._config = config if config is not None else ConfigurationReader()
        self._focus = focus
        self._progress = progress if progress is not None else _no_progress
        self._deleted_files_prompt = deleted_files_prompt
        self._sleep = sleep

        self._state = RepositoryState.IDLE
        self._operations = OperationsTable()
        self._disposed = False
        self._close_requested = False
        self._disposables: list[Disposable] = []
        self._deleted_paths: list[str] = []

        self.status_external: list[StatusEntry] = []
        self.status_ignored: list[StatusEntry] = []
        self.is_incomplete = False
        self.need_clean_up = False
        self.remote_changed_files = 0
        self.current_branch = ""

        self.on_run_operation: Event[Operation] = Event("run_operation")
        self.on_did_run_operation: Event[Operation] = Event("did_run_operation")
        self.on_did_change_state: Event[RepositoryState] = Event("did_change_state")
        self.on_did_change_status: Event[None] = Event("did_change_status")
        self.on_did_change_remote_changed_files: Event[None] = Event(
            "did_change_remote_changed_files"
        )
        self.on_did_change_repository: Event[str] = Event("did_change_repository")
        self.on_did_request_close: Event[Repository] = Event("did_request_close")
        self._on_did_change_focus: Event[bool] = Event("did_change_focus")
        if focus is not None:
            focus.on_did_change_focus.subscribe(self._on_did_change_focus.fire, self._disposables)

        self.panel = (
            panel
            if panel is not None
            else SourceControlPanel("svn", "SVN", backend.workspace_root)
        )
        self._groups = ResourceGroupManager(self.panel)
        self._credentials = CredentialManager(backend, secrets, credential_prompt)
        self._status_service = StatusService(backend, self._config, self.retry_run)
        self._remote_poller = RemoteChangePoller(self, self._config)

        self.watcher = watcher if watcher is not None else RepositoryFilesWatcher(backend.root)
        self.watcher.on_did_any.subscribe(self._on_fs_change, self._disposables)
        self.watcher.on_did_svn_any.subscribe(self._on_did_svn_change, self._disposables)
        self.watcher.on_did_workspace_delete.subscribe(
            self._deleted_paths.append, self._disposables
        )
        # Deleted files are only checked once status reflects them.
        self.on_did_change_status.subscribe(
            lambda _: self.action_for_deleted_files(), self._disposables
        )

        self._log = logger.bind(root=backend.root)

    @classmethod
    async def create(cls, backend: SvnBackend, **kwargs: Any) -> Repository:
        """Build a repository, start its watchers and load the first status."""
        repository = cls(backend, **kwargs)
        try:
            repository.watcher.start()
            repository._remote_poller.start()
            repository.update_remote_changed_files()
            await repository.status()
        except BaseException:
            repository.dispose()
            raise
        return repository

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def root(self) -> str:
        return self.backend.root

    @property
    def workspace_root(self) -> str:
        return self.backend.workspace_root

    @property
    def username(self) -> str | None:
        return self.backend.username

    @username.setter
    def username(self, username: str | None) -> None:
        self.backend.username = username

    @property
    def password(self) -> str | None:
        return self.backend.password

    @password.setter
    def password(self, password: str | None) -> None:
        self.backend.password = password

    @property
    def config(self) -> ConfigurationReader:
        return self._config

    @property
    def operations(self) -> OperationsTable:
        return self._operations

    @property
    def credentials(self) -> CredentialManager:
        return self._credentials

    @property
    def remote_poller(self) -> RemoteChangePoller:
        return self._remote_poller

    @property
    def groups(self) -> ResourceGroupManager:
        return self._groups

    @property
    def changes(self) -> ResourceGroup:
        return self._groups.changes

    @property
    def conflicts(self) -> ResourceGroup:
        return self._groups.conflicts

    @property
    def unversioned(self) -> ResourceGroup:
        return self._groups.unversioned

    @property
    def remote_changes(self) -> ResourceGroup | None:
        return self._groups.remote_changes

    @property
    def changelists(self) -> dict[str, ResourceGroup]:
        return self._groups.changelists

    @property
    def count(self) -> int:
        """Badge count of the last status pass."""
        return self.panel.count

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    @memoize
    def on_did_change_operations(self) -> Event[Operation]:
        """Fires when an operation starts or finishes."""
        return any_event(
            self.on_run_operation, self.on_did_run_operation, name="did_change_operations"
        )

    @property
    def state(self) -> RepositoryState:
        return self._state

    @state.setter
    def state(self, state: RepositoryState) -> None:
        self._state = state
        self.on_did_change_state.fire(state)

        self._groups.clear_all()
        self._groups.dispose_remote_changes()
        self.is_incomplete = False
        self.need_clean_up = False

    # =========================================================================
    # Operation engine
    # =========================================================================

    def _ensure_can_run(self, operation: Operation) -> None:
        if self._disposed:
            raise RepositoryDisposedError(operation=operation.value, root=self.root)
        if self._state is not RepositoryState.IDLE:
            raise RepositoryNotIdleError(operation=operation.value, root=self.root)
        if not self._operations.is_idle():
            running = ", ".join(op.value for op in self._operations.running())
            raise RepositoryNotIdleError(
                f"Cannot run {operation.value} while {running} is running",
                operation=operation.value,
                root=self.root,
            )

    async def run(
        self,
        operation: Operation,
        run_operation: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        """Run one operation.

        The operation is retried on lock and credential failures. Unless it
        is read-only, status is reconciled after it succeeds.

        Args:
            operation: Kind of operation, used for progress and events.
            run_operation: Factory for the backend call; called once per attempt.

        Returns:
            Whatever *run_operation* returned.

        Raises:
            RepositoryNotIdleError: Another operation is running or the
                repository is no longer idle.
        """
        self._ensure_can_run(operation)

        self._operations.start(operation)
        self.on_run_operation.fire(operation)
        self._log.debug("operation_started", operation=operation.value)
        try:
            if should_show_progress(operation):
                async with self._progress(operation.value):
                    return await self._execute(operation, run_operation)
            return await self._execute(operation, run_operation)
        finally:
            self._operations.end(operation)
            self.on_did_run_operation.fire(operation)
            self._log.debug("operation_finished", operation=operation.value)

    async def _execute(
        self,
        operation: Operation,
        run_operation: Callable[[], Awaitable[T]] | None,
    ) -> T:
        try:
            result: T = await self.retry_run(run_operation or _noop)  # type: ignore[arg-type]
            if not is_read_only(operation):
                await self.update_model_state(operation is Operation.STATUS_REMOTE)
            return result
        except Exception as exc:
            self._log.warning(
                "operation_failed", operation=operation.value, **sanitize_error_log(exc)
            )
            if getattr(exc, "error_code", None) == SvnErrorCode.NOT_A_SVN_REPOSITORY:
                self.state = RepositoryState.DISPOSED
                self._request_close()
            elif not os.path.exists(self.workspace_root):
                self._request_close()
            raise

    async def retry_run(self, run_operation: Callable[[], Awaitable[T]]) -> T:
        """Run *run_operation* with lock backoff and credential rotation."""
        return await retry_run(
            run_operation, credentials=self._credentials, sleep=self._sleep
        )

    def _request_close(self) -> None:
        if self._close_requested:
            return
        self._close_requested = True
        self._log.info("repository_close_requested", state=self._state.value)
        self.on_did_request_close.fire(self)

    # =========================================================================
    # Status synchronization
    # =========================================================================

    @throttle
    @global_sequentialize(UPDATE_MODEL_STATE_KEY)
    async def update_model_state(self, check_remote_changes: bool = False) -> None:
        """Reconcile the resource groups with a fresh ``svn status``."""
        result = await self._status_service.update_model_state(check_remote_changes)
        if self._disposed:
            return

        self.status_external = list(result.status_external)
        self.status_ignored = list(result.status_ignored)
        self.is_incomplete = result.is_incomplete
        self.need_clean_up = result.need_clean_up

        self._groups.update_groups(
            result,
            count_unversioned=bool(
                self._config.get("source_control.count_unversioned", False)
            ),
            ignore_on_status_count=self._config.get(
                "source_control.ignore_on_status_count", []
            ),
        )

        if result.checked_remote and len(result.remote_changes) != self.remote_changed_files:
            self.remote_changed_files = len(result.remote_changes)
            self.on_did_change_remote_changed_files.fire(None)

        self.on_did_change_status.fire(None)

        try:
            self.current_branch = await self.backend.get_current_branch()
        except Exception as exc:
            self._log.warning("current_branch_failed", **sanitize_error_log(exc))

    def update_remote_changed_files(self) -> None:
        """Schedule a (debounced) remote change check."""
        self._remote_poller.update_remote_changed_files()

    def dispose_remote_changes(self) -> None:
        self._groups.dispose_remote_changes()

    async def when_idle_and_focused(self) -> None:
        """Wait until no operation runs and the window has focus.

        Raises:
            RepositoryDisposedError: If the repository is disposed first.
        """
        while True:
            if self._disposed:
                raise RepositoryDisposedError(root=self.root)

            try:
                if not self._operations.is_idle():
                    await self.on_did_run_operation.next()
                    continue

                if self._focus is not None and not self._focus.focused:
                    await self._on_did_change_focus.next(lambda focused: focused)
                    continue
            except asyncio.CancelledError:
                # Pending waits are cancelled when the events are disposed.
                if not self._disposed:
                    raise
                continue

            return

    def _on_fs_change(self, path: str) -> None:
        if not self._config.get("autorefresh", True):
            return
        if not self._operations.is_idle():
            return
        self._eventually_update_when_idle_and_wait()

    @debounce(FS_CHANGE_DEBOUNCE_SECONDS)
    async def _eventually_update_when_idle_and_wait(self) -> None:
        await self.update_when_idle_and_wait()

    @throttle
    async def update_when_idle_and_wait(self) -> None:
        """Refresh status once idle and focused, then let things settle."""
        try:
            await self.when_idle_and_focused()
            await self.status()
        except RepositoryDisposedError:
            self._log.debug("refresh_skipped_disposed")
            return
        except RepositoryNotIdleError:
            self._log.debug("refresh_skipped_busy")
        await self._sleep(SETTLE_DELAY_SECONDS)

    @debounce(FS_CHANGE_DEBOUNCE_SECONDS)
    async def _on_did_svn_change(self, path: str) -> None:
        await self.backend.update_info()
        self.on_did_change_repository.fire(path)

    # =========================================================================
    # Deleted files
    # =========================================================================

    @debounce(DELETED_FILES_DEBOUNCE_SECONDS)
    async def action_for_deleted_files(self) -> None:
        """Debounced :meth:`process_deleted_files`."""
        await self.process_deleted_files()

    async def process_deleted_files(self) -> None:
        """Act on files deleted from disk that svn now reports as missing."""
        if not self._deleted_paths:
            return

        paths = list(dict.fromkeys(os.path.normpath(p) for p in self._deleted_paths))
        self._deleted_paths.clear()

        action = self._config.get("delete.action_for_deleted_files", "prompt")
        if action == "none":
            return

        missing = [
            path
            for path in paths
            if (resource := self.get_resource_from_file(path)) is not None
            and resource.type is Status.MISSING
        ]

        rules: list[str] = list(
            self._config.get("delete.ignored_rules_for_deleted_files", [])
        )
        if rules:
            missing = [
                path
                for path in missing
                if not match_all(os.path.relpath(path, self.workspace_root), rules)
            ]

        if not missing:
            return

        self._log.debug("deleted_files_found", count=len(missing), action=action)
        if action == "remove":
            await self.remove_files(missing, keep_local=False)
        elif action == "prompt" and self._deleted_files_prompt is not None:
            await self._deleted_files_prompt(missing)

    # =========================================================================
    # Operations
    # =========================================================================

    def get_resource_from_file(self, path: str) -> Resource | None:
        """Return the local resource for *path* (absolute or workspace-relative)."""
        absolute = os.path.normpath(os.path.join(self.workspace_root, path))
        return self._groups.get_resource(absolute)

    async def get_branches(self) -> list[str]:
        try:
            return await self.backend.get_branches()
        except Exception as exc:
            self._log.warning("get_branches_failed", **sanitize_error_log(exc))
            return []

    @throttle
    async def status(self) -> None:
        await self.run(Operation.STATUS)

    async def show(self, path: str, revision: str | None = None) -> str:
        return await self.run(Operation.SHOW, lambda: self.backend.show(path, revision))

    async def add_files(self, files: Sequence[str]) -> str:
        return await self.run(Operation.ADD, lambda: self.backend.add_files(files))

    async def add_changelist(self, files: Sequence[str], changelist: str) -> str:
        return await self.run(
            Operation.ADD_CHANGELIST,
            lambda: self.backend.add_changelist(files, changelist),
        )

    async def remove_changelist(self, files: Sequence[str]) -> str:
        return await self.run(
            Operation.REMOVE_CHANGELIST, lambda: self.backend.remove_changelist(files)
        )

    async def get_current_branch(self) -> str:
        return await self.run(Operation.CURRENT_BRANCH, self.backend.get_current_branch)

    async def new_branch(
        self, name: str, commit_message: str = "Created new branch"
    ) -> str:
        async def op() -> str:
            response = await self.backend.new_branch(name, commit_message)
            self.update_remote_changed_files()
            return response

        return await self.run(Operation.NEW_BRANCH, op)

    async def switch_branch(self, name: str, force: bool = False) -> str:
        async def op() -> str:
            response = await self.backend.switch_branch(name, force)
            self.update_remote_changed_files()
            return response

        return await self.run(Operation.SWITCH_BRANCH, op)

    async def merge(
        self, name: str, reintegrate: bool = False, accept_action: str = "postpone"
    ) -> str:
        async def op() -> str:
            response = await self.backend.merge(name, reintegrate, accept_action)
            self.update_remote_changed_files()
            return response

        return await self.run(Operation.MERGE, op)

    async def update_revision(self, ignore_externals: bool | None = None) -> str:
        if ignore_externals is None:
            ignore_externals = bool(self._config.get("update.ignore_externals", True))

        async def op() -> str:
            response = await self.backend.update(ignore_externals)
            self.update_remote_changed_files()
            return response

        return await self.run(Operation.UPDATE, op)

    async def resolve(self, files: Sequence[str], action: str) -> str:
        return await self.run(Operation.RESOLVE, lambda: self.backend.resolve(files, action))

    async def commit_files(self, message: str, files: Sequence[str]) -> str:
        return await self.run(
            Operation.COMMIT, lambda: self.backend.commit_files(message, files)
        )

    async def revert(self, files: Sequence[str], depth: str = "empty") -> str:
        return await self.run(Operation.REVERT, lambda: self.backend.revert(files, depth))

    async def info(self, path: str, revision: str | None = None) -> Any:
        return await self.run(Operation.INFO, lambda: self.backend.get_info(path, revision))

    async def remove_files(self, files: Sequence[str], keep_local: bool) -> str:
        return await self.run(
            Operation.REMOVE, lambda: self.backend.remove_files(files, keep_local)
        )

    async def log(
        self, rfrom: str, rto: str, limit: int, target: str | None = None
    ) -> list[Any]:
        return await self.run(
            Operation.LOG, lambda: self.backend.log(rfrom, rto, limit, target)
        )

    async def cleanup(self) -> str:
        return await self.run(Operation.CLEANUP, self.backend.cleanup)

    async def get_changes(self) -> list[Any]:
        return await self.run(Operation.CHANGES, self.backend.get_changes)

    async def list(self, path: str) -> list[Any]:
        return await self.run(Operation.LIST, lambda: self.backend.ls(path))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def dispose(self) -> None:
        """Release timers, watchers, subscriptions and groups. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._remote_poller.dispose()
        self.watcher.dispose()
        cancel_debounced(self)
        self._disposables = dispose_all(self._disposables)
        self._groups.dispose()
        self.panel.dispose()
        for event in (
            self.on_run_operation,
            self.on_did_run_operation,
            self.on_did_change_state,
            self.on_did_change_status,
            self.on_did_change_remote_changed_files,
            self.on_did_change_repository,
            self.on_did_request_close,
            self._on_did_change_focus,
        ):
            event.dispose()
        self._log.debug("repository_disposed")
