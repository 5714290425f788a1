"""Unit tests for the Repository operation engine."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from watchdog.events import EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED

from lodestar.config import ConfigurationReader
from lodestar.exceptions import RepositoryDisposedError, RepositoryNotIdleError, SvnError
from lodestar.repository import (
    Operation,
    Repository,
    RepositoryFilesWatcher,
    RepositoryState,
)
from lodestar.svn.error_codes import SvnErrorCode
from lodestar.svn.models import Credential, Status
from tests.fixtures.config import ReaderFactory
from tests.fixtures.svn import (
    FakeBackend,
    FakeFocus,
    FakeObserver,
    FakeSecretStore,
    RecordingSleep,
    entry,
    svn_error,
)

RepositoryFactory = Callable[..., Repository]


def abspath(backend: FakeBackend, path: str) -> str:
    return os.path.normpath(os.path.join(backend.workspace_root, path))


# =============================================================================
# Operation engine
# =============================================================================


class TestRun:
    """Tests for Repository.run."""

    @pytest.mark.asyncio
    async def test_status_populates_groups(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.entries = [
            entry(".", Status.NORMAL),
            entry("a.txt", Status.UNVERSIONED),
            entry("m.txt"),
        ]

        await repository.status()

        assert [r.path for r in repository.unversioned.resources] == [abspath(backend, "a.txt")]
        assert [r.path for r in repository.changes.resources] == [abspath(backend, "m.txt")]
        assert repository.count == 1
        assert backend.status_calls == [
            {"include_ignored": True, "include_externals": False, "check_remote_changes": False}
        ]

    @pytest.mark.asyncio
    async def test_fails_fast_while_running(self, repository: Repository) -> None:
        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "done"

        first = asyncio.ensure_future(repository.run(Operation.COMMIT, slow))
        await asyncio.sleep(0)
        assert repository.operations.is_running(Operation.COMMIT)

        with pytest.raises(RepositoryNotIdleError) as exc_info:
            await repository.log("1", "HEAD", 10)

        assert exc_info.value.operation == "log"
        release.set()
        assert await first == "done"
        assert repository.operations.is_idle()

    @pytest.mark.asyncio
    async def test_disposed_repository_refuses(self, repository: Repository) -> None:
        repository.dispose()

        with pytest.raises(RepositoryDisposedError):
            await repository.run(Operation.STATUS)

    @pytest.mark.asyncio
    async def test_read_only_operation_skips_status(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.log.return_value = [{"revision": "42"}]

        result = await repository.log("1", "HEAD", 10)

        assert result == [{"revision": "42"}]
        backend.log.assert_awaited_once_with("1", "HEAD", 10, None)
        assert backend.status_calls == []

    @pytest.mark.asyncio
    async def test_mutating_operation_reconciles(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.commit_files.return_value = "Committed revision 43."

        result = await repository.commit_files("fix", ["a.txt"])

        assert result == "Committed revision 43."
        backend.commit_files.assert_awaited_once_with("fix", ["a.txt"])
        assert len(backend.status_calls) == 1

    @pytest.mark.asyncio
    async def test_failed_operation_does_not_reconcile(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.add_files.side_effect = svn_error(SvnErrorCode.PATH_NOT_FOUND)

        with pytest.raises(SvnError):
            await repository.add_files(["nope"])

        assert backend.status_calls == []
        assert repository.operations.is_idle()

    @pytest.mark.asyncio
    async def test_operation_events(self, repository: Repository) -> None:
        started: list[Operation] = []
        changed: list[Operation] = []
        repository.on_run_operation.subscribe(started.append)
        repository.on_did_change_operations.subscribe(changed.append)

        await repository.info("a.txt")

        assert started == [Operation.INFO]
        assert changed == [Operation.INFO, Operation.INFO]

    @pytest.mark.asyncio
    async def test_progress_wraps_visible_operations(
        self, make_repository: RepositoryFactory
    ) -> None:
        titles: list[str] = []

        @asynccontextmanager
        async def progress(title: str) -> AsyncIterator[None]:
            titles.append(title)
            yield

        repository = make_repository(progress=progress)

        await repository.show("a.txt")
        await repository.add_files(["a.txt"])

        assert titles == ["add"]

    @pytest.mark.asyncio
    async def test_concurrent_status_calls_coalesce(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        await asyncio.gather(repository.status(), repository.status(), repository.status())

        assert len(backend.status_calls) == 2


class TestRetries:
    """Lock and credential retries inside run."""

    @pytest.mark.asyncio
    async def test_lock_clears(
        self,
        repository: Repository,
        backend: FakeBackend,
        recording_sleep: RecordingSleep,
    ) -> None:
        locked = svn_error(SvnErrorCode.REPOSITORY_IS_LOCKED)
        backend.commit_files.side_effect = [locked, locked, "Committed revision 43."]

        assert await repository.commit_files("fix", ["a.txt"]) == "Committed revision 43."
        assert recording_sleep.delays == pytest.approx([0.05, 0.2])

    @pytest.mark.asyncio
    async def test_lock_never_clears(
        self,
        repository: Repository,
        backend: FakeBackend,
        recording_sleep: RecordingSleep,
    ) -> None:
        backend.cleanup.side_effect = svn_error(SvnErrorCode.REPOSITORY_IS_LOCKED)

        with pytest.raises(SvnError) as exc_info:
            await repository.cleanup()

        assert exc_info.value.error_code == SvnErrorCode.REPOSITORY_IS_LOCKED
        assert backend.cleanup.await_count == 11
        assert recording_sleep.total == pytest.approx(19.25)

    @pytest.mark.asyncio
    async def test_prompted_credential_saved(
        self,
        make_repository: RepositoryFactory,
        backend: FakeBackend,
        secret_store: FakeSecretStore,
    ) -> None:
        prompt = AsyncMock(return_value=Credential(account="carol", password="c3"))
        repository = make_repository(credential_prompt=prompt)

        async def update(ignore_externals: bool) -> str:
            if backend.username != "carol":
                raise svn_error(SvnErrorCode.AUTHORIZATION_FAILED)
            return "Updated to revision 43."

        backend.update.side_effect = update

        assert await repository.update_revision() == "Updated to revision 43."
        prompt.assert_awaited_once()
        assert repository.username == "carol"
        saved = json.loads(secret_store.data["lodestar.svn:svn://svn.example.org/repo"])
        assert saved == [{"account": "carol", "password": "c3"}]


class TestFailureHandling:
    """State changes on fatal failures."""

    @pytest.mark.asyncio
    async def test_not_a_working_copy(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.entries = [entry("m.txt")]
        await repository.status()
        closed: list[Repository] = []
        states: list[RepositoryState] = []
        repository.on_did_request_close.subscribe(closed.append)
        repository.on_did_change_state.subscribe(states.append)
        backend.status_error = svn_error(SvnErrorCode.NOT_A_SVN_REPOSITORY)

        with pytest.raises(SvnError):
            await repository.status()

        assert repository.state is RepositoryState.DISPOSED
        assert states == [RepositoryState.DISPOSED]
        assert closed == [repository]
        assert repository.changes.resources == ()
        with pytest.raises(RepositoryNotIdleError):
            await repository.cleanup()

    @pytest.mark.asyncio
    async def test_vanished_workspace_requests_close_once(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        closed: list[Repository] = []
        repository.on_did_request_close.subscribe(closed.append)
        backend.workspace_root = os.path.join(backend.root, "vanished")
        backend.cleanup.side_effect = SvnError("svn: E000002: No such file or directory")

        for _ in range(2):
            with pytest.raises(SvnError):
                await repository.cleanup()

        assert closed == [repository]
        assert repository.state is RepositoryState.IDLE


# =============================================================================
# Status synchronization
# =============================================================================


class TestStatusSync:
    """Tests for update_model_state and its side effects."""

    @pytest.mark.asyncio
    async def test_current_branch_refreshed(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.get_current_branch.return_value = "branches/feature"

        await repository.status()

        assert repository.current_branch == "branches/feature"

    @pytest.mark.asyncio
    async def test_current_branch_failure_keeps_previous(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        repository.current_branch = "trunk"
        backend.get_current_branch.side_effect = svn_error(SvnErrorCode.NETWORK_ERROR)

        await repository.status()

        assert repository.current_branch == "trunk"

    @pytest.mark.asyncio
    async def test_remote_status(self, repository: Repository, backend: FakeBackend) -> None:
        backend.entries = [entry("a.txt", Status.NORMAL, remote=Status.MODIFIED)]
        fired: list[None] = []
        repository.on_did_change_remote_changed_files.subscribe(fired.append)

        await repository.run(Operation.STATUS_REMOTE)
        await repository.run(Operation.STATUS_REMOTE)

        assert backend.status_calls[-1]["check_remote_changes"] is True
        assert repository.remote_changes is not None
        assert [r.path for r in repository.remote_changes.resources] == [
            abspath(backend, "a.txt")
        ]
        assert repository.remote_changed_files == 1
        assert len(fired) == 1

    @pytest.mark.asyncio
    async def test_zero_frequency_drops_remote_group(
        self, make_repository: RepositoryFactory, make_reader: ReaderFactory
    ) -> None:
        repository = make_repository(config=make_reader(remote_changes={"check_frequency": 0}))
        await repository.status()
        assert repository.remote_changes is not None

        await repository.remote_poller.check_remote_changes()

        assert repository.remote_changes is None
        assert "remotechanges" not in [g.id for g in repository.panel.groups]

    @pytest.mark.asyncio
    async def test_changelist_moves_trailing_groups(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.entries = [entry("u.txt", Status.UNVERSIONED)]
        await repository.status()
        unversioned = repository.unversioned

        backend.entries = [entry("u.txt", Status.UNVERSIONED), entry("f.py", changelist="feature")]
        await repository.status()

        assert repository.unversioned is not unversioned
        assert repository.unversioned.resources == unversioned.resources
        assert [g.id for g in repository.panel.groups] == [
            "changes",
            "conflicts",
            "changelist-feature",
            "unversioned",
            "remotechanges",
        ]

    @pytest.mark.asyncio
    async def test_status_change_event(self, repository: Repository) -> None:
        fired: list[None] = []
        repository.on_did_change_status.subscribe(fired.append)

        await repository.status()

        assert fired == [None]

    @pytest.mark.asyncio
    async def test_get_resource_from_file(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.entries = [entry("src/m.c")]
        await repository.status()

        relative = repository.get_resource_from_file("src/m.c")
        absolute = repository.get_resource_from_file(abspath(backend, "src/m.c"))

        assert relative is not None
        assert relative == absolute
        assert repository.get_resource_from_file("other.c") is None


class TestIdleRefresh:
    """Tests for when_idle_and_focused and update_when_idle_and_wait."""

    @pytest.mark.asyncio
    async def test_waits_for_focus(self, make_repository: RepositoryFactory) -> None:
        focus = FakeFocus(focused=False)
        repository = make_repository(focus=focus)

        waiter = asyncio.ensure_future(repository.when_idle_and_focused())
        await asyncio.sleep(0)
        assert not waiter.done()

        focus.set_focused(True)
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_waits_for_running_operation(self, repository: Repository) -> None:
        release = asyncio.Event()

        async def slow() -> None:
            await release.wait()

        running = asyncio.ensure_future(repository.run(Operation.UPDATE, slow))
        await asyncio.sleep(0)
        waiter = asyncio.ensure_future(repository.when_idle_and_focused())
        await asyncio.sleep(0)
        assert not waiter.done()

        release.set()
        await running
        await asyncio.wait_for(waiter, timeout=1)
        assert repository.operations.is_idle()

    @pytest.mark.asyncio
    async def test_update_when_idle_settles(
        self,
        repository: Repository,
        backend: FakeBackend,
        recording_sleep: RecordingSleep,
    ) -> None:
        await repository.update_when_idle_and_wait()

        assert len(backend.status_calls) == 1
        assert recording_sleep.delays == [5.0]


class TestDeletedFiles:
    """Tests for files deleted outside of svn."""

    async def _delete(self, repository: Repository, backend: FakeBackend, *paths: str) -> list[str]:
        await repository.status()
        deleted = [abspath(backend, path) for path in paths]
        for path in deleted:
            repository.watcher.handle_change(EVENT_TYPE_DELETED, path)
        return deleted

    @pytest.mark.asyncio
    async def test_remove_action(
        self,
        make_repository: RepositoryFactory,
        make_reader: ReaderFactory,
        backend: FakeBackend,
    ) -> None:
        repository = make_repository(
            config=make_reader(delete={"action_for_deleted_files": "remove"})
        )
        backend.entries = [entry("gone.txt", Status.MISSING), entry("other.txt", Status.MISSING)]
        deleted = await self._delete(repository, backend, "gone.txt")

        await repository.process_deleted_files()

        backend.remove_files.assert_awaited_once_with(deleted, False)

    @pytest.mark.asyncio
    async def test_prompt_action(
        self, make_repository: RepositoryFactory, backend: FakeBackend
    ) -> None:
        prompt = AsyncMock()
        repository = make_repository(deleted_files_prompt=prompt)
        backend.entries = [entry("gone.txt", Status.MISSING)]
        deleted = await self._delete(repository, backend, "gone.txt", "gone.txt")

        await repository.process_deleted_files()

        prompt.assert_awaited_once_with(deleted[:1])
        backend.remove_files.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignored_rules(
        self,
        make_repository: RepositoryFactory,
        make_reader: ReaderFactory,
        backend: FakeBackend,
    ) -> None:
        repository = make_repository(
            config=make_reader(
                delete={
                    "action_for_deleted_files": "remove",
                    "ignored_rules_for_deleted_files": ["*.tmp"],
                }
            )
        )
        backend.entries = [entry("cache/x.tmp", Status.MISSING)]
        await self._delete(repository, backend, "cache/x.tmp")

        await repository.process_deleted_files()

        backend.remove_files.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unversioned_deletion_ignored(
        self,
        make_repository: RepositoryFactory,
        make_reader: ReaderFactory,
        backend: FakeBackend,
    ) -> None:
        repository = make_repository(
            config=make_reader(delete={"action_for_deleted_files": "remove"})
        )
        await self._delete(repository, backend, "scratch.txt")

        await repository.process_deleted_files()

        backend.remove_files.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_action(
        self,
        make_repository: RepositoryFactory,
        make_reader: ReaderFactory,
        backend: FakeBackend,
    ) -> None:
        repository = make_repository(
            config=make_reader(delete={"action_for_deleted_files": "none"})
        )
        backend.entries = [entry("gone.txt", Status.MISSING)]
        await self._delete(repository, backend, "gone.txt")

        await repository.process_deleted_files()

        backend.remove_files.assert_not_awaited()


class TestOperationWrappers:
    """Argument defaults of the operation helpers."""

    @pytest.mark.asyncio
    async def test_update_uses_ignore_externals_setting(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        await repository.update_revision()

        backend.update.assert_awaited_once_with(True)

    @pytest.mark.asyncio
    async def test_revert_defaults_to_empty_depth(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        await repository.revert(["a.txt"])

        backend.revert.assert_awaited_once_with(["a.txt"], "empty")

    @pytest.mark.asyncio
    async def test_changelists(self, repository: Repository, backend: FakeBackend) -> None:
        await repository.add_changelist(["a.txt"], "feature")
        await repository.remove_changelist(["a.txt"])

        backend.add_changelist.assert_awaited_once_with(["a.txt"], "feature")
        backend.remove_changelist.assert_awaited_once_with(["a.txt"])

    @pytest.mark.asyncio
    async def test_branch_operations(self, repository: Repository, backend: FakeBackend) -> None:
        await repository.new_branch("branches/x")
        await repository.switch_branch("branches/x")
        await repository.merge("branches/y")

        backend.new_branch.assert_awaited_once_with("branches/x", "Created new branch")
        backend.switch_branch.assert_awaited_once_with("branches/x", False)
        backend.merge.assert_awaited_once_with("branches/y", False, "postpone")

    @pytest.mark.asyncio
    async def test_get_branches_failure(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        backend.get_branches.side_effect = svn_error(SvnErrorCode.NETWORK_ERROR)

        assert await repository.get_branches() == []

    @pytest.mark.asyncio
    async def test_list_and_changes_are_read_only(
        self, repository: Repository, backend: FakeBackend
    ) -> None:
        await repository.list("trunk")
        await repository.get_changes()
        await repository.get_current_branch()

        backend.ls.assert_awaited_once_with("trunk")
        assert backend.status_calls == []


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for create and dispose."""

    @pytest.mark.asyncio
    async def test_create_starts_everything(
        self,
        backend: FakeBackend,
        config_reader: ConfigurationReader,
        recording_sleep: RecordingSleep,
    ) -> None:
        backend.entries = [entry("m.txt")]
        watcher = RepositoryFilesWatcher(backend.root, observer_factory=FakeObserver)

        repository = await Repository.create(
            backend,  # type: ignore[arg-type]
            config=config_reader,
            sleep=recording_sleep,
            watcher=watcher,
        )
        try:
            assert watcher.running
            assert repository.remote_poller.timer_active
            assert len(repository.changes) == 1
        finally:
            repository.dispose()

        assert not repository.remote_poller.timer_active
        assert not watcher.running

    @pytest.mark.asyncio
    async def test_failed_create_releases_everything(
        self,
        backend: FakeBackend,
        config_reader: ConfigurationReader,
        recording_sleep: RecordingSleep,
    ) -> None:
        created: list[Repository] = []

        class TrackedRepository(Repository):
            def __init__(self, *args: object, **kwargs: object) -> None:
                super().__init__(*args, **kwargs)  # type: ignore[arg-type]
                created.append(self)

        backend.status_error = svn_error(SvnErrorCode.NETWORK_ERROR)
        watcher = RepositoryFilesWatcher(backend.root, observer_factory=FakeObserver)

        with pytest.raises(SvnError):
            await TrackedRepository.create(
                backend,  # type: ignore[arg-type]
                config=config_reader,
                sleep=recording_sleep,
                watcher=watcher,
            )

        [repository] = created
        assert repository.disposed
        assert not repository.remote_poller.timer_active
        assert not watcher.running

    @pytest.mark.asyncio
    async def test_dispose_settles_idle_waiter(self, repository: Repository) -> None:
        release = asyncio.Event()

        async def slow() -> None:
            await release.wait()

        running = asyncio.ensure_future(repository.run(Operation.UPDATE, slow))
        await asyncio.sleep(0)
        waiter = asyncio.ensure_future(repository.when_idle_and_focused())
        await asyncio.sleep(0)

        repository.dispose()
        release.set()

        with pytest.raises(RepositoryDisposedError):
            await asyncio.wait_for(waiter, timeout=1)
        await asyncio.wait_for(running, timeout=1)

    @pytest.mark.asyncio
    async def test_dispose_settles_focus_waiter(
        self, make_repository: RepositoryFactory, backend: FakeBackend
    ) -> None:
        repository = make_repository(focus=FakeFocus(focused=False))

        refresh = asyncio.ensure_future(repository.update_when_idle_and_wait())
        await asyncio.sleep(0)
        assert not refresh.done()

        repository.dispose()

        await asyncio.wait_for(refresh, timeout=1)
        assert backend.status_calls == []

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, repository: Repository) -> None:
        repository.dispose()
        repository.dispose()

        assert repository.disposed
        assert repository.panel.groups == []


@pytest.mark.slow
class TestFilesystemTriggers:
    """Watcher events reaching the repository through the real debounce delay."""

    @pytest.mark.asyncio
    async def test_workspace_change_refreshes_status(
        self, make_repository: RepositoryFactory, backend: FakeBackend
    ) -> None:
        repository = make_repository()

        repository.watcher.handle_change(EVENT_TYPE_CREATED, abspath(backend, "new.txt"))
        repository.watcher.handle_change(EVENT_TYPE_MODIFIED, abspath(backend, "new.txt"))
        await asyncio.sleep(1.3)

        assert len(backend.status_calls) == 1

    @pytest.mark.asyncio
    async def test_autorefresh_disabled(
        self,
        make_repository: RepositoryFactory,
        make_reader: ReaderFactory,
        backend: FakeBackend,
    ) -> None:
        repository = make_repository(config=make_reader(autorefresh=False))

        repository.watcher.handle_change(EVENT_TYPE_CREATED, abspath(backend, "new.txt"))
        await asyncio.sleep(1.3)

        assert backend.status_calls == []

    @pytest.mark.asyncio
    async def test_svn_admin_change_refreshes_info(
        self, make_repository: RepositoryFactory, backend: FakeBackend
    ) -> None:
        repository = make_repository()
        changed: list[str] = []
        repository.on_did_change_repository.subscribe(changed.append)
        path = os.path.join(backend.root, ".svn", "wc.db")

        repository.watcher.handle_change(EVENT_TYPE_MODIFIED, path)
        await asyncio.sleep(1.3)

        backend.update_info.assert_awaited_once()
        assert changed == [os.path.normpath(path)]
