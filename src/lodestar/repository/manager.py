"""Collection of open repositories."""

from __future__ import annotations

import asyncio
import os
from typing import Any

from lodestar.events import Disposable, Event
from lodestar.logging import get_logger
from lodestar.repository.repository import Repository
from lodestar.svn.protocol import BackendFactory
from lodestar.utils.globs import is_descendant

__all__ = ["RepositoryManager"]

logger = get_logger(__name__)


class RepositoryManager:
    """Opens, looks up and closes repositories.

    A repository asking to be closed (its working copy vanished or stopped
    being one) is closed here.

    Args:
        backend_factory: Builds a backend for a working-copy path.
        **repository_options: Passed to :meth:`Repository.create`.

    Example:
        ```python
        manager = RepositoryManager(open_backend, config=reader, secrets=store)
        repository = await manager.open_repository("/work/trunk")
        assert manager.get_repository("/work/trunk/src/main.c") is repository
        ```
    """

    def __init__(self, backend_factory: BackendFactory, **repository_options: Any) -> None:
        self._backend_factory = backend_factory
        self._repository_options = repository_options
        self._repositories: list[Repository] = []
        self._subscriptions: dict[int, Disposable] = {}
        self._opening: dict[str, asyncio.Task[Repository]] = {}
        self._disposed = False

        self.on_did_open_repository: Event[Repository] = Event("did_open_repository")
        self.on_did_close_repository: Event[Repository] = Event("did_close_repository")

    @property
    def open_repositories(self) -> list[Repository]:
        return list(self._repositories)

    async def open_repository(self, path: str) -> Repository:
        """Open the working copy at *path*, or return it if already open.

        A working copy nested inside an open one (e.g. an external) gets a
        repository of its own. Concurrent calls for the same path share one
        open.
        """
        if self._disposed:
            raise RuntimeError("RepositoryManager is disposed")

        key = os.path.normpath(path)
        for repository in self._repositories:
            roots = {repository.root, repository.workspace_root}
            if key in {os.path.normpath(root) for root in roots}:
                return repository

        task = self._opening.get(key)
        if task is None:
            task = asyncio.ensure_future(self._open(key))
            self._opening[key] = task
            task.add_done_callback(lambda _: self._opening.pop(key, None))
        return await asyncio.shield(task)

    async def _open(self, path: str) -> Repository:
        backend = await self._backend_factory(path)
        repository = await Repository.create(backend, **self._repository_options)
        if self._disposed:
            repository.dispose()
            raise RuntimeError("RepositoryManager is disposed")

        self._repositories.append(repository)
        self._subscriptions[id(repository)] = repository.on_did_request_close.subscribe(
            self.close
        )
        logger.info("repository_opened", root=repository.root)
        self.on_did_open_repository.fire(repository)
        return repository

    def get_repository(self, path: str) -> Repository | None:
        """Return the repository containing *path*, preferring the deepest root."""
        path = os.path.normpath(path)
        matches = [
            repository
            for repository in self._repositories
            if is_descendant(repository.workspace_root, path)
            or is_descendant(repository.root, path)
        ]
        if not matches:
            return None
        return max(matches, key=lambda repository: len(repository.workspace_root))

    def close(self, repository: Repository) -> None:
        """Dispose *repository* and forget it. Unknown repositories are ignored."""
        if repository not in self._repositories:
            return
        self._repositories.remove(repository)
        subscription = self._subscriptions.pop(id(repository), None)
        if subscription is not None:
            subscription.dispose()
        repository.dispose()
        logger.info("repository_closed", root=repository.root)
        self.on_did_close_repository.fire(repository)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        for repository in list(self._repositories):
            self.close(repository)
        for task in self._opening.values():
            task.cancel()
        self.on_did_open_repository.dispose()
        self.on_did_close_repository.dispose()
