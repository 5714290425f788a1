"""Filesystem watcher for a working copy.

watchdog delivers events on its observer thread; they are handed to the
asyncio loop with ``call_soon_threadsafe`` and fired as :class:`Event`
values there, so listeners never run off the loop thread.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from lodestar.constants import SVN_ADMIN_DIR, SVN_TMP_DIR
from lodestar.events import Event, any_event
from lodestar.logging import get_logger
from lodestar.utils.globs import is_descendant

__all__ = ["RepositoryFilesWatcher"]

logger = get_logger(__name__)

_RELEVANT_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, dispatch: Callable[[str, str], None]) -> None:
        super().__init__()
        self._dispatch = dispatch

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _RELEVANT_EVENTS:
            return
        src = os.fsdecode(event.src_path)
        if event.event_type == EVENT_TYPE_MOVED:
            # A move is a delete of the source and a create of the target.
            self._dispatch(EVENT_TYPE_DELETED, src)
            dest = os.fsdecode(getattr(event, "dest_path", "") or "")
            if dest:
                self._dispatch(EVENT_TYPE_CREATED, dest)
            return
        self._dispatch(event.event_type, src)


class RepositoryFilesWatcher:
    """Watches a working copy and classifies changes.

    Events:
        on_did_workspace_change / on_did_workspace_create /
        on_did_workspace_delete: changes outside ``.svn``.
        on_did_any: any of the three above.
        on_did_svn_any: changes inside ``.svn`` except ``.svn/tmp``.

    Args:
        root: Working-copy root.
        observer_factory: Builds the watchdog observer.
    """

    def __init__(self, root: str, observer_factory: Callable[[], Any] = Observer) -> None:
        self.root = os.path.normpath(root)
        self._svn_dir = os.path.join(self.root, SVN_ADMIN_DIR)
        self._svn_tmp_dir = os.path.join(self._svn_dir, SVN_TMP_DIR)
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._disposed = False

        self.on_did_workspace_change: Event[str] = Event("workspace_change")
        self.on_did_workspace_create: Event[str] = Event("workspace_create")
        self.on_did_workspace_delete: Event[str] = Event("workspace_delete")
        self.on_did_svn_any: Event[str] = Event("svn_any")
        self.on_did_any: Event[str] = any_event(
            self.on_did_workspace_change,
            self.on_did_workspace_create,
            self.on_did_workspace_delete,
            name="workspace_any",
        )

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start watching; a failure to watch is logged, not raised."""
        if self._disposed or self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        observer = self._observer_factory()
        try:
            observer.schedule(_ChangeHandler(self._dispatch), self.root, recursive=True)
            observer.start()
        except OSError as exc:
            logger.error("fs_watch_error", root=self.root, error=str(exc))
            return
        self._observer = observer
        logger.debug("fs_watch_started", root=self.root)

    def _dispatch(self, event_type: str, path: str) -> None:
        # Observer thread.
        loop = self._loop
        if loop is None or loop.is_closed() or self._disposed:
            return
        try:
            loop.call_soon_threadsafe(self.handle_change, event_type, path)
        except RuntimeError:
            # Loop closed between the check and the call.
            return

    def handle_change(self, event_type: str, path: str) -> None:
        """Classify one change and fire the matching events."""
        if self._disposed:
            return
        path = os.path.normpath(path)

        if is_descendant(self._svn_dir, path):
            if is_descendant(self._svn_tmp_dir, path):
                return
            self.on_did_svn_any.fire(path)
            return

        if event_type == EVENT_TYPE_CREATED:
            self.on_did_workspace_create.fire(path)
        elif event_type == EVENT_TYPE_DELETED:
            self.on_did_workspace_delete.fire(path)
        else:
            self.on_did_workspace_change.fire(path)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            if observer.is_alive():
                observer.join(timeout=5)
        for event in (
            self.on_did_any,
            self.on_did_workspace_change,
            self.on_did_workspace_create,
            self.on_did_workspace_delete,
            self.on_did_svn_any,
        ):
            event.dispose()
