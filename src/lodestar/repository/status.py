"""Status reconciliation: raw ``svn status`` records to categorized resources.

A pass takes one unordered snapshot of :class:`StatusEntry` records and
produces a :class:`StatusResult`. Rules are applied in a fixed order and
the first one that matches decides an entry's fate:

1. Externals (and everything below them) leave the working set.
2. The root entry sets ``is_incomplete``/``need_clean_up``.
3. Locked, switched and incomplete entries are skipped.
4. Entries matching ``files.exclude`` are skipped.
5. An entry with remote status also yields a remote resource.
6. The rest is categorized: unchanged, ignored, conflicted, changelist,
   unversioned, changes.

The service never touches resource groups; the
:class:`~lodestar.repository.groups.ResourceGroupManager` applies results.
"""

from __future__ import annotations

import os
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from lodestar.config import ConfigurationReader
from lodestar.logging import get_logger
from lodestar.svn.models import UNCHANGED_STATUSES, Status, StatusEntry
from lodestar.svn.protocol import SvnBackend
from lodestar.utils.globs import exclude_patterns, is_descendant, match_all

__all__ = ["Resource", "StatusResult", "StatusService", "is_temp_file_of"]

logger = get_logger(__name__)

RetryRunner = Callable[[Callable[[], Awaitable[Any]]], Awaitable[Any]]

# Files svn writes next to a conflicted file: foo.mine, foo.working,
# foo.merge-left.r12, foo.r12
_TEMP_FILE_PATTERN = re.compile(r"^(.+?)\.(mine|working|merge-\w+\.r\d+|r\d+)$")


@dataclass(frozen=True, slots=True)
class Resource:
    """A path's state as shown in a resource group.

    Attributes:
        path: Absolute path under the workspace root.
        type: Item status.
        props: Property status.
        rename_from: Absolute path the item was moved from, if any.
        remote: True for resources describing upstream changes.
    """

    path: str
    type: Status
    props: Status = Status.NONE
    rename_from: str | None = None
    remote: bool = False

    @property
    def key(self) -> tuple[str, Status]:
        """Identity used to compare group membership across passes."""
        return (self.path, self.type)


@dataclass(frozen=True, slots=True)
class StatusResult:
    """Output of one reconciliation pass.

    Attributes:
        changes: Modified, added, deleted, missing... items.
        conflicts: Conflicted items.
        unversioned: Unversioned items that survived the filters.
        changelists: Changelist name to its items, in first-seen order.
        remote_changes: Upstream changes (only meaningful when
            ``checked_remote`` is True).
        status_external: External definitions excluded from this pass.
        status_ignored: Ignored entries.
        is_incomplete: The working copy is incomplete or partially switched.
        need_clean_up: The working-copy root is locked.
        checked_remote: The snapshot was taken with remote changes.
    """

    changes: tuple[Resource, ...] = ()
    conflicts: tuple[Resource, ...] = ()
    unversioned: tuple[Resource, ...] = ()
    changelists: dict[str, tuple[Resource, ...]] = field(default_factory=dict)
    remote_changes: tuple[Resource, ...] = ()
    status_external: tuple[StatusEntry, ...] = ()
    status_ignored: tuple[StatusEntry, ...] = ()
    is_incomplete: bool = False
    need_clean_up: bool = False
    checked_remote: bool = False


def is_temp_file_of(path: str, known_paths: set[str]) -> bool:
    """Return True if *path* is a conflict sidecar of a path in *known_paths*."""
    match = _TEMP_FILE_PATTERN.match(path)
    return bool(match and match.group(1) and match.group(1) in known_paths)


def _is_unchanged(entry: StatusEntry) -> bool:
    return (
        entry.status in UNCHANGED_STATUSES
        and entry.props in UNCHANGED_STATUSES
        and not entry.changelist
    )


class StatusService:
    """Fetches status from a backend and categorizes it.

    Args:
        backend: Working copy to query.
        config: Live configuration.
        retry_run: Wrapper applied to the status query (lock/auth retries).
    """

    def __init__(
        self,
        backend: SvnBackend,
        config: ConfigurationReader,
        retry_run: RetryRunner | None = None,
    ) -> None:
        self._backend = backend
        self._config = config
        self._retry_run = retry_run

    async def update_model_state(self, check_remote_changes: bool = False) -> StatusResult:
        """Query the working copy and categorize the snapshot."""
        combine_external = bool(
            self._config.get("source_control.combine_external_if_same_server", False)
        )

        async def query() -> list[StatusEntry]:
            return await self._backend.get_status(
                include_ignored=True,
                include_externals=combine_external,
                check_remote_changes=check_remote_changes,
            )

        if self._retry_run is not None:
            entries = await self._retry_run(query)
        else:
            entries = await query()

        repository_uuid: str | None = None
        if combine_external and any(e.status is Status.EXTERNAL for e in entries or ()):
            repository_uuid = await self._backend.get_repository_uuid()

        return self.categorize(
            entries or [],
            repository_uuid=repository_uuid,
            check_remote_changes=check_remote_changes,
        )

    def categorize(
        self,
        entries: Sequence[StatusEntry],
        *,
        repository_uuid: str | None = None,
        check_remote_changes: bool = False,
    ) -> StatusResult:
        """Categorize a raw snapshot.

        Args:
            entries: Raw status records, in any order.
            repository_uuid: When set, externals from this same repository
                are kept as regular entries instead of being excluded.
            check_remote_changes: The snapshot includes remote status.
        """
        workspace_root = self._backend.workspace_root
        hide_unversioned = bool(self._config.get("source_control.hide_unversioned", False))
        ignore_list: list[str] = list(self._config.get("source_control.ignore", []))
        exclude_list = exclude_patterns(self._config.get("files.exclude", {}))

        externals = [e for e in entries if e.status is Status.EXTERNAL]
        if repository_uuid is not None:
            externals = [e for e in externals if e.repository_uuid != repository_uuid]

        working_set = [
            e
            for e in entries
            if e.status is not Status.EXTERNAL
            and not any(is_descendant(ext.path, e.path) for ext in externals)
        ]
        known_paths = {e.path for e in entries}

        changes: list[Resource] = []
        conflicts: list[Resource] = []
        unversioned: list[Resource] = []
        changelists: dict[str, list[Resource]] = {}
        remote_changes: list[Resource] = []
        ignored: list[StatusEntry] = []
        is_incomplete = False
        need_clean_up = False

        def absolute(path: str) -> str:
            return os.path.normpath(os.path.join(workspace_root, path))

        for entry in working_set:
            if entry.path == ".":
                is_incomplete = is_incomplete or entry.status is Status.INCOMPLETE
                need_clean_up = entry.wc_status.locked

            if entry.wc_status.switched:
                is_incomplete = True

            # On commit svn reports locked items as normal/none; they are transient.
            if (
                entry.wc_status.locked
                or entry.wc_status.switched
                or entry.status is Status.INCOMPLETE
            ):
                continue

            if exclude_list and match_all(entry.path, exclude_list):
                continue

            if entry.remote is not None:
                remote_changes.append(
                    Resource(
                        absolute(entry.path),
                        entry.remote.item,
                        props=entry.remote.props,
                        remote=True,
                    )
                )

            resource = Resource(
                absolute(entry.path),
                entry.status,
                props=entry.props,
                rename_from=absolute(entry.rename) if entry.rename else None,
            )

            if _is_unchanged(entry):
                continue
            if entry.status is Status.IGNORED:
                ignored.append(entry)
            elif entry.status is Status.CONFLICTED:
                conflicts.append(resource)
            elif entry.changelist:
                changelists.setdefault(entry.changelist, []).append(resource)
            elif entry.status is Status.UNVERSIONED:
                if hide_unversioned:
                    continue
                if is_temp_file_of(entry.path, known_paths):
                    continue
                if ignore_list and match_all(entry.path, ignore_list):
                    continue
                unversioned.append(resource)
            else:
                changes.append(resource)

        result = StatusResult(
            changes=tuple(changes),
            conflicts=tuple(conflicts),
            unversioned=tuple(unversioned),
            changelists={name: tuple(items) for name, items in changelists.items()},
            remote_changes=tuple(remote_changes),
            status_external=tuple(externals),
            status_ignored=tuple(ignored),
            is_incomplete=is_incomplete,
            need_clean_up=need_clean_up,
            checked_remote=check_remote_changes,
        )
        logger.debug(
            "status_categorized",
            root=workspace_root,
            entries=len(entries),
            changes=len(result.changes),
            conflicts=len(result.conflicts),
            unversioned=len(result.unversioned),
            changelists=len(result.changelists),
            remote=len(result.remote_changes),
        )
        return result
