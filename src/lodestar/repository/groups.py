"""Resource groups and the order they are displayed in.

A panel shows groups in the order they were created, and offers no way to
move one. To keep ``changes, conflicts, <changelists...>, unversioned,
remoteChanges`` the manager disposes ``unversioned`` and
``remoteChanges`` and creates them again, with their contents, every time
a changelist group comes or goes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping

from lodestar.logging import get_logger
from lodestar.repository.status import Resource, StatusResult

__all__ = ["ResourceGroup", "ResourceGroupManager", "SourceControlPanel"]

logger = get_logger(__name__)

CHANGES_GROUP_ID = "changes"
CONFLICTS_GROUP_ID = "conflicts"
UNVERSIONED_GROUP_ID = "unversioned"
REMOTE_CHANGES_GROUP_ID = "remotechanges"
CHANGELIST_GROUP_PREFIX = "changelist-"


class ResourceGroup:
    """A named bucket of resources on a panel.

    Identity is the object: a recreated group is a different group even if
    it has the same id.
    """

    def __init__(
        self,
        group_id: str,
        label: str,
        on_dispose: Callable[[ResourceGroup], None] | None = None,
    ) -> None:
        self.id = group_id
        self.label = label
        self.hide_when_empty = False
        self._resources: tuple[Resource, ...] = ()
        self._on_dispose = on_dispose
        self._disposed = False

    @property
    def resources(self) -> tuple[Resource, ...]:
        return self._resources

    @resources.setter
    def resources(self, resources: Iterable[Resource]) -> None:
        self._resources = tuple(resources)

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def visible(self) -> bool:
        return not self._disposed and not (self.hide_when_empty and not self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def __repr__(self) -> str:
        return f"ResourceGroup(id={self.id!r}, resources={len(self._resources)})"

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._on_dispose is not None:
            self._on_dispose(self)


class SourceControlPanel:
    """In-process stand-in for an editor's source control view.

    Keeps live groups in creation order and the badge count.
    """

    def __init__(self, panel_id: str = "svn", label: str = "SVN", root: str = "") -> None:
        self.id = panel_id
        self.label = label
        self.root = root
        self.count = 0
        self._groups: list[ResourceGroup] = []

    @property
    def groups(self) -> list[ResourceGroup]:
        """Live groups in display order."""
        return list(self._groups)

    def create_resource_group(self, group_id: str, label: str) -> ResourceGroup:
        group = ResourceGroup(group_id, label, on_dispose=self._remove)
        self._groups.append(group)
        return group

    def _remove(self, group: ResourceGroup) -> None:
        if group in self._groups:
            self._groups.remove(group)

    def dispose(self) -> None:
        for group in list(self._groups):
            group.dispose()
        self.count = 0


class ResourceGroupManager:
    """Owns every resource group of one repository.

    Args:
        panel: Panel the groups are created on.
    """

    def __init__(self, panel: SourceControlPanel) -> None:
        self._panel = panel
        self.changes = self._create(CHANGES_GROUP_ID, "Changes")
        self.conflicts = self._create(CONFLICTS_GROUP_ID, "Conflicts")
        self.unversioned = self._create(UNVERSIONED_GROUP_ID, "Unversioned")
        self.remote_changes: ResourceGroup | None = None
        self.changelists: dict[str, ResourceGroup] = {}

    @property
    def panel(self) -> SourceControlPanel:
        return self._panel

    def _create(self, group_id: str, label: str) -> ResourceGroup:
        group = self._panel.create_resource_group(group_id, label)
        group.hide_when_empty = True
        return group

    def update_changelists(self, changelists: Mapping[str, Iterable[Resource]]) -> bool:
        """Make the changelist groups match *changelists*.

        Groups for changelists that have no entries are disposed; missing
        ones are created.

        Returns:
            True if any changelist group was created or disposed.
        """
        changed = False
        for name in list(self.changelists):
            if name not in changelists:
                self.changelists.pop(name).dispose()
                changed = True

        for name, resources in changelists.items():
            group = self.changelists.get(name)
            if group is None:
                # Prefixed so a changelist named "changes" cannot clash.
                group = self._create(
                    f"{CHANGELIST_GROUP_PREFIX}{name}", f'Changelist "{name}"'
                )
                self.changelists[name] = group
                changed = True
            group.resources = resources

        return changed

    def update_groups(
        self,
        result: StatusResult,
        *,
        count_unversioned: bool = False,
        ignore_on_status_count: Iterable[str] = (),
    ) -> int:
        """Apply a reconciliation result and return the badge count.

        Args:
            result: Output of a status pass.
            count_unversioned: Include unversioned files in the count.
            ignore_on_status_count: Changelists left out of the count.
        """
        self.changes.resources = result.changes
        self.conflicts.resources = result.conflicts

        changelists_changed = self.update_changelists(result.changelists)
        if changelists_changed:
            self.recreate_unversioned_group()
        self.unversioned.resources = result.unversioned

        excluded = set(ignore_on_status_count)
        count = len(self.changes) + len(self.conflicts)
        count += sum(
            len(group) for name, group in self.changelists.items() if name not in excluded
        )
        if count_unversioned:
            count += len(self.unversioned)
        self._panel.count = count

        remote_changes = self.remote_changes
        if remote_changes is None or changelists_changed:
            remote_changes = self.recreate_remote_changes_group()

        if result.checked_remote:
            remote_changes.resources = result.remote_changes

        return count

    def recreate_unversioned_group(self) -> ResourceGroup:
        """Move ``unversioned`` to the end of the panel, keeping its contents."""
        resources = self.unversioned.resources
        self.unversioned.dispose()
        self.unversioned = self._create(UNVERSIONED_GROUP_ID, "Unversioned")
        self.unversioned.resources = resources
        return self.unversioned

    def recreate_remote_changes_group(self) -> ResourceGroup:
        """Move ``remoteChanges`` to the end of the panel, keeping its contents."""
        resources: tuple[Resource, ...] = ()
        if self.remote_changes is not None:
            resources = self.remote_changes.resources
            self.remote_changes.dispose()
        self.remote_changes = self._create(REMOTE_CHANGES_GROUP_ID, "Remote Changes")
        self.remote_changes.resources = resources
        return self.remote_changes

    def dispose_remote_changes(self) -> None:
        """Drop the remote changes group, e.g. when polling is disabled."""
        if self.remote_changes is not None:
            self.remote_changes.dispose()
            self.remote_changes = None
            logger.debug("remote_changes_group_disposed")

    def clear_all(self) -> None:
        """Empty every group except ``remoteChanges``."""
        self.changes.resources = ()
        self.conflicts.resources = ()
        self.unversioned.resources = ()
        for group in self.changelists.values():
            group.resources = ()

    def get_all_groups(self) -> list[ResourceGroup]:
        """Return the local-change groups (no remote changes)."""
        return [self.changes, self.conflicts, self.unversioned, *self.changelists.values()]

    def get_resource(self, path: str) -> Resource | None:
        """Return the local resource for *path*, if any group holds one."""
        for group in self.get_all_groups():
            for resource in group.resources:
                if resource.path == path:
                    return resource
        return None

    def dispose(self) -> None:
        self.dispose_remote_changes()
        for group in self.get_all_groups():
            group.dispose()
        self.changelists.clear()
