"""Typed records exchanged with an svn backend.

A :class:`StatusEntry` is one line of ``svn status`` already parsed by the
backend. Entries are immutable once returned.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Status(str, Enum):
    """Item or property status as reported by ``svn status``."""

    NORMAL = "normal"
    MODIFIED = "modified"
    ADDED = "added"
    DELETED = "deleted"
    REPLACED = "replaced"
    CONFLICTED = "conflicted"
    UNVERSIONED = "unversioned"
    IGNORED = "ignored"
    INCOMPLETE = "incomplete"
    EXTERNAL = "external"
    MISSING = "missing"
    OBSTRUCTED = "obstructed"
    NONE = "none"


#: Statuses that mean "no change" for both item and properties.
UNCHANGED_STATUSES: frozenset[Status] = frozenset({Status.NORMAL, Status.NONE})


@dataclass(frozen=True, slots=True)
class WorkingCopyStatus:
    """Working-copy sub-state flags of an entry.

    Attributes:
        locked: The working copy is locked by an interrupted operation.
        switched: The entry is switched to another URL.
    """

    locked: bool = False
    switched: bool = False


@dataclass(frozen=True, slots=True)
class RemoteStatus:
    """Out-of-date information from ``svn status --show-updates``.

    Attributes:
        item: Status of the item in the repository.
        props: Status of the item's properties in the repository.
        lock_owner: Owner of a repository lock on the item, if any.
    """

    item: Status = Status.NONE
    props: Status = Status.NONE
    lock_owner: str | None = None


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """One raw status record for a path.

    Attributes:
        path: Path relative to the working-copy root (``"."`` for the root).
        status: Item status.
        props: Property status.
        wc_status: Working-copy sub-state flags.
        rename: Path this entry was moved from, if any.
        remote: Remote sub-record when remote changes were requested.
        changelist: Changelist the entry belongs to, if any.
        repository_uuid: Repository UUID (set for externals).
    """

    path: str
    status: Status
    props: Status = Status.NONE
    wc_status: WorkingCopyStatus = WorkingCopyStatus()
    rename: str | None = None
    remote: RemoteStatus | None = None
    changelist: str | None = None
    repository_uuid: str | None = None


@dataclass(frozen=True, slots=True)
class RepositoryInfo:
    """Subset of ``svn info`` the engine needs.

    Attributes:
        url: URL of the working copy.
        repository_root: Root URL of the repository.
        repository_uuid: UUID of the repository.
        revision: Working-copy revision.
    """

    url: str
    repository_root: str = ""
    repository_uuid: str = ""
    revision: str = ""


class Credential(BaseModel):
    """An account/password pair stored for a repository."""

    model_config = ConfigDict(frozen=True)

    account: str
    password: str


__all__ = [
    "Credential",
    "RemoteStatus",
    "RepositoryInfo",
    "Status",
    "StatusEntry",
    "UNCHANGED_STATUSES",
    "WorkingCopyStatus",
]
