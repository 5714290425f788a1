"""Repository operation engine and status synchronization."""

from __future__ import annotations

from lodestar.repository.credentials import CredentialManager
from lodestar.repository.groups import (
    ResourceGroup,
    ResourceGroupManager,
    SourceControlPanel,
)
from lodestar.repository.manager import RepositoryManager
from lodestar.repository.operations import (
    Operation,
    OperationsTable,
    RepositoryState,
    is_read_only,
    should_show_progress,
)
from lodestar.repository.remote_changes import RemoteChangePoller
from lodestar.repository.repository import Repository
from lodestar.repository.retry import RetryPolicy, retry_run
from lodestar.repository.status import Resource, StatusResult, StatusService
from lodestar.repository.watcher import RepositoryFilesWatcher

__all__ = [
    "CredentialManager",
    "Operation",
    "OperationsTable",
    "RemoteChangePoller",
    "Repository",
    "RepositoryFilesWatcher",
    "RepositoryManager",
    "RepositoryState",
    "Resource",
    "ResourceGroup",
    "ResourceGroupManager",
    "RetryPolicy",
    "SourceControlPanel",
    "StatusResult",
    "StatusService",
    "is_read_only",
    "retry_run",
    "should_show_progress",
]
