"""Subversion data model, error codes, and collaborator protocols."""

from __future__ import annotations

from lodestar.svn.error_codes import (
    AUTH_ERROR_CODES,
    SvnErrorCode,
    detect_error_code,
    is_auth_error,
)
from lodestar.svn.models import (
    Credential,
    RemoteStatus,
    RepositoryInfo,
    Status,
    StatusEntry,
    WorkingCopyStatus,
)
from lodestar.svn.protocol import (
    BackendFactory,
    CredentialPrompt,
    DeletedFilesPrompt,
    FocusTracker,
    ProgressReporter,
    SecretStore,
    SvnBackend,
)

__all__ = [
    "AUTH_ERROR_CODES",
    "BackendFactory",
    "Credential",
    "CredentialPrompt",
    "DeletedFilesPrompt",
    "FocusTracker",
    "ProgressReporter",
    "RemoteStatus",
    "RepositoryInfo",
    "SecretStore",
    "Status",
    "StatusEntry",
    "SvnBackend",
    "SvnErrorCode",
    "WorkingCopyStatus",
    "detect_error_code",
    "is_auth_error",
]
