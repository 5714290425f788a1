"""Subversion error codes and stderr code detection.

The svn client prints ``svn: E######: message`` lines. Several lines may
be printed for one failure (e.g. a network error followed by the
credential error that caused it), so detection applies a fixed priority
rather than taking the first code that appears.
"""

from __future__ import annotations

import re

__all__ = [
    "AUTH_ERROR_CODES",
    "SvnErrorCode",
    "detect_error_code",
    "is_auth_error",
]


class SvnErrorCode:
    """Stable svn error codes the engine reacts to."""

    AUTHORIZATION_FAILED = "E170001"
    NO_MORE_CREDENTIALS = "E215004"
    REPOSITORY_IS_LOCKED = "E155004"
    NOT_A_SVN_REPOSITORY = "E155007"
    NETWORK_ERROR = "E170013"
    TIMEOUT = "E175002"
    PREVIOUS_OPERATION_UNFINISHED = "E155037"
    NOT_SHARE_COMMON_ANCESTRY = "E195012"
    WORKING_COPY_IS_TOO_OLD = "E155036"
    PATH_NOT_FOUND = "E200009"


#: Codes that all mean "credentials were rejected".
AUTH_ERROR_CODES: frozenset[str] = frozenset(
    {SvnErrorCode.AUTHORIZATION_FAILED, SvnErrorCode.NO_MORE_CREDENTIALS}
)

_CODE_PATTERN = re.compile(r"\b(E\d{6})\b")

_AUTH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bE170001\b"),
    re.compile(r"\bE215004\b"),
    re.compile(r"No more credentials or we tried too many times", re.IGNORECASE),
    re.compile(r"Authentication failed", re.IGNORECASE),
)

# Checked in order after the auth patterns.
_PRIORITY_CODES: tuple[str, ...] = (
    SvnErrorCode.NOT_A_SVN_REPOSITORY,
    SvnErrorCode.REPOSITORY_IS_LOCKED,
    SvnErrorCode.PREVIOUS_OPERATION_UNFINISHED,
    SvnErrorCode.WORKING_COPY_IS_TOO_OLD,
    SvnErrorCode.NOT_SHARE_COMMON_ANCESTRY,
    SvnErrorCode.PATH_NOT_FOUND,
    SvnErrorCode.TIMEOUT,
    SvnErrorCode.NETWORK_ERROR,
)


def detect_error_code(stderr: str) -> str | None:
    """Detect the svn error code that best describes a failure.

    Credential failures win over everything else: ``E170013`` (unable to
    connect) is frequently printed ahead of ``E215004`` when the real
    problem is rejected credentials.

    Args:
        stderr: Raw stderr text from the svn client.

    Returns:
        The detected ``E######`` code, or None if stderr carries no code.
    """
    if not stderr:
        return None

    if any(pattern.search(stderr) for pattern in _AUTH_PATTERNS):
        return SvnErrorCode.AUTHORIZATION_FAILED

    codes = _CODE_PATTERN.findall(stderr)
    for code in _PRIORITY_CODES:
        if code in codes:
            return code

    return codes[0] if codes else None


def is_auth_error(error_code: str | None) -> bool:
    """Return True if *error_code* means the credentials were rejected."""
    return error_code in AUTH_ERROR_CODES
