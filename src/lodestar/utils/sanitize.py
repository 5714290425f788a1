"""Redaction of sensitive data in error text before it is logged.

svn stderr routinely contains absolute paths, repository URLs, user names
and occasionally credentials. Everything that goes to the log through
:func:`sanitize_error_log` is passed through :func:`sanitize_string` first.
"""

from __future__ import annotations

import re
from typing import Any

__all__ = [
    "sanitize_error",
    "sanitize_error_log",
    "sanitize_object",
    "sanitize_string",
]

_URL_PATTERN = re.compile(
    r"\b(?:https?|svn(?:\+ssh)?|file)://[a-zA-Z0-9\-._~:/?#\[\]@!$&'()*+,;=%]+",
    re.IGNORECASE,
)
_WINDOWS_PATH_PATTERN = re.compile(
    r"[A-Z]:\\(?:[^\\/:*?\"<>|\r\n]+\\)*[^\\/:*?\"<>|\r\n\s]*", re.IGNORECASE
)
_UNIX_PATH_PATTERN = re.compile(r"(?<![\w\]])/(?:[a-zA-Z0-9._\-~]+/)*[a-zA-Z0-9._\-~]*")
_IPV4_PATTERN = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
_IPV6_PATTERN = re.compile(r"\b(?:[0-9a-fA-F]{1,4}:){2,7}[0-9a-fA-F]{0,4}\b")
_CREDENTIAL_PATTERN = re.compile(
    r"\b(password|passwd|pwd|token|secret|api[_\-]?key|apikey|auth|credential)"
    r"\s*=\s*[^\s,;&]+",
    re.IGNORECASE,
)
_BEARER_PATTERN = re.compile(r"\bBearer\s+[A-Za-z0-9._\-~+/=]+")
_BASIC_PATTERN = re.compile(r"\bBasic\s+[A-Za-z0-9+/=]+")
_QUOTED_SECRET_PATTERN = re.compile(r"([\"'])[A-Za-z0-9+/=_\-]{32,}\1")
_UUID_PATTERN = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
    re.IGNORECASE,
)
_AWS_KEY_PATTERN = re.compile(r"AKIA[0-9A-Z]{16}")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")


def sanitize_string(text: str) -> str:
    """Replace sensitive fragments of *text* with redaction markers.

    - URLs -> ``[DOMAIN]``
    - Windows and Unix paths -> ``[PATH]``
    - IPv4/IPv6 addresses -> ``[IP]``
    - ``password=...`` style pairs -> ``password=[REDACTED]``
    - Bearer/Basic tokens and long quoted secrets -> ``[REDACTED]``
    - UUIDs -> ``[UUID]``, AWS keys -> ``[AWS_KEY]``, emails -> ``[EMAIL]``

    Example:
        >>> sanitize_string("svn: E170001: Authorization failed for /home/u/wc")
        'svn: E170001: Authorization failed for [PATH]'
    """
    if not text:
        return text

    result = _URL_PATTERN.sub("[DOMAIN]", text)
    result = _EMAIL_PATTERN.sub("[EMAIL]", result)
    result = _UUID_PATTERN.sub("[UUID]", result)
    result = _AWS_KEY_PATTERN.sub("[AWS_KEY]", result)
    result = _BEARER_PATTERN.sub("Bearer [REDACTED]", result)
    result = _BASIC_PATTERN.sub("Basic [REDACTED]", result)
    result = _CREDENTIAL_PATTERN.sub(r"\1=[REDACTED]", result)
    result = _QUOTED_SECRET_PATTERN.sub(r"\1[REDACTED]\1", result)
    result = _WINDOWS_PATH_PATTERN.sub("[PATH]", result)
    result = _UNIX_PATH_PATTERN.sub("[PATH]", result)
    result = _IPV4_PATTERN.sub("[IP]", result)
    result = _IPV6_PATTERN.sub("[IP]", result)
    return result


def sanitize_error(error: BaseException | str) -> str:
    """Return the sanitized message of *error*."""
    text = error if isinstance(error, str) else (str(error) or type(error).__name__)
    return sanitize_string(text)


def sanitize_object(value: Any) -> Any:
    """Recursively sanitize every string inside dicts, lists and tuples."""
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, dict):
        return {key: sanitize_object(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(sanitize_object(item) for item in value)
    return value


def sanitize_error_log(error: BaseException | None) -> dict[str, Any]:
    """Build a dict of safe-to-log fields from an exception.

    Structured fields such as ``error_code`` and ``exit_code`` pass through
    unchanged; free text (message, stderr, command) is sanitized.

    Example:
        ```python
        logger.warning("operation_failed", **sanitize_error_log(exc))
        ```
    """
    if error is None:
        return {}

    log: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error": sanitize_error(error),
    }
    for field in ("error_code", "exit_code"):
        value = getattr(error, field, None)
        if value is not None:
            log[field] = value
    for field in ("command", "stderr"):
        value = getattr(error, field, None)
        if value:
            log[field] = sanitize_string(str(value))
    return log
