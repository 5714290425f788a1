"""Retry policy for svn operations.

Two failure kinds are retried, each with its own budget:

- A locked working copy (``E155004``) clears on its own, so it is retried
  with quadratic backoff: attempt ``n`` waits ``n**2 * 50ms``, for at most
  10 retries.
- Rejected credentials (``E170001``/``E215004``) need a different
  credential. The first failure loads every stored credential; each
  following attempt substitutes the next one. When they are exhausted the
  user is prompted, up to three times. A dismissed prompt ends the
  sequence with the original error.

Everything else propagates on the first failure, unchanged.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import AsyncRetrying, RetryCallState

from lodestar.constants import (
    LOCK_BACKOFF_BASE_SECONDS,
    MAX_AUTH_PROMPTS,
    MAX_LOCK_RETRIES,
)
from lodestar.logging import get_logger
from lodestar.repository.credentials import CredentialManager
from lodestar.svn.error_codes import SvnErrorCode, is_auth_error
from lodestar.svn.models import Credential
from lodestar.utils.sanitize import sanitize_error_log

__all__ = ["RetryPolicy", "SleepFunc", "retry_run"]

logger = get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


def _error_code(exc: BaseException | None) -> str | None:
    return getattr(exc, "error_code", None)


class RetryPolicy:
    """Per-sequence retry state plugged into tenacity.

    One instance covers one call to :func:`retry_run`; it remembers the
    stored credentials loaded for that call and whether a prompt was
    dismissed.

    Args:
        credentials: Credential rotation for auth failures. Auth errors are
            not retried without one.
        max_lock_retries: Highest attempt number still retried on a lock.
        lock_backoff_base: Seconds multiplied by ``attempt**2``.
        max_auth_prompts: Interactive prompts after stored credentials.
    """

    def __init__(
        self,
        credentials: CredentialManager | None = None,
        *,
        max_lock_retries: int = MAX_LOCK_RETRIES,
        lock_backoff_base: float = LOCK_BACKOFF_BASE_SECONDS,
        max_auth_prompts: int = MAX_AUTH_PROMPTS,
    ) -> None:
        self._credentials = credentials
        self._max_lock_retries = max_lock_retries
        self._lock_backoff_base = lock_backoff_base
        self._max_auth_prompts = max_auth_prompts
        self._stored: list[Credential] | None = None
        self._last_error: BaseException | None = None
        self._aborted = False

    @property
    def stored_credentials(self) -> list[Credential] | None:
        """Credentials loaded for this sequence, or None before the first auth failure."""
        return self._stored

    def should_retry(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False

        exc = outcome.exception()
        self._last_error = exc
        if self._aborted:
            return False

        code = _error_code(exc)
        attempt = retry_state.attempt_number

        if code == SvnErrorCode.REPOSITORY_IS_LOCKED:
            return attempt <= self._max_lock_retries

        if is_auth_error(code):
            if self._credentials is None:
                return False
            if self._stored is None:
                return True
            return attempt <= len(self._stored) + self._max_auth_prompts

        return False

    def wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if _error_code(exc) == SvnErrorCode.REPOSITORY_IS_LOCKED:
            return float(retry_state.attempt_number**2) * self._lock_backoff_base
        return 0.0

    def before_sleep(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        logger.debug(
            "operation_retry",
            attempt=retry_state.attempt_number,
            delay=retry_state.next_action.sleep if retry_state.next_action else 0.0,
            **sanitize_error_log(exc),
        )

    async def before_attempt(self, attempt_number: int) -> None:
        """Swap in the next credential before a retry of an auth failure.

        Raises:
            The previous attempt's error, when the credential prompt is
            dismissed.
        """
        if attempt_number == 1 or self._credentials is None:
            return
        if not is_auth_error(_error_code(self._last_error)):
            return

        if self._stored is None:
            self._stored = await self._credentials.load_stored()
            logger.debug("stored_credentials_loaded", count=len(self._stored))

        index = attempt_number - 2
        if index < len(self._stored):
            self._credentials.use(self._stored[index])
            return

        credential = await self._credentials.prompt()
        if credential is None:
            self._aborted = True
            if self._last_error is None:
                raise RuntimeError("credential prompt dismissed before any failure")
            raise self._last_error


async def retry_run(
    operation: Callable[[], Awaitable[T]],
    *,
    credentials: CredentialManager | None = None,
    sleep: SleepFunc = asyncio.sleep,
    policy: RetryPolicy | None = None,
) -> T:
    """Run *operation*, retrying locked working copies and rejected credentials.

    Args:
        operation: Zero-argument factory producing a fresh awaitable per attempt.
        credentials: Credential rotation for auth failures.
        sleep: Coroutine used for backoff delays.
        policy: Pre-built policy; a fresh one is created by default.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error, unchanged, once retries are exhausted or
            for any error that is not retryable.
    """
    if policy is None:
        policy = RetryPolicy(credentials)

    async for attempt in AsyncRetrying(
        retry=policy.should_retry,
        wait=policy.wait,
        sleep=sleep,
        before_sleep=policy.before_sleep,
        reraise=True,
    ):
        with attempt:
            await policy.before_attempt(attempt.retry_state.attempt_number)
            result = await operation()

    if credentials is not None and credentials.can_save:
        try:
            await credentials.save()
        except Exception as exc:
            logger.warning("credentials_save_failed", **sanitize_error_log(exc))

    return result
