"""Concurrency control wrappers for asyncio coroutines and methods.

Four composable primitives used throughout the engine:

- :func:`debounce` collapses bursts of calls into one trailing run.
- :func:`throttle` keeps at most one run in flight per instance and
  coalesces everything that arrives meanwhile into a single follow-up run.
- :func:`global_sequentialize` is a process-wide keyed mutex that spans
  unrelated instances.
- :func:`memoize` caches a zero-argument accessor per instance.

They keep the wrapped call's signature so they can be stacked, e.g.::

    class Repository:
        @throttle
        @global_sequentialize("update_model_state")
        async def update_model_state(self, check_remote_changes: bool = False):
            ...
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from lodestar.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

__all__ = [
    "cancel_debounced",
    "debounce",
    "global_sequentialize",
    "memoize",
    "spawn",
    "throttle",
]

# Strong references to fire-and-forget tasks so they are not collected mid-run.
_background_tasks: set[asyncio.Task[Any]] = set()

_DEBOUNCE_ATTR = "__lodestar_debounce__"
_THROTTLE_ATTR = "__lodestar_throttle__"
_MEMOIZE_PREFIX = "__lodestar_memoize_"


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "background_task_failed",
            task=task.get_name(),
            exc_info=(type(exc), exc, exc.__traceback__),
        )


def spawn(awaitable: Awaitable[T], *, name: str | None = None) -> asyncio.Task[T]:
    """Schedule *awaitable* on the running loop without awaiting it.

    The task is kept alive until it finishes and a failure is logged, so
    nothing disappears as "Task exception was never retrieved".
    """
    task: asyncio.Task[T] = asyncio.ensure_future(awaitable)
    if name is not None:
        task.set_name(name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    task.add_done_callback(_log_task_failure)
    return task


# =============================================================================
# debounce
# =============================================================================


@dataclass
class _DebounceState:
    handle: asyncio.TimerHandle | None = None
    task: asyncio.Task[Any] | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


def _debounce_states(instance: Any) -> dict[str, _DebounceState]:
    states: dict[str, _DebounceState] | None = instance.__dict__.get(_DEBOUNCE_ATTR)
    if states is None:
        states = {}
        instance.__dict__[_DEBOUNCE_ATTR] = states
    return states


def debounce(
    delay: float,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., None]]:
    """Collapse calls made within *delay* seconds into one trailing run.

    Only the last call's arguments are used. The wrapper returns nothing;
    the trailing run is a background task whose failure is logged.

    Args:
        delay: Quiet period in seconds.
    """

    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., None]:
        key = fn.__qualname__

        @functools.wraps(fn)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> None:
            state = _debounce_states(self).setdefault(key, _DebounceState())
            state.cancel()

            def fire() -> None:
                state.handle = None
                state.task = spawn(fn(self, *args, **kwargs), name=key)

            state.handle = asyncio.get_running_loop().call_later(delay, fire)

        return wrapper

    return decorator


def cancel_debounced(instance: Any) -> None:
    """Cancel every debounced call still waiting to fire on *instance*."""
    for state in _debounce_states(instance).values():
        state.cancel()


# =============================================================================
# throttle
# =============================================================================


@dataclass
class _ThrottleState:
    current: asyncio.Future[Any] | None = None
    next: asyncio.Future[Any] | None = None
    next_call: tuple[tuple[Any, ...], dict[str, Any]] = field(
        default_factory=lambda: ((), {})
    )


def throttle(
    fn: Callable[..., Coroutine[Any, Any, T]],
) -> Callable[..., Coroutine[Any, Any, T]]:
    """Allow one in-flight run per instance; coalesce the rest.

    A call made while a run is in flight schedules exactly one follow-up
    run that starts when the current one settles. Further calls before
    the follow-up starts replace its arguments (the most recent call wins)
    and share its result.
    """
    key = fn.__qualname__

    def trigger(
        instance: Any, state: _ThrottleState, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> asyncio.Future[Any]:
        if state.next is not None:
            state.next_call = (args, kwargs)
            return state.next

        if state.current is not None:
            state.next_call = (args, kwargs)
            state.next = asyncio.ensure_future(run_next(instance, state))
            return state.next

        current = asyncio.ensure_future(fn(instance, *args, **kwargs))
        state.current = current

        def clear(_: asyncio.Future[Any]) -> None:
            if state.current is current:
                state.current = None

        current.add_done_callback(clear)
        return current

    async def run_next(instance: Any, state: _ThrottleState) -> Any:
        current = state.current
        if current is not None:
            await asyncio.wait([current])
            if state.current is current:
                state.current = None
        args, kwargs = state.next_call
        state.next = None
        state.next_call = ((), {})
        return await trigger(instance, state, args, kwargs)

    @functools.wraps(fn)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
        states: dict[str, _ThrottleState] = self.__dict__.setdefault(_THROTTLE_ATTR, {})
        state = states.setdefault(key, _ThrottleState())
        return await asyncio.shield(trigger(self, state, args, kwargs))

    return wrapper


# =============================================================================
# global_sequentialize
# =============================================================================

# key -> tail of the chain of calls sharing that key
_sequentializers: dict[str, asyncio.Future[Any]] = {}


def global_sequentialize(
    key: str,
) -> Callable[
    [Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]
]:
    """Run every call sharing *key* strictly one at a time, in arrival order.

    The lock is process-wide: two different instances decorated with the
    same key never overlap. A failed call does not block the next one.
    """

    def decorator(
        fn: Callable[..., Coroutine[Any, Any, T]],
    ) -> Callable[..., Coroutine[Any, Any, T]]:
        async def run_after(
            previous: asyncio.Future[Any] | None,
            args: tuple[Any, ...],
            kwargs: dict[str, Any],
        ) -> T:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            return await fn(*args, **kwargs)

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            previous = _sequentializers.get(key)
            task = asyncio.ensure_future(run_after(previous, args, kwargs))
            _sequentializers[key] = task

            def release(_: asyncio.Future[Any]) -> None:
                if _sequentializers.get(key) is task:
                    del _sequentializers[key]

            task.add_done_callback(release)
            return await asyncio.shield(task)

        return wrapper

    return decorator


# =============================================================================
# memoize
# =============================================================================


def memoize(fn: Callable[[Any], T]) -> Callable[[Any], T]:
    """Cache a zero-argument accessor's result for the instance's lifetime.

    Stack it under ``@property``. A raised exception is not cached.
    """
    attr = f"{_MEMOIZE_PREFIX}{fn.__name__}"

    @functools.wraps(fn)
    def wrapper(self: Any) -> T:
        try:
            return self.__dict__[attr]  # type: ignore[no-any-return]
        except KeyError:
            value = fn(self)
            self.__dict__[attr] = value
            return value

    return wrapper
