"""Minimal typed event emitter.

Components expose ``Event`` objects; listeners subscribe and receive a
:class:`Disposable` that removes them again. Listeners may be plain
callables or coroutine functions (coroutines are scheduled on the
running loop).
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Iterable
from typing import Any, Generic, TypeVar

from lodestar.logging import get_logger
from lodestar.utils.async_utils import spawn

logger = get_logger(__name__)

T = TypeVar("T")

Listener = Callable[[T], Any]


class Disposable:
    """Runs a cleanup callback once, on the first ``dispose()`` call."""

    def __init__(self, on_dispose: Callable[[], None] | None = None) -> None:
        self._on_dispose = on_dispose
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._on_dispose is not None:
            self._on_dispose()


def dispose_all(disposables: Iterable[Any]) -> list[Any]:
    """Dispose every item and return an empty list for reassignment."""
    for disposable in list(disposables):
        disposable.dispose()
    return []


class Event(Generic[T]):
    """A multicast event.

    Example:
        ```python
        on_did_change = Event[int]()
        sub = on_did_change.subscribe(lambda count: print(count))
        on_did_change.fire(3)
        sub.dispose()
        ```
    """

    def __init__(self, name: str = "event") -> None:
        self._name = name
        self._listeners: list[Listener[T]] = []
        self._source_subscriptions: list[Disposable] = []
        self._waiters: set[asyncio.Future[Any]] = set()
        self._disposed = False

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(
        self,
        listener: Listener[T],
        disposables: list[Any] | None = None,
    ) -> Disposable:
        """Add *listener* and return a handle that removes it.

        Args:
            listener: Callable invoked with each fired value.
            disposables: Optional list the handle is appended to.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        subscription = Disposable(remove)
        if disposables is not None:
            disposables.append(subscription)
        return subscription

    def fire(self, value: T) -> None:
        """Deliver *value* to every current listener.

        A failing listener is logged and does not prevent delivery to the
        others.
        """
        for listener in list(self._listeners):
            try:
                result = listener(value)
            except Exception:
                logger.exception("event_listener_failed", event=self._name)
                continue
            if inspect.isawaitable(result):
                spawn(result, name=f"{self._name}-listener")

    async def next(self, predicate: Callable[[T], bool] | None = None) -> T:
        """Wait for the next fired value, optionally matching *predicate*.

        Raises:
            asyncio.CancelledError: If the event is disposed before a
                matching value fires.
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        if self._disposed:
            future.cancel()

        def on_fire(value: T) -> None:
            if future.done():
                return
            if predicate is None or predicate(value):
                future.set_result(value)

        subscription = self.subscribe(on_fire)
        self._waiters.add(future)
        try:
            return await future
        finally:
            self._waiters.discard(future)
            subscription.dispose()

    def dispose(self) -> None:
        """Drop every listener and cancel pending :meth:`next` waiters."""
        self._disposed = True
        self._listeners.clear()
        for waiter in list(self._waiters):
            waiter.cancel()
        self._waiters.clear()
        self._source_subscriptions = dispose_all(self._source_subscriptions)


def any_event(*events: Event[Any], name: str = "any") -> Event[Any]:
    """Return an event that fires whenever any of *events* fires."""
    combined: Event[Any] = Event(name)
    for event in events:
        combined._source_subscriptions.append(event.subscribe(combined.fire))
    return combined


__all__ = ["Disposable", "Event", "any_event", "dispose_all"]
