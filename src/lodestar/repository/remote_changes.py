"""Periodic remote change checks for one repository."""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from lodestar.config import ConfigurationChangeEvent, ConfigurationReader
from lodestar.constants import (
    DEFAULT_REMOTE_CHECK_FREQUENCY_SECONDS,
    REMOTE_CHANGES_DEBOUNCE_SECONDS,
)
from lodestar.events import Disposable
from lodestar.exceptions import RepositoryNotIdleError
from lodestar.logging import get_logger
from lodestar.repository.operations import Operation
from lodestar.utils.async_utils import cancel_debounced, debounce

__all__ = ["CHECK_FREQUENCY_KEY", "RemoteChangePoller", "RemoteChangesTarget"]

logger = get_logger(__name__)

CHECK_FREQUENCY_KEY = "remote_changes.check_frequency"


class RemoteChangesTarget(Protocol):
    """What the poller needs from a repository."""

    async def run(self, operation: Operation) -> Any: ...

    def dispose_remote_changes(self) -> None: ...


class RemoteChangePoller:
    """Runs ``status_remote`` every ``remote_changes.check_frequency`` seconds.

    A frequency of 0 disables polling; a check requested while disabled
    drops the remote changes group instead so stale upstream state does
    not linger.

    Args:
        repository: Repository to run the check on.
        config: Live configuration; frequency changes restart the timer.
    """

    def __init__(self, repository: RemoteChangesTarget, config: ConfigurationReader) -> None:
        self._repository = repository
        self._config = config
        self._timer: asyncio.Task[None] | None = None
        self._disposed = False
        self._subscription: Disposable | None = config.on_did_change.subscribe(
            self._on_config_change
        )

    @property
    def frequency(self) -> int:
        return int(self._config.get(CHECK_FREQUENCY_KEY, DEFAULT_REMOTE_CHECK_FREQUENCY_SECONDS))

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def disposed(self) -> bool:
        return self._disposed

    def start(self) -> None:
        """Create the repeating timer for the configured frequency.

        Raises:
            RuntimeError: If the poller has been disposed.
        """
        if self._disposed:
            raise RuntimeError("RemoteChangePoller is disposed")
        self._clear_timer()
        frequency = self.frequency
        if not frequency:
            logger.debug("remote_polling_disabled")
            return
        self._timer = asyncio.get_running_loop().create_task(
            self._poll(frequency), name="remote-change-poller"
        )

    async def _poll(self, frequency: float) -> None:
        while True:
            await asyncio.sleep(frequency)
            self.update_remote_changed_files()

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_config_change(self, event: ConfigurationChangeEvent) -> None:
        if self._disposed or not event.affects_configuration(CHECK_FREQUENCY_KEY):
            return
        logger.debug("remote_polling_reconfigured", frequency=self.frequency)
        self.start()
        self.update_remote_changed_files()

    @debounce(REMOTE_CHANGES_DEBOUNCE_SECONDS)
    async def update_remote_changed_files(self) -> None:
        """Debounced :meth:`check_remote_changes`."""
        await self.check_remote_changes()

    async def check_remote_changes(self) -> None:
        """Run the remote status check now, or drop the group when disabled."""
        if self._disposed:
            return
        if not self.frequency:
            self._repository.dispose_remote_changes()
            return
        try:
            await self._repository.run(Operation.STATUS_REMOTE)
        except RepositoryNotIdleError:
            logger.debug("remote_check_skipped_busy")

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._clear_timer()
        cancel_debounced(self)
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None
