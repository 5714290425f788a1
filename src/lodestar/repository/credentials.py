"""Stored and prompted credentials for one repository.

Credentials live in the host's secret store as a JSON list of
``{"account": ..., "password": ...}`` objects under a key derived from the
repository root URL. The manager only reads that list at the start of an
authorization retry sequence and appends to it after a prompted
credential has been accepted by the server.
"""

from __future__ import annotations

import asyncio
import json

from pydantic import TypeAdapter, ValidationError

from lodestar.constants import CREDENTIAL_KEY_PREFIX
from lodestar.logging import get_logger
from lodestar.svn.models import Credential
from lodestar.svn.protocol import CredentialPrompt, SecretStore, SvnBackend

__all__ = ["CredentialManager"]

logger = get_logger(__name__)

_CREDENTIAL_LIST = TypeAdapter(list[Credential])


class CredentialManager:
    """Rotates credentials on an svn backend.

    Args:
        backend: Backend whose ``username``/``password`` are swapped.
        secrets: Secret store holding saved credentials.
        prompt: Asks the user for a new credential; None when unavailable.
    """

    def __init__(
        self,
        backend: SvnBackend,
        secrets: SecretStore | None = None,
        prompt: CredentialPrompt | None = None,
    ) -> None:
        self._backend = backend
        self._secrets = secrets
        self._prompt = prompt
        self._pending_prompt: asyncio.Future[Credential | None] | None = None
        self._can_save = False

    @property
    def service_key(self) -> str:
        """Secret store key, scoped to the repository root (or URL)."""
        info = self._backend.info
        identity = info.repository_root or info.url
        if identity:
            return f"{CREDENTIAL_KEY_PREFIX}:{identity}"
        return CREDENTIAL_KEY_PREFIX

    @property
    def can_save(self) -> bool:
        """True when the active credential came from a prompt and is unsaved."""
        return self._can_save

    def use(self, credential: Credential) -> None:
        """Make *credential* the backend's active credential."""
        self._backend.username = credential.account
        self._backend.password = credential.password

    async def load_stored(self) -> list[Credential]:
        """Return every credential saved for this repository.

        Waits for an in-flight prompt first, so a credential entered there
        is not raced by a stale list.
        """
        if self._pending_prompt is not None:
            await asyncio.shield(self._pending_prompt)

        if self._secrets is None:
            return []

        raw = await self._secrets.get(self.service_key)
        if raw is None:
            return []
        try:
            return _CREDENTIAL_LIST.validate_json(raw)
        except ValidationError:
            logger.warning("stored_credentials_unreadable", key=self.service_key)
            return []

    async def prompt(self) -> Credential | None:
        """Ask the user for a credential and make it active.

        Concurrent callers share one prompt. Returns None if the prompt was
        dismissed or no prompt is configured.
        """
        if self._pending_prompt is not None:
            return await asyncio.shield(self._pending_prompt)

        if self._prompt is None:
            return None

        future: asyncio.Future[Credential | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending_prompt = future
        try:
            result = await self._prompt(self._backend.username, self._backend.password)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved; the exception propagates through this caller.
            future.exception()
            raise
        else:
            if result is not None:
                self.use(result)
                self._can_save = True
            future.set_result(result)
            return result
        finally:
            self._pending_prompt = None

    async def save(self) -> None:
        """Append the prompted credential to the secret store.

        A no-op unless the active credential came from :meth:`prompt`.
        """
        username = self._backend.username
        password = self._backend.password
        if not (self._can_save and username and password and self._secrets):
            return

        key = self.service_key
        raw = await self._secrets.get(key)
        credentials: list[Credential] = []
        if raw is not None:
            try:
                credentials = _CREDENTIAL_LIST.validate_json(raw)
            except ValidationError:
                logger.warning("stored_credentials_unreadable", key=key)

        credentials.append(Credential(account=username, password=password))
        await self._secrets.store(
            key, json.dumps([c.model_dump() for c in credentials])
        )
        self._can_save = False
        logger.debug("credentials_saved", key=key, count=len(credentials))
