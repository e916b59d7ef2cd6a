"""Token persistence in the secure credential store.

Provides the TokenStore ABC, an OS keyring implementation keyed by
service name and a fixed account label, and an in-memory implementation
for tests and headless development. Only the most recent token set is
kept.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import sys
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ..exceptions import DeserializationError, PersistenceError, TokenNotFoundError
from ..types import StoredTokens, TokenSet


if TYPE_CHECKING:
    from ..config import OAuthSettings


logger = logging.getLogger("loopback_oauth.auth")

TOKEN_ACCOUNT = "oauth_tokens"  # noqa: S105


def serialize_tokens(tokens: TokenSet, saved_at: int) -> str:
    """Serialize ``tokens`` to the stored JSON record."""
    return StoredTokens.from_token_set(tokens, saved_at).model_dump_json()


def deserialize_tokens(data: str) -> StoredTokens:
    """Parse a stored JSON record.

    Raises
    ------
    DeserializationError
        If the record is not JSON or lacks a required field.
    """
    try:
        return StoredTokens.model_validate_json(data)
    except ValidationError as exc:
        msg = f"deserialize tokens: {exc}"
        raise DeserializationError(msg) from exc


class TokenStore(ABC):
    """Abstract base class for the single token record.

    All methods are async so keyring access can run off the event loop.
    """

    async def save(self, tokens: TokenSet) -> TokenSet:
        """Persist ``tokens``, replacing any previous record.

        Parameters
        ----------
        tokens : TokenSet
            The token set to persist.

        Returns
        -------
        TokenSet
            ``tokens`` stamped with ``saved_at`` (wall clock, epoch seconds).

        Raises
        ------
        PersistenceError
            If the backend cannot write the record.
        """
        saved_at = int(time.time())
        try:
            data = serialize_tokens(tokens, saved_at)
        except ValidationError as exc:
            msg = f"serialize tokens: {exc}"
            raise PersistenceError(msg) from exc
        await self._write(data)
        return tokens.with_saved_at(saved_at)

    async def load(self) -> StoredTokens:
        """Load the stored record.

        Raises
        ------
        TokenNotFoundError
            If nothing is stored.
        DeserializationError
            If the stored record is malformed.
        PersistenceError
            If the backend cannot be read.
        """
        data = await self._read()
        if data is None:
            msg = "No stored tokens"
            raise TokenNotFoundError(msg)
        return deserialize_tokens(data)

    @abstractmethod
    async def delete(self) -> None:
        """Remove the stored record. Missing records are not an error."""

    @abstractmethod
    async def _write(self, data: str) -> None:
        """Write the serialized record."""

    @abstractmethod
    async def _read(self) -> str | None:
        """Read the serialized record, ``None`` if absent."""


class MemoryTokenStore(TokenStore):
    """In-memory token store for tests and single-process development.

    Parameters
    ----------
    initial : str, optional
        A serialized record to start with.
    """

    def __init__(self, initial: str | None = None) -> None:
        """Initialize the memory token store."""
        self._data = initial
        self._lock = asyncio.Lock()

    async def _write(self, data: str) -> None:
        async with self._lock:
            self._data = data

    async def _read(self) -> str | None:
        async with self._lock:
            return self._data

    async def delete(self) -> None:
        """Forget the stored record."""
        async with self._lock:
            self._data = None


class KeyringTokenStore(TokenStore):
    """OS keyring-backed token store.

    The record lives under ``(service_name, "oauth_tokens")``.

    Parameters
    ----------
    service_name : str
        Service name of the keyring entry (default "Aquila").
    account : str
        Account label of the keyring entry.
    """

    def __init__(self, service_name: str = "Aquila", account: str = TOKEN_ACCOUNT) -> None:
        """Initialize the keyring token store."""
        try:
            import keyring as _keyring
            from keyring.errors import PasswordDeleteError
        except ImportError:
            msg = "Install keyring for persistent token storage: pip install keyring"
            raise ImportError(msg) from None
        self.service_name = service_name
        self.account = account
        self._keyring = _keyring
        self._delete_error = PasswordDeleteError

    def _describe(self, operation: str, exc: BaseException) -> str:
        return f"keyring {operation} {self.account} ({sys.platform}): {exc}"

    async def _write(self, data: str) -> None:
        logger.debug("keyring: saving %s (single entry)", self.account)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, self._keyring.set_password, self.service_name, self.account, data
            )
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(
                self._describe("set", exc), service=self.service_name
            ) from exc

    async def _read(self) -> str | None:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, self._keyring.get_password, self.service_name, self.account
            )
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(
                self._describe("get", exc), service=self.service_name
            ) from exc

    async def delete(self) -> None:
        """Delete the keyring entry."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, self._keyring.delete_password, self.service_name, self.account
            )
        except self._delete_error:
            logger.debug("keyring: no %s entry to delete", self.account)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(
                self._describe("delete", exc), service=self.service_name
            ) from exc


def create_token_store(settings: OAuthSettings) -> TokenStore:
    """Build the token store selected by ``settings.token_store_backend``.

    Parameters
    ----------
    settings : OAuthSettings
        The loaded settings.

    Returns
    -------
    TokenStore
        A configured token store instance.
    """
    backend = settings.token_store_backend
    if backend == "memory":
        return MemoryTokenStore()
    if backend == "keyring":
        return KeyringTokenStore(service_name=settings.keyring_service)
    msg = f"Unknown token store backend: {backend}"
    raise ValueError(msg)
