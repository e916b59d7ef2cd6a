"""Tests for token persistence."""

from __future__ import annotations

import json
import time

from unittest.mock import MagicMock, patch

import pytest

from loopback_oauth.auth.token_store import (
    TOKEN_ACCOUNT,
    KeyringTokenStore,
    MemoryTokenStore,
    create_token_store,
    deserialize_tokens,
    serialize_tokens,
)
from loopback_oauth.config import OAuthSettings
from loopback_oauth.exceptions import (
    DeserializationError,
    PersistenceError,
    TokenNotFoundError,
)
from loopback_oauth.types import TokenSet


def _tokens(**overrides: object) -> TokenSet:
    values: dict[str, object] = {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "token_type": "Bearer",
        "scope": "identify email",
        "expires_in": 3600,
    }
    values.update(overrides)
    return TokenSet(**values)  # type: ignore[arg-type]


class TestSerialization:
    """Tests for the stored JSON record."""

    def test_record_fields(self) -> None:
        """The record holds the five token fields and saved_at."""
        data = json.loads(serialize_tokens(_tokens(), 1700000000))
        assert data == {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "token_type": "Bearer",
            "scope": "identify email",
            "expires_in": 3600,
            "saved_at": 1700000000,
        }

    @pytest.mark.parametrize(
        "data",
        [
            "not json",
            "{}",
            '{"access_token": "a"}',
            json.dumps(
                {
                    "access_token": "a",
                    "refresh_token": "r",
                    "token_type": "Bearer",
                    "scope": "s",
                    "expires_in": 10,
                }
            ),
            json.dumps(
                {
                    "access_token": "a",
                    "refresh_token": "r",
                    "token_type": "Bearer",
                    "scope": "s",
                    "expires_in": "soon",
                    "saved_at": 1,
                }
            ),
        ],
    )
    def test_malformed_record(self, data: str) -> None:
        """Malformed records raise instead of defaulting."""
        with pytest.raises(DeserializationError):
            deserialize_tokens(data)


class TestMemoryTokenStore:
    """Tests for MemoryTokenStore."""

    @pytest.mark.asyncio
    async def test_round_trip(self) -> None:
        """load returns what save wrote, stamped within a second of saving."""
        store = MemoryTokenStore()
        tokens = _tokens()

        before = time.time()
        saved = await store.save(tokens)
        loaded = await store.load()

        assert saved.saved_at is not None
        assert abs(saved.saved_at - before) <= 1
        assert loaded.to_token_set() == saved
        assert loaded.to_token_set().with_saved_at(0) == tokens.with_saved_at(0)
        assert saved.expires_at == saved.saved_at + 3600

    @pytest.mark.asyncio
    async def test_save_overwrites(self) -> None:
        """Only the latest token set is kept."""
        store = MemoryTokenStore()
        await store.save(_tokens(access_token="old"))
        await store.save(_tokens(access_token="new"))

        assert (await store.load()).access_token == "new"

    @pytest.mark.asyncio
    async def test_load_empty(self) -> None:
        """An empty store raises TokenNotFoundError."""
        with pytest.raises(TokenNotFoundError):
            await MemoryTokenStore().load()

    @pytest.mark.asyncio
    async def test_load_malformed(self) -> None:
        """A malformed stored record raises DeserializationError."""
        store = MemoryTokenStore(initial='{"access_token": "a"}')
        with pytest.raises(DeserializationError):
            await store.load()

    @pytest.mark.asyncio
    async def test_unserializable_set(self) -> None:
        """A set the record cannot hold fails as PersistenceError and writes nothing."""
        store = MemoryTokenStore()

        with pytest.raises(PersistenceError, match="serialize tokens"):
            await store.save(_tokens(expires_in=-1))

        with pytest.raises(TokenNotFoundError):
            await store.load()

    @pytest.mark.asyncio
    async def test_delete(self) -> None:
        """Deleting empties the store and is idempotent."""
        store = MemoryTokenStore()
        await store.save(_tokens())
        await store.delete()
        await store.delete()

        with pytest.raises(TokenNotFoundError):
            await store.load()


class TestKeyringTokenStore:
    """Tests for KeyringTokenStore with a mocked keyring module."""

    @pytest.fixture
    def fake_keyring(self) -> MagicMock:
        """A dict-backed stand-in for the keyring API."""
        import keyring.errors

        entries: dict[tuple[str, str], str] = {}
        fake = MagicMock()
        fake.set_password.side_effect = lambda s, a, v: entries.__setitem__((s, a), v)
        fake.get_password.side_effect = lambda s, a: entries.get((s, a))

        def delete(service: str, account: str) -> None:
            if (service, account) not in entries:
                raise keyring.errors.PasswordDeleteError("not found")
            del entries[(service, account)]

        fake.delete_password.side_effect = delete
        fake.entries = entries
        return fake

    @pytest.fixture
    def store(self, fake_keyring: MagicMock) -> KeyringTokenStore:
        """A keyring store using the fake keyring."""
        store = KeyringTokenStore(service_name="Aquila")
        store._keyring = fake_keyring
        return store

    @pytest.mark.asyncio
    async def test_single_entry_under_service(
        self, store: KeyringTokenStore, fake_keyring: MagicMock
    ) -> None:
        """Tokens are written as one entry under (service, oauth_tokens)."""
        await store.save(_tokens())

        assert list(fake_keyring.entries) == [("Aquila", TOKEN_ACCOUNT)]
        assert TOKEN_ACCOUNT == "oauth_tokens"
        assert json.loads(fake_keyring.entries[("Aquila", TOKEN_ACCOUNT)])["access_token"] == (
            "access-1"
        )

    @pytest.mark.asyncio
    async def test_round_trip(self, store: KeyringTokenStore) -> None:
        """Saved tokens can be loaded back."""
        saved = await store.save(_tokens())
        assert (await store.load()).to_token_set() == saved

    @pytest.mark.asyncio
    async def test_missing_entry(self, store: KeyringTokenStore) -> None:
        """A missing entry raises TokenNotFoundError."""
        with pytest.raises(TokenNotFoundError):
            await store.load()

    @pytest.mark.asyncio
    async def test_delete_missing_is_ok(self, store: KeyringTokenStore) -> None:
        """Deleting a missing entry is not an error."""
        await store.delete()

    @pytest.mark.asyncio
    async def test_backend_failure(
        self, store: KeyringTokenStore, fake_keyring: MagicMock
    ) -> None:
        """Keyring failures surface as PersistenceError."""
        import keyring.errors

        fake_keyring.set_password.side_effect = keyring.errors.KeyringError("locked")

        with pytest.raises(PersistenceError, match="locked"):
            await store.save(_tokens())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["set_password", "get_password", "delete_password"])
    async def test_unwrapped_backend_failure(
        self, store: KeyringTokenStore, fake_keyring: MagicMock, operation: str
    ) -> None:
        """Backend errors keyring does not wrap also surface as PersistenceError."""
        getattr(fake_keyring, operation).side_effect = RuntimeError("dbus unavailable")

        with pytest.raises(PersistenceError, match="dbus unavailable"):
            if operation == "set_password":
                await store.save(_tokens())
            elif operation == "get_password":
                await store.load()
            else:
                await store.delete()

    def test_missing_keyring_package(self) -> None:
        """A helpful ImportError is raised when keyring is unavailable."""
        with patch.dict("sys.modules", {"keyring": None}), pytest.raises(
            ImportError, match="pip install keyring"
        ):
            KeyringTokenStore()


class TestCreateTokenStore:
    """Tests for backend selection."""

    def test_memory(self) -> None:
        """The memory backend is selectable."""
        settings = OAuthSettings(token_store_backend="memory")
        assert isinstance(create_token_store(settings), MemoryTokenStore)

    def test_keyring(self) -> None:
        """The keyring backend uses the configured service name."""
        settings = OAuthSettings(token_store_backend="keyring", keyring_service="MyApp")
        store = create_token_store(settings)
        assert isinstance(store, KeyringTokenStore)
        assert store.service_name == "MyApp"
