"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
import socket

from typing import TYPE_CHECKING, Any

import httpx
import pytest

from loopback_oauth.auth.profile import ProfileFetcher
from loopback_oauth.auth.session import SessionStore
from loopback_oauth.auth.token_exchange import TokenExchangeClient
from loopback_oauth.auth.token_store import MemoryTokenStore
from loopback_oauth.config import OAuthSettings
from loopback_oauth.events import EventEmitter


if TYPE_CHECKING:
    from collections.abc import Callable


TOKEN_URL = "https://auth.test/api/oauth2/token"
USERINFO_URL = "https://auth.test/api/users/@me"
CDN_URL = "https://cdn.test"

_ENV_VARS = (
    "DISCORD_CLIENT_ID",
    "DISCORD_SCOPES",
    "OAUTH_PORT",
    "REDIRECT_PATH",
    "KEYRING_SERVICE",
    "LOOPBACK_OAUTH_CONFIG_FILE",
    "LOOPBACK_OAUTH_TOKEN_STORE",
    "LOOPBACK_OAUTH_AUTH_TIMEOUT",
    "LOOPBACK_OAUTH_HTTP_TIMEOUT",
    "LOOPBACK_OAUTH_CLIENT_ID",
    "LOOPBACK_OAUTH_PORT",
    "LOOPBACK_OAUTH_LOG_LEVEL",
)


def token_payload(**overrides: Any) -> dict[str, Any]:
    """A complete token endpoint response body."""
    payload = {
        "access_token": "access-1",
        "token_type": "Bearer",
        "expires_in": 604800,
        "refresh_token": "refresh-1",
        "scope": "identify email",
    }
    payload.update(overrides)
    return payload


def profile_payload(**overrides: Any) -> dict[str, Any]:
    """A complete identity endpoint response body."""
    payload = {
        "id": "80351110224678912",
        "username": "nelly",
        "avatar": "8342729096ea3675442027381ff50dfe",
    }
    payload.update(overrides)
    return payload


class RecordingProvider:
    """Fake provider backing an httpx.MockTransport.

    Records every request and answers token and profile requests with
    configurable status codes and bodies.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body: Any = token_payload()
        self.profile_status = 200
        self.profile_body: Any = profile_payload()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == TOKEN_URL:
            return self._respond(self.token_status, self.token_body)
        if str(request.url) == USERINFO_URL:
            return self._respond(self.profile_status, self.profile_body)
        return httpx.Response(404, text="not found")

    @staticmethod
    def _respond(status: int, body: Any) -> httpx.Response:
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, content=json.dumps(body).encode("utf-8"))

    def token_requests(self) -> list[dict[str, str]]:
        """Form bodies of the requests sent to the token endpoint."""
        from urllib.parse import parse_qsl

        return [
            dict(parse_qsl(r.content.decode("utf-8")))
            for r in self.requests
            if str(r.url) == TOKEN_URL
        ]

    def profile_requests(self) -> list[httpx.Request]:
        """Requests sent to the identity endpoint."""
        return [r for r in self.requests if str(r.url) == USERINFO_URL]


class EventRecorder:
    """Collects every event an EventEmitter dispatches."""

    def __init__(self, emitter: EventEmitter) -> None:
        self.events: list[tuple[str, Any]] = []
        for event_type in ("oauth:debug", "oauth:error", "oauth:done"):
            emitter.on(event_type, self._recorder(event_type))

    def _recorder(self, event_type: str) -> Callable[[Any], None]:
        def _record(payload: Any) -> None:
            self.events.append((event_type, payload))

        return _record

    def of(self, event_type: str) -> list[Any]:
        """Payloads of one event type, in emission order."""
        return [payload for kind, payload in self.events if kind == event_type]


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Isolate settings from the developer's environment and config files."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def free_port() -> int:
    """A loopback port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def settings(free_port: int) -> OAuthSettings:
    """Settings for a test provider on a free loopback port."""
    return OAuthSettings(
        client_id="test-client",
        port=free_port,
        token_store_backend="memory",
        token_url=TOKEN_URL,
        userinfo_url=USERINFO_URL,
        avatar_cdn_url=CDN_URL,
        auth_timeout_seconds=5.0,
    )


@pytest.fixture
def provider() -> RecordingProvider:
    """A fake provider recording requests."""
    return RecordingProvider()


@pytest.fixture
def http_client(provider: RecordingProvider) -> httpx.AsyncClient:
    """An httpx client routed to the fake provider."""
    return httpx.AsyncClient(transport=httpx.MockTransport(provider))


@pytest.fixture
def exchange_client(http_client: httpx.AsyncClient) -> TokenExchangeClient:
    """Token endpoint client talking to the fake provider."""
    return TokenExchangeClient(TOKEN_URL, http_client=http_client)


@pytest.fixture
def profile_fetcher(http_client: httpx.AsyncClient) -> ProfileFetcher:
    """Identity endpoint client talking to the fake provider."""
    return ProfileFetcher(USERINFO_URL, CDN_URL, http_client=http_client)


@pytest.fixture
def token_store() -> MemoryTokenStore:
    """An empty in-memory token store."""
    return MemoryTokenStore()


@pytest.fixture
def session_store() -> SessionStore:
    """An empty session store."""
    return SessionStore()


@pytest.fixture
def emitter() -> EventEmitter:
    """A fresh event emitter."""
    return EventEmitter()


@pytest.fixture
def recorder(emitter: EventEmitter) -> EventRecorder:
    """Records the events dispatched by ``emitter``."""
    return EventRecorder(emitter)
