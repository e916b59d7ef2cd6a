"""loopback-oauth - browser login for native apps without a client secret.

Runs the OAuth2 Authorization Code flow with PKCE against a loopback
redirect on 127.0.0.1, validates the redirect, exchanges the code, keeps
the tokens in the OS keyring and refreshes them on demand.
"""

from __future__ import annotations

from .auth import (
    KeyringTokenStore,
    LoginFlow,
    MemoryTokenStore,
    PKCEChallenge,
    TokenStore,
)
from .config import OAuthSettings, load_settings
from .events import EVENT_DEBUG, EVENT_DONE, EVENT_ERROR, EventEmitter
from .exceptions import (
    AuthFlowCancelled,
    AuthFlowTimeout,
    ConfigurationError,
    DeserializationError,
    ExchangeError,
    InvalidRedirectUrl,
    ListenerStartError,
    LoopbackOAuthError,
    MalformedProfileResponse,
    MalformedTokenResponse,
    MissingCode,
    NetworkError,
    NoPendingSession,
    NoStoredTokens,
    PersistenceError,
    ProfileFetchError,
    ProviderAuthorizationError,
    ProviderError,
    RedirectMismatch,
    StateMismatch,
    TokenNotFoundError,
    ValidationError,
)
from .types import (
    AuthFlowResult,
    AuthFlowState,
    DonePayload,
    PendingSession,
    StoredTokens,
    TokenSet,
    UserProfile,
)


__version__ = "0.1.0"

__all__ = [
    "EVENT_DEBUG",
    "EVENT_DONE",
    "EVENT_ERROR",
    "AuthFlowCancelled",
    "AuthFlowResult",
    "AuthFlowState",
    "AuthFlowTimeout",
    "ConfigurationError",
    "DeserializationError",
    "DonePayload",
    "EventEmitter",
    "ExchangeError",
    "InvalidRedirectUrl",
    "KeyringTokenStore",
    "ListenerStartError",
    "LoginFlow",
    "LoopbackOAuthError",
    "MalformedProfileResponse",
    "MalformedTokenResponse",
    "MemoryTokenStore",
    "MissingCode",
    "NetworkError",
    "NoPendingSession",
    "NoStoredTokens",
    "OAuthSettings",
    "PKCEChallenge",
    "PendingSession",
    "PersistenceError",
    "ProfileFetchError",
    "ProviderAuthorizationError",
    "ProviderError",
    "RedirectMismatch",
    "StateMismatch",
    "StoredTokens",
    "TokenNotFoundError",
    "TokenSet",
    "TokenStore",
    "UserProfile",
    "ValidationError",
    "load_settings",
]
