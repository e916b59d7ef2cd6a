"""OAuth2 Authorization Code + PKCE login over a loopback redirect.

Provides PKCE generation, the single-slot session store, the loopback
redirect listener and handler, token exchange, profile lookup, token
persistence and refresh, and the LoginFlow that ties them together.
"""

from __future__ import annotations

from .callback_server import RedirectListener
from .flow import LoginFlow
from .handler import RedirectHandler
from .pkce import PKCEChallenge, compute_challenge, generate_pkce, generate_state
from .profile import ProfileFetcher, avatar_url
from .refresh import RefreshOrchestrator
from .session import SessionStore
from .token_exchange import TokenExchangeClient
from .token_store import (
    KeyringTokenStore,
    MemoryTokenStore,
    TokenStore,
    create_token_store,
)


__all__ = [
    "KeyringTokenStore",
    "LoginFlow",
    "MemoryTokenStore",
    "PKCEChallenge",
    "ProfileFetcher",
    "RedirectHandler",
    "RedirectListener",
    "RefreshOrchestrator",
    "SessionStore",
    "TokenExchangeClient",
    "TokenStore",
    "avatar_url",
    "compute_challenge",
    "create_token_store",
    "generate_pkce",
    "generate_state",
]
