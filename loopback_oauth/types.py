"""Type definitions for the loopback login flow.

Plain dataclasses describe in-process values; pydantic models describe
the JSON crossing the wire or the credential store, so that missing or
mistyped fields are rejected instead of defaulted.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class PendingSession:
    """An in-flight authorization attempt waiting for its redirect.

    Attributes
    ----------
    code_verifier : str
        PKCE verifier whose challenge was sent in the authorize URL.
    state : str
        Anti-CSRF token that must come back unchanged on the redirect.
    redirect_uri : str
        The loopback redirect URI registered for this attempt.
    """

    code_verifier: str
    state: str
    redirect_uri: str

    def __repr__(self) -> str:
        return f"PendingSession(redirect_uri={self.redirect_uri!r})"


@dataclass(frozen=True)
class TokenSet:
    """OAuth2 token set produced by an exchange or refresh.

    Immutable: a refresh produces a new instance.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    refresh_token : str
        Token used to obtain a new access token without the browser.
    token_type : str
        Token type, typically "Bearer".
    scope : str
        Space-separated list of granted scopes.
    expires_in : int
        Access token lifetime in seconds.
    saved_at : int or None
        Epoch seconds when the set was written to the token store,
        ``None`` until it has been persisted.
    """

    access_token: str
    refresh_token: str
    token_type: str
    scope: str
    expires_in: int
    saved_at: int | None = None

    def with_saved_at(self, saved_at: int) -> TokenSet:
        """Return a copy stamped with the persistence time."""
        return replace(self, saved_at=saved_at)

    @property
    def expires_at(self) -> int | None:
        """Epoch seconds when the access token expires, if known."""
        if self.saved_at is None:
            return None
        return self.saved_at + self.expires_in

    def __repr__(self) -> str:
        return (
            f"TokenSet(token_type={self.token_type!r}, scope={self.scope!r}, "
            f"expires_in={self.expires_in!r}, saved_at={self.saved_at!r})"
        )


@dataclass(frozen=True)
class UserProfile:
    """The authenticated identity resolved after an exchange.

    Derived, never persisted.
    """

    id: str
    username: str
    avatar_url: str


@dataclass(frozen=True)
class DonePayload:
    """Payload of the ``oauth:done`` event."""

    token_type: str
    scope: str
    username: str
    avatar_url: str

    def to_dict(self) -> dict[str, str]:
        """Serialize for the surrounding application."""
        return {
            "token_type": self.token_type,
            "scope": self.scope,
            "username": self.username,
            "avatar_url": self.avatar_url,
        }


class AuthFlowState(str, Enum):
    """State of a login attempt."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class AuthFlowResult:
    """Terminal outcome of a login attempt.

    Attributes
    ----------
    success : bool
        Whether the attempt reached the completed state.
    state : AuthFlowState
        The terminal state.
    tokens : TokenSet or None
        The persisted token set, if the exchange succeeded. Present even
        when the later profile fetch failed.
    profile : UserProfile or None
        The resolved identity on success.
    error : str or None
        The reason reported on the ``oauth:error`` event.
    """

    success: bool
    state: AuthFlowState
    tokens: TokenSet | None = None
    profile: UserProfile | None = None
    error: str | None = None


# ── Wire / storage models ───────────────────────────────────────────


class TokenResponse(BaseModel):
    """Token endpoint response body. All fields are required."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str
    expires_in: int = Field(ge=0)
    refresh_token: str
    scope: str

    def to_token_set(self) -> TokenSet:
        """Convert to an unsaved TokenSet."""
        return TokenSet(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            scope=self.scope,
            expires_in=self.expires_in,
        )


class StoredTokens(BaseModel):
    """The JSON record kept in the secure credential store."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    token_type: str
    scope: str
    expires_in: int = Field(ge=0)
    saved_at: int

    @classmethod
    def from_token_set(cls, tokens: TokenSet, saved_at: int) -> StoredTokens:
        """Build the record for ``tokens`` saved at ``saved_at``."""
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            scope=tokens.scope,
            expires_in=tokens.expires_in,
            saved_at=saved_at,
        )

    def to_token_set(self) -> TokenSet:
        """Convert back to a TokenSet carrying its ``saved_at``."""
        return TokenSet(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            scope=self.scope,
            expires_in=self.expires_in,
            saved_at=self.saved_at,
        )


class UserInfo(BaseModel):
    """Identity endpoint response body (``GET /users/@me``)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    avatar: str | None = None
