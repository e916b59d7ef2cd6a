"""loopback-oauth exception hierarchy.

All errors raised by the login flow inherit from LoopbackOAuthError,
enabling catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class LoopbackOAuthError(Exception):
    """Base exception for all loopback-oauth errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize the exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (port, status_code, key, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(LoopbackOAuthError):
    """Configuration is missing or invalid.

    Raised at the start of a login when the client id, port or callback
    path cannot be used.
    """


class ListenerStartError(LoopbackOAuthError):
    """The loopback redirect listener could not bind its port."""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize listener start error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        host : str, optional
            The address the listener tried to bind.
        port : int, optional
            The port the listener tried to bind.
        **context : Any
            Additional context.
        """
        super().__init__(message, host=host, port=port, **context)
        self.host = host
        self.port = port


# ── Redirect validation ─────────────────────────────────────────────


class ValidationError(LoopbackOAuthError):
    """Base exception for rejected redirects.

    The attempt is aborted and reported; there is no retry.
    """


class NoPendingSession(ValidationError):
    """A redirect arrived but no login is waiting for one."""


class InvalidRedirectUrl(ValidationError):
    """The redirect URL could not be parsed."""


class RedirectMismatch(ValidationError):
    """The redirect host or path is not the configured loopback callback."""


class StateMismatch(ValidationError):
    """The ``state`` parameter does not match the pending session."""


class MissingCode(ValidationError):
    """The redirect carries no authorization code."""


class ProviderAuthorizationError(ValidationError):
    """The provider redirected back with an ``error`` instead of a code.

    Typically ``access_denied`` when the user declines the consent screen.
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        error_description: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider authorization error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        error : str, optional
            The OAuth2 ``error`` code from the redirect.
        error_description : str, optional
            The OAuth2 ``error_description`` from the redirect.
        **context : Any
            Additional context.
        """
        super().__init__(message, error=error, **context)
        self.error = error
        self.error_description = error_description


# ── Provider communication ──────────────────────────────────────────


class NetworkError(LoopbackOAuthError):
    """Transport failure while talking to the provider."""


class ProviderError(LoopbackOAuthError):
    """The provider answered with a non-2xx status.

    Carries the status code and, best effort, the response body for
    diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status code returned by the provider.
        body : str, optional
            Response body, if it could be read.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        """Format exception with status and body."""
        text = super().__str__()
        if self.body:
            return f"{text}: {self.body}"
        return text


class ExchangeError(ProviderError):
    """The token endpoint rejected a grant."""


class ProfileFetchError(ProviderError):
    """The identity endpoint rejected the profile request."""


class MalformedTokenResponse(LoopbackOAuthError):
    """The token endpoint answered 2xx with a body missing required fields."""


class MalformedProfileResponse(LoopbackOAuthError):
    """The identity endpoint answered 2xx with an unusable body."""


# ── Persistence ─────────────────────────────────────────────────────


class PersistenceError(LoopbackOAuthError):
    """The secure credential store failed.

    After a successful exchange this leaves the user logged in at the
    provider but not remembered locally, so callers should treat it as a
    full failure.
    """


class TokenNotFoundError(PersistenceError):
    """No token record is stored under the configured key."""


class DeserializationError(PersistenceError):
    """The stored token record is malformed."""


class NoStoredTokens(LoopbackOAuthError):
    """Refresh was requested but no usable token record is stored."""


# ── Flow lifecycle ──────────────────────────────────────────────────


class AuthFlowCancelled(LoopbackOAuthError):
    """The login attempt was cancelled or superseded."""


class AuthFlowTimeout(LoopbackOAuthError):
    """No valid redirect arrived within the configured timeout."""

    def __init__(self, message: str, timeout: float, **context: Any) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        **context : Any
            Additional context.
        """
        super().__init__(message, timeout=timeout, **context)
        self.timeout = timeout
