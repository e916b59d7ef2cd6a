"""Login flow orchestrator.

Provides LoginFlow, which wires the PKCE generator, session store,
loopback listener, redirect handler, token exchange, token store and
profile fetcher into the two entry points the application calls:
``start_login`` (interactive, browser based) and ``refresh`` (silent).
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes

from __future__ import annotations

import asyncio
import contextlib
import logging
import webbrowser

from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from ..events import EVENT_DEBUG, EVENT_ERROR, EventEmitter
from ..exceptions import (
    AuthFlowCancelled,
    AuthFlowTimeout,
    ListenerStartError,
    LoopbackOAuthError,
)
from ..log import redact_url
from ..types import AuthFlowResult, AuthFlowState, PendingSession
from .callback_server import RedirectListener
from .handler import RedirectHandler
from .pkce import generate_pkce
from .profile import ProfileFetcher
from .refresh import RefreshOrchestrator
from .session import SessionStore
from .token_exchange import TokenExchangeClient
from .token_store import create_token_store


if TYPE_CHECKING:
    from ..config import OAuthSettings
    from ..types import TokenSet
    from .token_store import TokenStore


logger = logging.getLogger("loopback_oauth.auth")


def _open_in_browser(url: str) -> bool:
    """Open ``url`` in the user's default browser."""
    return webbrowser.open(url)


class LoginFlow:
    """Coordinates a browser login and on-demand refresh.

    One LoginFlow normally lives for the whole process. Each call to
    :meth:`start_login` creates a fresh attempt with its own listener and
    redirect handler; a new attempt supersedes a running one.

    Parameters
    ----------
    settings : OAuthSettings
        The loaded configuration.
    token_store : TokenStore, optional
        Where tokens are persisted (default: from ``settings``).
    emitter : EventEmitter, optional
        Receives the flow events (default: a new emitter).
    exchange_client : TokenExchangeClient, optional
        Token endpoint client (default: from ``settings``).
    profile_fetcher : ProfileFetcher, optional
        Identity endpoint client (default: from ``settings``).
    open_url : callable, optional
        Opens the authorize URL. Signature ``open_url(url: str) -> Any``.
        Defaults to the system browser.
    """

    def __init__(
        self,
        settings: OAuthSettings,
        token_store: TokenStore | None = None,
        emitter: EventEmitter | None = None,
        exchange_client: TokenExchangeClient | None = None,
        profile_fetcher: ProfileFetcher | None = None,
        open_url: Callable[[str], Any] | None = None,
    ) -> None:
        """Initialize the login flow."""
        self.settings = settings
        self.token_store = token_store or create_token_store(settings)
        self.emitter = emitter or EventEmitter()
        self.exchange_client = exchange_client or TokenExchangeClient(
            settings.token_url, timeout=settings.http_timeout_seconds
        )
        self.profile_fetcher = profile_fetcher or ProfileFetcher(
            settings.userinfo_url,
            settings.avatar_cdn_url,
            timeout=settings.http_timeout_seconds,
        )
        self.open_url = open_url or _open_in_browser
        self.session_store = SessionStore()

        self._flow_state = AuthFlowState.PENDING
        self._listener: RedirectListener | None = None
        self._task: asyncio.Task[AuthFlowResult] | None = None
        self._authorize_url: str | None = None

    @property
    def flow_state(self) -> AuthFlowState:
        """State of the current (or last) login attempt."""
        return self._flow_state

    @property
    def port(self) -> int | None:
        """Port of the current attempt's listener, if one was started."""
        return self._listener.port if self._listener is not None else None

    @property
    def authorize_url(self) -> str | None:
        """Authorize URL of the current attempt, for manual navigation."""
        return self._authorize_url

    def build_authorize_url(self, redirect_uri: str, challenge: str, state: str) -> str:
        """Build the provider authorization URL.

        Parameters
        ----------
        redirect_uri : str
            The loopback redirect URI.
        challenge : str
            The S256 PKCE challenge.
        state : str
            The anti-CSRF state.

        Returns
        -------
        str
            The full authorization URL.
        """
        params = {
            "response_type": "code",
            "client_id": self.settings.client_id,
            "redirect_uri": redirect_uri,
            "scope": self.settings.scopes,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        return f"{self.settings.authorize_url}?{urlencode(params)}"

    async def start_login(self) -> int:
        """Start a browser login and return once the listener is bound.

        The redirect is processed by a background task; its outcome is
        reported through the emitter and by :meth:`wait`.

        Returns
        -------
        int
            The port the redirect listener is bound to.

        Raises
        ------
        ConfigurationError
            If no client id is configured.
        ListenerStartError
            If the loopback port cannot be bound.
        """
        self.settings.require_client()
        await self._stop_attempt("previous login superseded")

        verifier, challenge, state = generate_pkce()

        listener = RedirectListener(
            host=self.settings.host,
            port=self.settings.port,
            callback_path=self.settings.callback_path,
        )
        try:
            port = listener.start(asyncio.get_running_loop())
        except ListenerStartError:
            self._flow_state = AuthFlowState.FAILED
            raise

        redirect_uri = listener.redirect_uri
        self.session_store.put(
            PendingSession(code_verifier=verifier, state=state, redirect_uri=redirect_uri)
        )
        handler = RedirectHandler(
            client_id=self.settings.client_id,
            callback_path=self.settings.callback_path,
            session_store=self.session_store,
            exchange_client=self.exchange_client,
            token_store=self.token_store,
            profile_fetcher=self.profile_fetcher,
            emitter=self.emitter,
            host=self.settings.host,
        )
        self._listener = listener
        self._flow_state = AuthFlowState.IN_PROGRESS
        self._task = asyncio.create_task(self._run_attempt(listener, handler))

        self._authorize_url = self.build_authorize_url(redirect_uri, challenge, state)
        self.emitter.emit(EVENT_DEBUG, f"opening auth url: {redact_url(self._authorize_url)}")
        self._open(self._authorize_url)
        return port

    def _open(self, url: str) -> None:
        try:
            opened = self.open_url(url)
        except Exception as exc:  # noqa: BLE001
            logger.warning("failed to open browser: %s", exc)
            return
        if opened is False:
            logger.warning("No browser available, open the login URL manually")

    async def _run_attempt(
        self, listener: RedirectListener, handler: RedirectHandler
    ) -> AuthFlowResult:
        """Wait for the attempt's outcome, then release the listener."""
        timeout = self.settings.auth_timeout_seconds
        try:
            result = await asyncio.wait_for(handler.consume(listener.urls), timeout=timeout)
        except asyncio.TimeoutError:
            self.session_store.take_if_present()
            reason = "authentication timed out"
            self.emitter.emit(EVENT_ERROR, reason)
            result = AuthFlowResult(success=False, state=AuthFlowState.TIMED_OUT, error=reason)
        except LoopbackOAuthError as exc:
            reason = f"authentication flow failed: {exc}"
            self.emitter.emit(EVENT_ERROR, reason)
            result = AuthFlowResult(success=False, state=AuthFlowState.FAILED, error=reason)
        finally:
            await asyncio.to_thread(listener.stop)

        if self._task is asyncio.current_task():
            self._flow_state = result.state
        return result

    async def wait(self) -> AuthFlowResult:
        """Wait for the current attempt to reach a terminal state.

        Returns
        -------
        AuthFlowResult
            The outcome. A cancelled or superseded attempt yields a
            result in the ``cancelled`` state.

        Raises
        ------
        LoopbackOAuthError
            If no login was started.
        """
        task = self._task
        if task is None:
            msg = "No login in progress"
            raise LoopbackOAuthError(msg)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        return AuthFlowResult(success=False, state=AuthFlowState.CANCELLED, error="login cancelled")

    async def login(self) -> AuthFlowResult:
        """Run a full browser login and wait for it to finish.

        Returns
        -------
        AuthFlowResult
            The completed result.

        Raises
        ------
        AuthFlowTimeout
            If no valid redirect arrived in time.
        AuthFlowCancelled
            If the attempt was cancelled or superseded.
        LoopbackOAuthError
            If the attempt failed; the message is the reported reason.
        """
        await self.start_login()
        result = await self.wait()
        if result.state is AuthFlowState.COMPLETED:
            return result
        reason = result.error or result.state.value
        if result.state is AuthFlowState.TIMED_OUT:
            raise AuthFlowTimeout(reason, timeout=self.settings.auth_timeout_seconds)
        if result.state is AuthFlowState.CANCELLED:
            raise AuthFlowCancelled(reason)
        raise LoopbackOAuthError(reason)

    async def cancel(self) -> None:
        """Abandon the current attempt, discarding its session and listener."""
        await self._stop_attempt("login cancelled")

    async def _stop_attempt(self, reason: str) -> None:
        task = self._task
        if task is None or task.done():
            return
        self.session_store.take_if_present()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        # A task cancelled before its first step never reaches its finally.
        if self._listener is not None:
            await asyncio.to_thread(self._listener.stop)
        self._flow_state = AuthFlowState.CANCELLED
        self.emitter.emit(EVENT_DEBUG, reason)

    async def refresh(self) -> TokenSet:
        """Refresh the stored tokens without the browser.

        Returns
        -------
        TokenSet
            The new, persisted token set.

        Raises
        ------
        NoStoredTokens
            If nothing usable is stored.
        """
        orchestrator = RefreshOrchestrator(
            client_id=self.settings.client_id,
            token_store=self.token_store,
            exchange_client=self.exchange_client,
        )
        tokens = await orchestrator.refresh()
        self.emitter.emit(EVENT_DEBUG, "tokens refreshed")
        return tokens

    async def logout(self) -> None:
        """Forget the stored tokens."""
        await self.token_store.delete()
        self.emitter.emit(EVENT_DEBUG, "stored tokens deleted")

    async def aclose(self) -> None:
        """Cancel any running attempt and close HTTP clients."""
        await self.cancel()
        await self.exchange_client.aclose()
        await self.profile_fetcher.aclose()

    async def __aenter__(self) -> LoginFlow:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
