"""Redirect validation and token acquisition for one login attempt.

A RedirectHandler is created per login attempt together with its
listener. The first redirect it sees is processed to a terminal outcome;
later ones are ignored.
"""

# pylint: disable=logging-too-many-args,too-many-arguments

from __future__ import annotations

import asyncio
import logging
import secrets
import threading

from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit

from ..config import LOOPBACK_HOST
from ..events import EVENT_DEBUG, EVENT_DONE, EVENT_ERROR
from ..exceptions import (
    InvalidRedirectUrl,
    LoopbackOAuthError,
    MissingCode,
    NoPendingSession,
    PersistenceError,
    ProviderAuthorizationError,
    RedirectMismatch,
    StateMismatch,
    ValidationError,
)
from ..log import redact_url
from ..types import AuthFlowResult, AuthFlowState, DonePayload, TokenSet


if TYPE_CHECKING:
    from ..events import EventEmitter
    from ..types import PendingSession
    from .profile import ProfileFetcher
    from .session import SessionStore
    from .token_exchange import TokenExchangeClient
    from .token_store import TokenStore


logger = logging.getLogger("loopback_oauth.auth")


def _single(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    if not values:
        return None
    return values[-1]


class RedirectHandler:
    """Validates a redirect, exchanges the code and reports the outcome.

    Parameters
    ----------
    client_id : str
        The public client id.
    callback_path : str
        The only path accepted on the redirect.
    session_store : SessionStore
        Holds the pending session for this attempt.
    exchange_client : TokenExchangeClient
        Token endpoint client.
    token_store : TokenStore
        Persists the exchanged tokens.
    profile_fetcher : ProfileFetcher
        Resolves the identity after persistence.
    emitter : EventEmitter
        Receives ``oauth:debug``, ``oauth:error`` and ``oauth:done``.
    host : str
        The only host accepted on the redirect (default ``127.0.0.1``).
    """

    def __init__(
        self,
        client_id: str,
        callback_path: str,
        session_store: SessionStore,
        exchange_client: TokenExchangeClient,
        token_store: TokenStore,
        profile_fetcher: ProfileFetcher,
        emitter: EventEmitter,
        host: str = LOOPBACK_HOST,
    ) -> None:
        """Initialize the handler."""
        self.client_id = client_id
        self.callback_path = callback_path
        self.host = host
        self.session_store = session_store
        self.exchange_client = exchange_client
        self.token_store = token_store
        self.profile_fetcher = profile_fetcher
        self.emitter = emitter

        self._guard = threading.Lock()
        self._handled = False

    @property
    def handled(self) -> bool:
        """Whether a redirect has already been taken by this handler."""
        with self._guard:
            return self._handled

    def _claim(self) -> bool:
        """Atomically mark the handler as used. False if it already was."""
        with self._guard:
            if self._handled:
                return False
            self._handled = True
            return True

    async def handle(self, url: str) -> AuthFlowResult | None:
        """Process one redirect URL.

        Parameters
        ----------
        url : str
            The full redirect URL including the query string.

        Returns
        -------
        AuthFlowResult or None
            The terminal outcome, or ``None`` if the redirect was a
            duplicate and ignored.
        """
        if not self._claim():
            self.emitter.emit(EVENT_DEBUG, "redirect ignored: already handled")
            return None

        try:
            session = self.session_store.take_if_present()
            if session is None:
                msg = "no pending state"
                raise NoPendingSession(msg)  # noqa: TRY301
            code = self.validate_redirect(url, session)
        except ValidationError as exc:
            return self._fail(exc.message)

        try:
            tokens = await self.exchange_client.exchange_code(
                self.client_id, code, session.redirect_uri, session.code_verifier
            )
        except LoopbackOAuthError as exc:
            return self._fail(f"token exchange failed: {exc}")

        self.emitter.emit(EVENT_DEBUG, "attempting to save tokens to keychain")
        try:
            tokens = await self.token_store.save(tokens)
        except PersistenceError as exc:
            return self._fail(f"save token error: {exc}")

        try:
            profile = await self.profile_fetcher.fetch_profile(tokens.access_token)
        except LoopbackOAuthError as exc:
            return self._fail(f"failed to fetch user info: {exc}", tokens=tokens)
        self.emitter.emit(EVENT_DEBUG, "user info fetched")

        self.emitter.emit(
            EVENT_DONE,
            DonePayload(
                token_type=tokens.token_type,
                scope=tokens.scope,
                username=profile.username,
                avatar_url=profile.avatar_url,
            ),
        )
        logger.info("Login completed for %s", profile.username)
        return AuthFlowResult(
            success=True,
            state=AuthFlowState.COMPLETED,
            tokens=tokens,
            profile=profile,
        )

    def validate_redirect(self, url: str, session: PendingSession) -> str:
        """Check origin, state and code of a redirect.

        Parameters
        ----------
        url : str
            The redirect URL.
        session : PendingSession
            The session the redirect must belong to.

        Returns
        -------
        str
            The authorization code.

        Raises
        ------
        InvalidRedirectUrl
            If the URL cannot be parsed.
        RedirectMismatch
            If host or path is not the loopback callback.
        StateMismatch
            If ``state`` differs from the session's.
        ProviderAuthorizationError
            If the provider sent an ``error`` instead of a code.
        MissingCode
            If no code is present.
        """
        try:
            parsed = urlsplit(url)
            hostname = parsed.hostname
            _ = parsed.port
        except ValueError as exc:
            msg = f"invalid url: {exc}"
            raise InvalidRedirectUrl(msg) from exc
        if not parsed.scheme or not hostname:
            msg = f"invalid url: {redact_url(url)!r} is not absolute"
            raise InvalidRedirectUrl(msg)

        self.emitter.emit(EVENT_DEBUG, f"redirect url received: {redact_url(url)}")

        if hostname != self.host or parsed.path != self.callback_path:
            msg = "invalid redirect host/path"
            raise RedirectMismatch(msg)

        params = parse_qs(parsed.query, keep_blank_values=True)

        states = params.get("state", [])
        if len(states) != 1 or not secrets.compare_digest(
            states[0].encode("utf-8"), session.state.encode("utf-8")
        ):
            msg = "state mismatch"
            raise StateMismatch(msg)

        error = _single(params, "error")
        if error:
            description = _single(params, "error_description")
            msg = f"authorization denied: {description or error}"
            raise ProviderAuthorizationError(msg, error=error, error_description=description)

        code = _single(params, "code")
        if not code:
            msg = "missing code"
            raise MissingCode(msg)
        return code

    def _fail(self, reason: str, tokens: TokenSet | None = None) -> AuthFlowResult:
        self.emitter.emit(EVENT_ERROR, reason)
        return AuthFlowResult(
            success=False,
            state=AuthFlowState.FAILED,
            tokens=tokens,
            error=reason,
        )

    async def consume(self, urls: asyncio.Queue[str]) -> AuthFlowResult:
        """Handle URLs from ``urls`` until the first one reaches an outcome.

        Redirects arriving while the first is still being processed are
        handled concurrently, which makes them observable as duplicates.

        Parameters
        ----------
        urls : asyncio.Queue[str]
            Queue fed by the redirect listener.

        Returns
        -------
        AuthFlowResult
            The outcome of the first redirect.
        """
        outcome: asyncio.Task[AuthFlowResult | None] | None = None
        duplicates: set[asyncio.Task[AuthFlowResult | None]] = set()
        getter: asyncio.Future[str] | None = None
        try:
            while True:
                getter = asyncio.ensure_future(urls.get())
                waiting: set[asyncio.Future[object]] = {getter}  # type: ignore[arg-type]
                if outcome is not None:
                    waiting.add(outcome)  # type: ignore[arg-type]
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                if outcome is not None and outcome in done:
                    getter.cancel()
                    result = outcome.result()
                    if result is not None:
                        return result
                    outcome = None
                    continue

                task = asyncio.ensure_future(self.handle(getter.result()))
                if outcome is None:
                    outcome = task
                else:
                    duplicates.add(task)
                    task.add_done_callback(duplicates.discard)
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            for task in duplicates:
                task.cancel()
            if outcome is not None and not outcome.done():
                outcome.cancel()
