"""Token endpoint client for the authorization-code and refresh grants.

No retries at this layer: transport failures propagate to the caller.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import Any

import httpx

from pydantic import ValidationError

from ..exceptions import ExchangeError, MalformedTokenResponse, NetworkError
from ..log import redact_sensitive_data
from ..types import TokenResponse, TokenSet


logger = logging.getLogger("loopback_oauth.auth")


def _response_body(resp: httpx.Response) -> str | None:
    """Read the response body for diagnostics, best effort."""
    try:
        return resp.text
    except (httpx.HTTPError, UnicodeDecodeError):
        return None


class TokenExchangeClient:
    """Issues form-encoded grant requests to the provider's token endpoint.

    Parameters
    ----------
    token_url : str
        The provider's token endpoint.
    http_client : httpx.AsyncClient, optional
        Client to use. When omitted one is created lazily and owned by
        this instance.
    timeout : float
        Request timeout in seconds (default ``30``).
    """

    def __init__(
        self,
        token_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the token exchange client."""
        self.token_url = token_url
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def __aenter__(self) -> TokenExchangeClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def exchange_code(
        self,
        client_id: str,
        code: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> TokenSet:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        client_id : str
            The public client id.
        code : str
            The authorization code from the redirect.
        redirect_uri : str
            The redirect URI used in the authorization request.
        code_verifier : str
            The PKCE verifier matching the challenge that was sent.

        Returns
        -------
        TokenSet
            The unsaved token set.

        Raises
        ------
        NetworkError
            If the request could not be sent or answered.
        ExchangeError
            If the provider answered with a non-2xx status.
        MalformedTokenResponse
            If the body lacks a required field.
        """
        form = {
            "client_id": client_id,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }
        return await self._request_tokens(form, "token exchange")

    async def exchange_refresh(self, client_id: str, refresh_token: str) -> TokenSet:
        """Exchange a refresh token for a new token set.

        Raises the same errors as :meth:`exchange_code`.
        """
        form = {
            "client_id": client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return await self._request_tokens(form, "token refresh")

    async def _request_tokens(self, form: dict[str, str], operation: str) -> TokenSet:
        client = await self._get_client()
        try:
            resp = await client.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            msg = f"{operation} request failed: {exc}"
            raise NetworkError(msg, grant_type=form["grant_type"]) from exc

        if not resp.is_success:
            logger.debug(
                "%s rejected with %s for %s",
                operation,
                resp.status_code,
                redact_sensitive_data(form),
            )
            msg = f"{operation} error"
            raise ExchangeError(
                msg,
                status_code=resp.status_code,
                body=_response_body(resp),
                grant_type=form["grant_type"],
            )

        try:
            tokens = TokenResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            msg = f"{operation} returned a malformed token response: {exc}"
            raise MalformedTokenResponse(msg, grant_type=form["grant_type"]) from exc

        logger.debug("%s succeeded (scope=%s)", operation, tokens.scope)
        return tokens.to_token_set()
