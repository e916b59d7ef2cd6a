"""On-demand token refresh without the browser."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from ..exceptions import DeserializationError, NoStoredTokens, TokenNotFoundError


if TYPE_CHECKING:
    from ..types import TokenSet
    from .token_exchange import TokenExchangeClient
    from .token_store import TokenStore


logger = logging.getLogger("loopback_oauth.auth")


class RefreshOrchestrator:
    """Reloads stored tokens, redeems the refresh token and re-persists.

    Invoked by the caller when it wants fresh tokens; expiry is not
    tracked and nothing is scheduled here.

    Parameters
    ----------
    client_id : str
        The public client id.
    token_store : TokenStore
        Where the current record lives.
    exchange_client : TokenExchangeClient
        Client for the token endpoint.
    """

    def __init__(
        self,
        client_id: str,
        token_store: TokenStore,
        exchange_client: TokenExchangeClient,
    ) -> None:
        """Initialize the refresh orchestrator."""
        self.client_id = client_id
        self.token_store = token_store
        self.exchange_client = exchange_client

    async def refresh(self) -> TokenSet:
        """Replace the stored token set with a refreshed one.

        Returns
        -------
        TokenSet
            The new, persisted token set. A rotated refresh token replaces
            the old one.

        Raises
        ------
        NoStoredTokens
            If nothing usable is stored. No request is made.
        NetworkError, ExchangeError, MalformedTokenResponse
            If the refresh grant fails; the stored record is left as is.
        PersistenceError
            If the new set cannot be written.
        """
        try:
            stored = await self.token_store.load()
        except (TokenNotFoundError, DeserializationError) as exc:
            msg = f"No stored tokens to refresh: {exc}"
            raise NoStoredTokens(msg) from exc

        tokens = await self.exchange_client.exchange_refresh(self.client_id, stored.refresh_token)
        saved = await self.token_store.save(tokens)
        logger.debug("Refreshed tokens saved at %s", saved.saved_at)
        return saved
