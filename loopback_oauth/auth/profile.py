"""Identity lookup after a successful exchange."""

from __future__ import annotations

import httpx

from pydantic import ValidationError

from ..config import DISCORD_CDN_URL
from ..exceptions import MalformedProfileResponse, NetworkError, ProfileFetchError
from ..types import UserInfo, UserProfile
from .token_exchange import _response_body


# Users without a custom avatar get one of the provider's default avatars,
# selected from the snowflake id.
_DEFAULT_AVATAR_COUNT = 6


def avatar_url(user_id: str, avatar_hash: str | None, cdn_url: str = DISCORD_CDN_URL) -> str:
    """Derive the CDN avatar URL for ``user_id``.

    Parameters
    ----------
    user_id : str
        The provider's user id.
    avatar_hash : str or None
        The avatar hash from the profile, ``None`` if unset.
    cdn_url : str
        CDN base URL.

    Returns
    -------
    str
        ``{cdn}/avatars/{id}/{hash}.png``, or the default avatar URL.
    """
    base = cdn_url.rstrip("/")
    if avatar_hash:
        return f"{base}/avatars/{user_id}/{avatar_hash}.png"
    try:
        index = (int(user_id) >> 22) % _DEFAULT_AVATAR_COUNT
    except ValueError:
        index = 0
    return f"{base}/embed/avatars/{index}.png"


class ProfileFetcher:
    """Resolves the authenticated identity with an access token.

    Parameters
    ----------
    userinfo_url : str
        The provider's identity endpoint.
    cdn_url : str
        Base URL of the avatar CDN.
    http_client : httpx.AsyncClient, optional
        Client to use; created lazily when omitted.
    timeout : float
        Request timeout in seconds (default ``10``).
    """

    def __init__(
        self,
        userinfo_url: str,
        cdn_url: str = DISCORD_CDN_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the profile fetcher."""
        self.userinfo_url = userinfo_url
        self.cdn_url = cdn_url
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def fetch_profile(self, access_token: str) -> UserProfile:
        """Fetch the profile of the token's owner.

        Raises
        ------
        NetworkError
            If the request could not be sent or answered.
        ProfileFetchError
            If the provider answered with a non-2xx status.
        MalformedProfileResponse
            If the body is not a usable profile.
        """
        client = await self._get_client()
        try:
            resp = await client.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            msg = f"profile request failed: {exc}"
            raise NetworkError(msg) from exc

        if not resp.is_success:
            msg = "failed to get user info"
            raise ProfileFetchError(msg, status_code=resp.status_code, body=_response_body(resp))

        try:
            info = UserInfo.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            msg = f"malformed profile response: {exc}"
            raise MalformedProfileResponse(msg) from exc

        return UserProfile(
            id=info.id,
            username=info.username,
            avatar_url=avatar_url(info.id, info.avatar, self.cdn_url),
        )
