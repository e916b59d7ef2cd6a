"""PKCE (Proof Key for Code Exchange) and state generation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets
import string

from base64 import urlsafe_b64encode
from dataclasses import dataclass

from ..exceptions import ConfigurationError


_ALPHANUMERIC = string.ascii_letters + string.digits

VERIFIER_LENGTH = 64
STATE_LENGTH = 32

# RFC 7636 section 4.1 allows 43..128; login verifiers are at least 64
_MIN_VERIFIER_LENGTH = VERIFIER_LENGTH
_MAX_VERIFIER_LENGTH = 128


def _random_alphanumeric(length: int) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def compute_challenge(verifier: str) -> str:
    """Return ``base64url_nopad(sha256(verifier))``."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state(length: int = STATE_LENGTH) -> str:
    """Generate an unpredictable single-use anti-CSRF state token.

    Parameters
    ----------
    length : int
        Number of alphanumeric characters (default 32).

    Returns
    -------
    str
        The state token.
    """
    if length < STATE_LENGTH:
        msg = f"state must be at least {STATE_LENGTH} characters, got {length}"
        raise ConfigurationError(msg)
    return _random_alphanumeric(length)


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = VERIFIER_LENGTH) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of alphanumeric characters in the verifier (default 64).

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.

        Raises
        ------
        ConfigurationError
            If ``length`` is outside the 64-128 range.
        """
        if not _MIN_VERIFIER_LENGTH <= length <= _MAX_VERIFIER_LENGTH:
            msg = (
                f"PKCE verifier length must be between {_MIN_VERIFIER_LENGTH} "
                f"and {_MAX_VERIFIER_LENGTH}, got {length}"
            )
            raise ConfigurationError(msg)
        return cls.from_verifier(_random_alphanumeric(length))

    @classmethod
    def from_verifier(cls, verifier: str) -> PKCEChallenge:
        """Build the pair for an existing verifier."""
        return cls(verifier=verifier, challenge=compute_challenge(verifier))

    def __repr__(self) -> str:
        return f"PKCEChallenge(challenge={self.challenge!r}, method={self.method!r})"


def generate_pkce() -> tuple[str, str, str]:
    """Generate the ``(verifier, challenge, state)`` triple for one login."""
    pkce = PKCEChallenge.generate()
    return pkce.verifier, pkce.challenge, generate_state()
