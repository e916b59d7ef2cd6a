"""Single-slot store for the in-flight authorization session."""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from ..types import PendingSession


logger = logging.getLogger("loopback_oauth.auth")


class SessionStore:
    """Holds at most one pending session, consumable exactly once.

    Safe to use from the listener thread and from the event loop. The lock
    only guards the slot swap and is never held across I/O.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._lock = threading.Lock()
        self._session: PendingSession | None = None

    def put(self, session: PendingSession) -> None:
        """Store ``session``, discarding any unconsumed predecessor."""
        with self._lock:
            previous, self._session = self._session, session
        if previous is not None:
            logger.debug("Superseded unconsumed session for %s", previous.redirect_uri)

    def take_if_present(self) -> PendingSession | None:
        """Atomically remove and return the pending session, if any."""
        with self._lock:
            session, self._session = self._session, None
        return session

    @property
    def has_pending(self) -> bool:
        """Whether a session is waiting for its redirect."""
        with self._lock:
            return self._session is not None
