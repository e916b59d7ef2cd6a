"""Event emitter connecting the login flow to the surrounding application.

The flow reports progress through three events:

- ``oauth:debug`` with a free-text diagnostic string
- ``oauth:error`` with the failure reason string
- ``oauth:done`` with a :class:`~loopback_oauth.types.DonePayload`

Handlers may be sync or async. Handler errors are logged and never
propagate into the flow.
"""

from __future__ import annotations

import asyncio
import inspect
import re

from collections.abc import Awaitable, Callable
from typing import Any

from .log import debug, log_callback_error, warn


EVENT_DEBUG = "oauth:debug"
EVENT_ERROR = "oauth:error"
EVENT_DONE = "oauth:done"

EVENT_NAMESPACE_PATTERN = re.compile(r"^[a-z][a-z0-9]*:[a-z][a-z0-9-]*$")

# Type alias for handler functions (sync or async)
EventHandler = Callable[[Any], None] | Callable[[Any], Awaitable[None]]


def validate_event_type(event_type: str) -> bool:
    """Validate event type matches namespace:event-name pattern or is wildcard."""
    if event_type == "*":
        return True
    return bool(EVENT_NAMESPACE_PATTERN.match(event_type))


class EventEmitter:
    """Dispatches flow events to registered handlers.

    One emitter is normally shared by the application for the process
    lifetime and passed to the login flow.
    """

    def __init__(self) -> None:
        """Initialize the emitter."""
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pending: set[asyncio.Task[None]] = set()

    def on(self, event_type: str, handler: EventHandler) -> bool:
        """Register a handler.

        Parameters
        ----------
        event_type : str
            The event type (``namespace:event-name``, ``namespace:*`` or ``*``).
        handler : EventHandler
            Called with the event payload.

        Returns
        -------
        bool
            True if registered, False if the event type is invalid.
        """
        if not validate_event_type(event_type) and not event_type.endswith(":*"):
            warn(
                f"Invalid event type '{event_type}'. "
                "Must match 'namespace:event-name' pattern or '*'."
            )
            return False
        self._handlers.setdefault(event_type, []).append(handler)
        return True

    def off(self, event_type: str, handler: EventHandler | None = None) -> bool:
        """Unregister one handler, or every handler for ``event_type``.

        Returns
        -------
        bool
            True if any handler was removed.
        """
        if event_type not in self._handlers:
            return False
        if handler is None:
            del self._handlers[event_type]
            return True
        try:
            self._handlers[event_type].remove(handler)
        except ValueError:
            return False
        return True

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()

    def _collect(self, event_type: str) -> list[EventHandler]:
        handlers = list(self._handlers.get(event_type, []))
        namespace = event_type.split(":", 1)[0]
        handlers.extend(self._handlers.get(f"{namespace}:*", []))
        handlers.extend(self._handlers.get("*", []))
        return handlers

    def emit(self, event_type: str, payload: Any = None) -> int:
        """Dispatch ``payload`` to every matching handler.

        Sync handlers run immediately; async handlers are scheduled on the
        running event loop.

        Parameters
        ----------
        event_type : str
            The event being emitted.
        payload : Any
            The event payload.

        Returns
        -------
        int
            Number of handlers invoked or scheduled.
        """
        if event_type == EVENT_ERROR:
            warn(f"{event_type}: {payload}")
        else:
            debug(f"{event_type}: {payload}")

        count = 0
        for handler in self._collect(event_type):
            if inspect.iscoroutinefunction(handler):
                if self._schedule(handler, payload, event_type):
                    count += 1
                continue
            try:
                handler(payload)
            except Exception as exc:  # noqa: BLE001
                log_callback_error(event_type, exc)
                continue
            count += 1
        return count

    def _schedule(self, handler: EventHandler, payload: Any, event_type: str) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            warn(f"No running event loop for async handler of '{event_type}'")
            return False

        async def _run() -> None:
            try:
                await handler(payload)  # type: ignore[misc]
            except Exception as exc:  # noqa: BLE001
                log_callback_error(event_type, exc)

        task = loop.create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
