"""Loopback HTTP listener for the OAuth2 redirect.

Binds a fixed port on 127.0.0.1, serves a small HTML page to the browser
and forwards every request on the callback path, as a full URL, to an
asyncio queue owned by the listener. Validation happens in the redirect
handler on the event loop, not here.

Uses only stdlib (http.server, threading) for the HTTP side.
"""

# pylint: disable=logging-too-many-args,C0103,W0212

from __future__ import annotations

import asyncio
import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlsplit

from ..config import LOOPBACK_HOST
from ..exceptions import ListenerStartError
from ..log import redact_url


logger = logging.getLogger("loopback_oauth.auth")

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title>
<style>
  body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }}
  .card {{ text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }}
  h1 {{ font-size: 1.5rem; margin-bottom: 0.5rem; }}
  p {{ color: #666; }}
</style></head>
<body><div class="card">
  <h1>{heading}</h1>
  <p>{message}</p>
</div></body></html>"""

_RECEIVED_HTML = _PAGE.format(
    title="Authentication Received",
    heading="Authentication received",
    message="You can close this window.",
)

_WAITING_HTML = _PAGE.format(
    title="Waiting for Authentication",
    heading="Waiting for authentication&hellip;",
    message="Please complete the login in the browser window.",
)


def _error_html(error: str) -> str:
    return _PAGE.format(
        title="Authentication Error",
        heading="Authentication failed",
        message=html.escape(error, quote=True),
    )


class RedirectListener:
    """Single-use loopback listener for capturing the OAuth2 redirect.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Fixed port registered with the provider. ``0`` picks a free port,
        which is only useful in tests since providers match redirect URIs
        exactly.
    callback_path : str
        Path on which redirects are accepted (default ``"/callback"``).
    """

    def __init__(
        self,
        host: str = LOOPBACK_HOST,
        port: int = 0,
        callback_path: str = "/callback",
    ) -> None:
        """Initialize the listener."""
        self._host = host
        self._port = port
        self._callback_path = callback_path
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._actual_port: int = 0
        self.urls: asyncio.Queue[str] = asyncio.Queue()

    @property
    def port(self) -> int:
        """The bound port (``0`` before ``start``)."""
        return self._actual_port

    @property
    def redirect_uri(self) -> str:
        """The redirect URI served by this listener."""
        return f"http://{self._host}:{self._actual_port}{self._callback_path}"

    @property
    def running(self) -> bool:
        """Whether the HTTP thread is serving."""
        return self._thread is not None and self._thread.is_alive()

    def _deliver(self, url: str) -> None:
        """Hand ``url`` to the event loop. Called on the HTTP thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Redirect dropped, event loop is gone: %s", redact_url(url))
            return
        loop.call_soon_threadsafe(self.urls.put_nowait, url)

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> int:
        """Bind the port and serve on a daemon thread.

        Parameters
        ----------
        loop : asyncio.AbstractEventLoop, optional
            Loop that receives redirect URLs (default: the running loop).

        Returns
        -------
        int
            The bound port.

        Raises
        ------
        ListenerStartError
            If the port cannot be bound.
        """
        self._loop = loop or asyncio.get_running_loop()
        listener = self

        class _RedirectRequestHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth2 redirects."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlsplit(self.path)

                if parsed.path == listener._callback_path:
                    host_header = self.headers.get("Host") or f"{listener._host}:{listener._actual_port}"
                    listener._deliver(f"http://{host_header}{self.path}")

                    params = parse_qs(parsed.query)
                    if "error" in params:
                        error = (params.get("error_description") or params["error"])[0]
                        self._send_html(_error_html(error))
                    else:
                        self._send_html(_RECEIVED_HTML)
                elif parsed.path == "/":
                    self._send_html(_WAITING_HTML)
                else:
                    self.send_error(404)

            def _send_html(self, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.send_header("Referrer-Policy", "no-referrer")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Route HTTP server logging to the package logger."""
                if args:
                    logger.debug("Redirect listener: %s", redact_url(str(args[0] % args[1:])))

        try:
            self._server = HTTPServer((self._host, self._port), _RedirectRequestHandler)
        except OSError as exc:
            msg = f"Cannot listen on {self._host}:{self._port}: {exc}"
            raise ListenerStartError(msg, host=self._host, port=self._port) from exc
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name=f"redirect-listener-{self._actual_port}",
            daemon=True,
        )
        self._thread.start()

        logger.debug("Redirect listener started on %s", self.redirect_uri)
        return self._actual_port

    def stop(self) -> None:
        """Shut down the server and release the port. Idempotent."""
        server, self._server = self._server, None
        if server is not None:
            server.shutdown()
            server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None
        logger.debug("Redirect listener on port %s stopped", self._actual_port)
