"""Ephemeral localhost HTTP server acting as the redirect target.

Used by :class:`~authwindow.auth.channel.LoopbackChannel` in native hosts:
the provider redirects the browser (or a hidden navigation) here, the
server parses the request URL per the redirect-target contract and hands
the resulting message to a sink, then serves a small HTML page.

Uses only stdlib (http.server, threading, urllib.parse).
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from .redirect import RedirectDelivery, build_redirect_message, delivery_for


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("authwindow.auth")

FRAME_HEADER = "X-Authwindow-Frame"

CALLBACK_PATH = "/callback"
LOGOUT_PATH = "/logout"

_SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication Complete</title>
<style>
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  p { color: #666; }
</style></head>
<body><div class="card">
  <h1>&#x2705; Authentication Complete</h1>
  <p>You can close this window.</p>
</div></body></html>"""

_LOGOUT_HTML = """<!DOCTYPE html>
<html>
<head><title>Signed Out</title></head>
<body><p>You have been signed out. You can close this window.</p></body></html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication Error</title></head>
<body><h1>&#x274C; Authentication Failed</h1><p>{error}</p></body></html>"""


class RedirectServer:
    """Loopback HTTP server receiving OAuth2 redirects.

    Parameters
    ----------
    sink : callable
        Invoked on the server thread as ``sink(message, delivery)`` for
        every redirect received on the callback or logout path.
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    """

    def __init__(
        self,
        sink: Callable[[dict[str, Any], RedirectDelivery], None],
        host: str = "127.0.0.1",
        port: int = 0,
    ) -> None:
        """Initialize the redirect server."""
        self._sink = sink
        self._host = host
        self._port = port
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._actual_port: int = 0

    @property
    def origin(self) -> str:
        """Origin of the server (e.g. ``http://127.0.0.1:54321``)."""
        return f"http://{self._host}:{self._actual_port}"

    @property
    def redirect_uri(self) -> str:
        """Login redirect target served by this server."""
        return self.origin + CALLBACK_PATH

    @property
    def logout_redirect_uri(self) -> str:
        """Logout redirect target served by this server."""
        return self.origin + LOGOUT_PATH

    @property
    def running(self) -> bool:
        """Whether the server thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> str:
        """Start the server on a daemon thread.

        Returns
        -------
        str
            The server origin.
        """
        server_ref = self

        class _RedirectHandler(BaseHTTPRequestHandler):
            """HTTP request handler for redirect targets."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path in (CALLBACK_PATH, LOGOUT_PATH):
                    message = build_redirect_message(server_ref.origin + self.path)
                    opened_as_popup = self.headers.get(FRAME_HEADER) is None
                    delivery = delivery_for(opened_as_popup, server_ref.origin)
                    try:
                        server_ref._sink(message, delivery)
                    except Exception:
                        logger.exception("Redirect sink failed")

                    if message.get("error"):
                        safe_msg = html.escape(str(message["error"]), quote=True)
                        self._send_html(_ERROR_HTML.format(error=safe_msg))
                    elif parsed.path == LOGOUT_PATH:
                        self._send_html(_LOGOUT_HTML)
                    else:
                        self._send_html(_SUCCESS_HTML)
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
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the authwindow logger."""
                if args:
                    logger.debug("Redirect server: %s", args[0] % args[1:])

        self._server = HTTPServer((self._host, self._port), _RedirectHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Redirect server started on %s", self.origin)
        return self.origin

    def stop(self) -> None:
        """Shut the server down and join its thread."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
