"""Cross-context message channel.

A session never touches windows, frames or the page's message bus
directly. It talks to a :class:`RedirectChannel`, an injected capability
that opens popups and hidden frames and delivers the messages redirect
targets post back.

:class:`LoopbackChannel` is the channel for native hosts: the system
browser plays the popup, a background HTTP navigation plays the hidden
frame and a loopback :class:`~authwindow.auth.callback_server.RedirectServer`
plays the redirect target.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import threading
import webbrowser

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

import httpx

from ..types import ChannelMessage
from .callback_server import FRAME_HEADER, RedirectServer


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..types import PopupDimensions
    from .redirect import RedirectDelivery

    MessageHandler = Callable[[ChannelMessage], Awaitable[None]]


logger = logging.getLogger("authwindow.auth")


@runtime_checkable
class RedirectChannel(Protocol):
    """Capability used by a session to reach redirect targets.

    Handles returned by ``open`` and ``open_hidden`` are opaque to the
    session; it only hands them back to ``close`` and ``is_closed``.
    """

    def open(self, url: str, dimensions: PopupDimensions) -> Any:
        """Open a visible popup at ``url`` and return its handle."""

    def open_hidden(self, url: str) -> Any:
        """Load ``url`` in an invisible frame and return its handle."""

    def close(self, handle: Any) -> None:
        """Close a popup or remove a frame."""

    def is_closed(self, handle: Any) -> bool:
        """Whether the popup or frame behind ``handle`` is gone."""

    def on_message(self, handler: MessageHandler) -> None:
        """Register a coroutine function receiving posted messages."""

    def off_message(self, handler: MessageHandler) -> None:
        """Unregister a handler added with ``on_message``."""


@dataclass
class WindowHandle:
    """A popup or hidden frame opened by :class:`LoopbackChannel`."""

    handle_id: int
    url: str
    kind: Literal["popup", "frame"]
    closed: bool = False
    task: asyncio.Task[None] | None = None


class LoopbackChannel:
    """Redirect channel for hosts without an embedded browser.

    Parameters
    ----------
    host : str
        Bind address of the redirect server.
    port : int
        Port of the redirect server (``0`` for auto-assign).
    open_browser : callable, optional
        Opens a visible flow. Defaults to :func:`webbrowser.open`.
    client : httpx.AsyncClient, optional
        Client used for hidden-frame navigations. Pass the session's
        ambient client so the navigation carries its cookie session.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        open_browser: Callable[[str], Any] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the channel."""
        self._server = RedirectServer(self._deliver, host=host, port=port)
        self._open_browser = open_browser or webbrowser.open
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)
        self._handles: list[WindowHandle] = []
        self._handlers: list[MessageHandler] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()

    @property
    def redirect_uri(self) -> str:
        """Login redirect target; configure ``AuthSettings.redirect_uri`` with it."""
        return self._server.redirect_uri

    @property
    def logout_redirect_uri(self) -> str:
        """Logout redirect target."""
        return self._server.logout_redirect_uri

    def start(self) -> str:
        """Start the redirect server and return its origin."""
        if not self._server.running:
            self._server.start()
        return self._server.origin

    def open(self, url: str, dimensions: PopupDimensions) -> WindowHandle:
        """Open ``url`` in the system browser.

        Browsers ignore the requested size; it is only logged.
        """
        handle = WindowHandle(handle_id=next(self._ids), url=url, kind="popup")
        with self._lock:
            self._handles.append(handle)
        logger.debug(
            "Opening popup %d (%dx%d)", handle.handle_id, dimensions.width, dimensions.height
        )
        self._open_browser(url)
        return handle

    def open_hidden(self, url: str) -> WindowHandle:
        """Navigate to ``url`` in the background, following redirects."""
        handle = WindowHandle(handle_id=next(self._ids), url=url, kind="frame")
        with self._lock:
            self._handles.append(handle)
        handle.task = asyncio.get_running_loop().create_task(self._navigate(handle))
        return handle

    def close(self, handle: WindowHandle) -> None:
        """Mark ``handle`` closed and stop any navigation behind it."""
        handle.closed = True
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        with self._lock:
            if handle in self._handles:
                self._handles.remove(handle)

    def is_closed(self, handle: WindowHandle) -> bool:
        """Whether ``handle`` was closed or its redirect already arrived."""
        return handle.closed

    def on_message(self, handler: MessageHandler) -> None:
        """Register ``handler`` on the running event loop."""
        self._loop = asyncio.get_running_loop()
        if handler not in self._handlers:
            self._handlers.append(handler)

    def off_message(self, handler: MessageHandler) -> None:
        """Unregister ``handler``."""
        with contextlib.suppress(ValueError):
            self._handlers.remove(handler)

    async def aclose(self) -> None:
        """Stop the server, cancel navigations and close an owned client."""
        for handle in list(self._handles):
            self.close(handle)
        await asyncio.to_thread(self._server.stop)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _navigate(self, handle: WindowHandle) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        try:
            await self._client.get(handle.url, headers={FRAME_HEADER: "1"}, follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("Hidden navigation %d failed: %s", handle.handle_id, exc)

    def _deliver(self, data: dict[str, Any], delivery: RedirectDelivery) -> None:
        """Forward a redirect message to the handlers (server thread)."""
        if delivery.close_after:
            with self._lock:
                popup = next((h for h in self._handles if h.kind == "popup"), None)
                if popup is not None:
                    popup.closed = True
                    self._handles.remove(popup)
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Redirect message dropped: no listener registered")
            return
        message = ChannelMessage(origin=self._server.origin, data=data)
        for handler in list(self._handlers):
            asyncio.run_coroutine_threadsafe(handler(message), loop)
