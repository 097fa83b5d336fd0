"""Pytest configuration and fixtures."""

from __future__ import annotations

import json

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import jwt
import pytest

from authwindow.config import AuthSettings, reset_settings
from authwindow.types import ChannelMessage


if TYPE_CHECKING:
    from collections.abc import Callable, Generator


PROVIDER_URL = "https://sso.example.com/auth/realms/demo"
REDIRECT_URI = "http://localhost:8080/callback"


@pytest.fixture(autouse=True)
def clean_settings() -> Generator[None, None, None]:
    """Unlock the process-wide settings around every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> AuthSettings:
    """Settings with a provider template and fast popup polling."""
    return AuthSettings(
        provider_url=PROVIDER_URL,
        redirect_uri=REDIRECT_URI,
        popup_poll_interval=0.01,
    )


def _encode_jwt(claims: dict[str, Any]) -> str:
    return jwt.encode(claims, "authwindow-test-signing-key-0123456789", algorithm="HS256")


@pytest.fixture
def make_jwt() -> Callable[[dict[str, Any]], str]:
    """Encode claims as an HS256 JWT (the signature is never checked)."""
    return _encode_jwt


# ── Fake redirect channel ───────────────────────────────────────────


@dataclass
class FakeHandle:
    """Handle returned by :class:`FakeChannel`."""

    url: str
    kind: str
    closed: bool = False


@dataclass
class FakeChannel:
    """In-memory redirect channel recording every call."""

    opened: list[FakeHandle] = field(default_factory=list)
    hidden: list[FakeHandle] = field(default_factory=list)
    closed: list[FakeHandle] = field(default_factory=list)
    handlers: list[Any] = field(default_factory=list)
    dimensions: list[Any] = field(default_factory=list)
    close_popups_immediately: bool = True

    def open(self, url: str, dimensions: Any) -> FakeHandle:
        handle = FakeHandle(url=url, kind="popup", closed=False)
        self.opened.append(handle)
        self.dimensions.append(dimensions)
        return handle

    def open_hidden(self, url: str) -> FakeHandle:
        handle = FakeHandle(url=url, kind="frame")
        self.hidden.append(handle)
        return handle

    def close(self, handle: FakeHandle) -> None:
        handle.closed = True
        self.closed.append(handle)

    def is_closed(self, handle: FakeHandle) -> bool:
        if self.close_popups_immediately:
            handle.closed = True
        return handle.closed

    def on_message(self, handler: Any) -> None:
        self.handlers.append(handler)

    def off_message(self, handler: Any) -> None:
        self.handlers.remove(handler)

    async def post(self, data: dict[str, Any], origin: str = "http://localhost:8080") -> None:
        """Deliver a message to every registered handler."""
        message = ChannelMessage(origin=origin, data=data)
        for handler in list(self.handlers):
            await handler(message)


@pytest.fixture
def channel() -> FakeChannel:
    """A fresh fake channel."""
    return FakeChannel()


# ── HTTP routing ────────────────────────────────────────────────────


class Router:
    """Route table for ``httpx.MockTransport`` that records requests.

    Routes map ``(method, url)`` to a JSON body, an ``httpx.Response`` or a
    callable taking the request.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, response: Any) -> None:
        self.routes[(method, url)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?", 1)[0]
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        if callable(route):
            route = route(request)
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @staticmethod
    def form_of(request: httpx.Request) -> dict[str, str]:
        """Decode a form-encoded request body."""
        return dict(httpx.QueryParams(request.content.decode("utf-8")))

    @staticmethod
    def json_of(request: httpx.Request) -> Any:
        """Decode a JSON request body."""
        return json.loads(request.content)

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        """Requests recorded for ``method`` and ``url`` (query ignored)."""
        return [
            r
            for r in self.requests
            if r.method == method and str(r.url).split("?", 1)[0] == url
        ]


@pytest.fixture
def router() -> Router:
    """A fresh route table."""
    return Router()


@pytest.fixture
def recorder() -> Callable[[Any], dict[str, list[Any]]]:
    """Factory wiring recording callbacks onto a session."""

    def _attach(session: Any) -> dict[str, list[Any]]:
        events: dict[str, list[Any]] = {"authenticated": [], "logout": [], "error": []}
        session.on("authenticated", lambda identity, s: events["authenticated"].append(identity))
        session.on("logout", lambda: events["logout"].append(True))
        session.on("error", lambda kind: events["error"].append(kind))
        return events

    return _attach
