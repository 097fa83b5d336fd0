"""Unit tests for the loopback redirect channel."""

from __future__ import annotations

import asyncio

from urllib.request import urlopen

import httpx
import pytest

from authwindow.auth.channel import LoopbackChannel, RedirectChannel
from authwindow.types import PopupDimensions


class TestLoopbackChannel:
    """Tests for LoopbackChannel."""

    def test_satisfies_protocol(self) -> None:
        """LoopbackChannel implements RedirectChannel."""
        assert isinstance(LoopbackChannel(), RedirectChannel)

    @pytest.mark.asyncio
    async def test_popup_flow(self) -> None:
        """A browser redirect reaches the handler and closes the popup."""
        opened = []
        channel = LoopbackChannel(open_browser=opened.append)
        channel.start()
        received = asyncio.Queue()

        async def handler(message) -> None:
            await received.put(message)

        channel.on_message(handler)
        try:
            handle = channel.open("https://idp.example.com/authorize", PopupDimensions())
            assert opened == ["https://idp.example.com/authorize"]
            assert not channel.is_closed(handle)

            url = f"{channel.redirect_uri}?code=abc&state=xyz"
            await asyncio.to_thread(lambda: urlopen(url, timeout=5).read())
            message = await asyncio.wait_for(received.get(), timeout=5)

            assert message.origin == channel.redirect_uri.rsplit("/", 1)[0]
            assert message.data["code"] == "abc"
            assert message.data["state"] == "xyz"
            assert channel.is_closed(handle)
        finally:
            await channel.aclose()

    @pytest.mark.asyncio
    async def test_hidden_navigation(self) -> None:
        """A hidden navigation follows redirects to the redirect target."""
        received = asyncio.Queue()
        loopback = httpx.AsyncHTTPTransport()

        async def handler(message) -> None:
            await received.put(message)

        async def route(request: httpx.Request) -> httpx.Response:
            if request.url.host == "idp.example.com":
                location = f"{channel.redirect_uri}?code=silent&state=s"
                return httpx.Response(302, headers={"Location": location})
            return await loopback.handle_async_request(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(route))
        channel = LoopbackChannel(client=client)
        channel.start()
        channel.on_message(handler)
        try:
            handle = channel.open_hidden("https://idp.example.com/authorize")
            message = await asyncio.wait_for(received.get(), timeout=5)
            assert message.data["code"] == "silent"
            assert not channel.is_closed(handle)
            channel.close(handle)
            assert channel.is_closed(handle)
        finally:
            await channel.aclose()
            await client.aclose()
            await loopback.aclose()

    @pytest.mark.asyncio
    async def test_off_message(self) -> None:
        """Unregistered handlers receive nothing."""
        channel = LoopbackChannel()
        channel.start()
        calls = []

        async def handler(message) -> None:
            calls.append(message)

        channel.on_message(handler)
        channel.on_message(handler)
        channel.off_message(handler)
        channel.off_message(handler)
        try:
            url = f"{channel.redirect_uri}?code=abc&state=xyz"
            await asyncio.to_thread(lambda: urlopen(url, timeout=5).read())
            await asyncio.sleep(0.05)
            assert calls == []
        finally:
            await channel.aclose()
