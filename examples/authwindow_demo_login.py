"""Demo: Keycloak sign-in from a native script with authwindow.

Demonstrates the documented session patterns:

- ``LoopbackChannel`` as the redirect channel for hosts without a browser view
- ``configure()`` for the process-wide redirect targets
- ``Session.login()`` and the ``authenticated`` / ``logout`` / ``error`` callbacks
- ``Session.logout()`` for session teardown

Setup
-----
1. Register a public client in your Keycloak realm.
2. Allow ``http://127.0.0.1:8765/callback`` and ``http://127.0.0.1:8765/logout``
   as redirect URIs.
3. Export the realm and client::

       export AUTHWINDOW_DEMO_REALM="https://sso.example.com/auth/realms/demo"
       export AUTHWINDOW_DEMO_CLIENT_ID="desktop-demo"

4. Run::

       python examples/authwindow_demo_login.py
"""

from __future__ import annotations

import asyncio
import os
import sys

from typing import Any

from authwindow import LoopbackChannel, Session, SessionConfig, configure, enable_debug


REALM = os.environ.get("AUTHWINDOW_DEMO_REALM", "")
CLIENT_ID = os.environ.get("AUTHWINDOW_DEMO_CLIENT_ID", "")


async def main() -> int:
    """Log in, print the profile and log out again."""
    if not REALM or not CLIENT_ID:
        print("Set AUTHWINDOW_DEMO_REALM and AUTHWINDOW_DEMO_CLIENT_ID first.")
        return 1

    if "--debug" in sys.argv:
        enable_debug()

    channel = LoopbackChannel(port=8765)
    channel.start()
    configure(
        provider_url=REALM,
        redirect_uri=channel.redirect_uri,
        redirect_uri_logout=channel.logout_redirect_uri,
    )

    done: asyncio.Future[dict[str, Any] | None] = asyncio.get_running_loop().create_future()

    def on_authenticated(identity: dict[str, Any] | None, session: Session) -> None:
        if not done.done():
            done.set_result(identity)

    def on_error(kind: Any) -> None:
        if not done.done():
            done.set_exception(RuntimeError(f"Sign-in failed: {kind}"))

    session = Session("demo", SessionConfig(client_id=CLIENT_ID), channel=channel)
    session.on("authenticated", on_authenticated)
    session.on("error", on_error)
    session.on("logout", lambda: print("Signed out."))

    try:
        await session.login()
        print("Complete the sign-in in your browser...")
        identity = await asyncio.wait_for(done, timeout=300)
        print(f"Signed in as {session.email or identity}")
        print(f"Token refresh every {session.expiry_ms} ms")

        profile = await session.get_userinfo()
        for key, value in sorted(profile.items()):
            print(f"  {key}: {value}")

        await session.logout()
    finally:
        await session.aclose()
        await channel.aclose()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
