"""OAuth2 / OIDC session management for authwindow.

Provides endpoint resolution, the redirect-target contract, the redirect
channel abstraction, method strategies and the session state machine.
"""

from __future__ import annotations

from .callback_server import RedirectServer
from .channel import LoopbackChannel, RedirectChannel, WindowHandle
from .methods import (
    ApacheStrategy,
    BackendCredentialsStrategy,
    BackendTokenStrategy,
    MethodStrategy,
    PublicStrategy,
    strategy_for,
)
from .providers import (
    ProviderEndpoints,
    ProviderResolver,
    discover_endpoints,
    endpoints_from_metadata,
    endpoints_from_template,
)
from .redirect import (
    RedirectDelivery,
    RedirectParams,
    build_redirect_message,
    delivery_for,
    parse_redirect_url,
    render_redirect_page,
)
from .scheduler import RefreshScheduler
from .session import Session, decode_identity_token, make_correlation


__all__ = [
    "ApacheStrategy",
    "BackendCredentialsStrategy",
    "BackendTokenStrategy",
    "LoopbackChannel",
    "MethodStrategy",
    "ProviderEndpoints",
    "ProviderResolver",
    "PublicStrategy",
    "RedirectChannel",
    "RedirectDelivery",
    "RedirectParams",
    "RedirectServer",
    "RefreshScheduler",
    "Session",
    "WindowHandle",
    "build_redirect_message",
    "decode_identity_token",
    "delivery_for",
    "discover_endpoints",
    "endpoints_from_metadata",
    "endpoints_from_template",
    "make_correlation",
    "parse_redirect_url",
    "render_redirect_page",
    "strategy_for",
]
