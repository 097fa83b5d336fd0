"""authwindow - client-side OAuth2 / OIDC sessions.

A :class:`Session` logs a user in through a popup or a hidden frame,
exchanges the authorization result according to one of four methods and
keeps the credential fresh with a single refresh timer.
"""

from __future__ import annotations

from .auth import LoopbackChannel, RedirectChannel, Session
from .config import AuthSettings, SessionConfig, configure, get_settings, reset_settings
from .exceptions import (
    AuthenticationError,
    AuthWindowException,
    ConfigurationError,
    EndpointNotResolvedError,
    NotAuthenticatedError,
    NoUserinfoUrlError,
    ProviderMetadataError,
    TokenError,
    TokenRefreshError,
    UserinfoError,
)
from .log import enable_debug, set_level
from .types import (
    AmbientIdentity,
    AuthMethod,
    ChannelMessage,
    ErrorKind,
    NoCredentials,
    PopupDimensions,
    ProviderKind,
    SessionState,
    TokenGrant,
)


__version__ = "0.1.0"

__all__ = [
    "AmbientIdentity",
    "AuthMethod",
    "AuthSettings",
    "AuthWindowException",
    "AuthenticationError",
    "ChannelMessage",
    "ConfigurationError",
    "EndpointNotResolvedError",
    "ErrorKind",
    "LoopbackChannel",
    "NoCredentials",
    "NoUserinfoUrlError",
    "NotAuthenticatedError",
    "PopupDimensions",
    "ProviderKind",
    "ProviderMetadataError",
    "RedirectChannel",
    "Session",
    "SessionConfig",
    "SessionState",
    "TokenError",
    "TokenGrant",
    "TokenRefreshError",
    "UserinfoError",
    "__version__",
    "configure",
    "enable_debug",
    "get_settings",
    "reset_settings",
    "set_level",
]
