"""Shared types for authwindow sessions.

Enumerations for methods and states, the cross-context message shape,
and the discriminated result produced when a method strategy maps a
provider response.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class AuthMethod(str, Enum):
    """How a session trusts its backend.

    ``public`` talks to the provider directly with a bearer token,
    ``backend-token`` delegates the exchange to a trusted backend that
    returns a bearer token, ``backend-credentials`` and ``apache`` rely
    on a cookie session carried by the HTTP client.
    """

    PUBLIC = "public"
    BACKEND_TOKEN = "backend-token"
    BACKEND_CREDENTIALS = "backend-credentials"
    APACHE = "apache"


class ProviderKind(str, Enum):
    """How the provider endpoints were obtained."""

    FIXED_TEMPLATE = "fixed-template"
    DISCOVERED = "discovered"
    EXPLICIT = "explicit"


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    UNAUTHENTICATED = "unauthenticated"
    EXCHANGING = "exchanging"
    AUTHENTICATED = "authenticated"
    DESTROYED = "destroyed"


class ErrorKind(str, Enum):
    """Error names delivered to ``error`` callbacks."""

    INVALID_PROVIDER_METADATA = "INVALID_PROVIDER_METADATA"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    NO_USERINFO_URL = "NO_USERINFO_URL"
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    REFRESH_FAILED = "REFRESH_FAILED"
    USERINFO_FAILED = "USERINFO_FAILED"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"


@dataclass(frozen=True)
class PopupDimensions:
    """Size of a visible authentication popup."""

    width: int = 850
    height: int = 750


@dataclass(frozen=True)
class ChannelMessage:
    """A message posted by a redirect target.

    Attributes
    ----------
    origin : str
        Origin of the window that posted the message.
    data : dict[str, Any]
        The posted payload. Treated as untrusted input.
    """

    origin: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenGrant:
    """A response that carried a bearer credential.

    Attributes
    ----------
    token : str
        The access token (``token`` or ``access_token``).
    refresh_token : str
        The refresh token, or ``token`` when the provider does not
        issue a separate one.
    id_token : str or None
        An embedded identity token (JWT), when present.
    expires_in : int or None
        Lifetime in seconds advertised by the response.
    raw : dict[str, Any]
        The raw response.
    """

    token: str
    refresh_token: str
    id_token: str | None = None
    expires_in: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AmbientIdentity:
    """A response that resolved the user directly (cookie session)."""

    identity: dict[str, Any]
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NoCredentials:
    """A response carrying neither a credential nor an identity."""

    raw: dict[str, Any] = field(default_factory=dict)


ExchangeResult = Union[TokenGrant, AmbientIdentity, NoCredentials]
