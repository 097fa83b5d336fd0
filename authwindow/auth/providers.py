"""Provider endpoint resolution.

Endpoints come from one of three places: a fixed Keycloak-style template
keyed by a realm base URL, an OIDC discovery document, or explicit
configuration. Explicit values always win.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any

import httpx

from ..exceptions import ProviderMetadataError
from ..types import ProviderKind


if TYPE_CHECKING:
    from ..config import AuthSettings, SessionConfig


logger = logging.getLogger("authwindow.auth")

DISCOVERY_PATH = ".well-known/openid-configuration"

AUTH_SUFFIX = "protocol/openid-connect/auth"
TOKEN_SUFFIX = "protocol/openid-connect/token"
USERINFO_SUFFIX = "protocol/openid-connect/userinfo"
LOGOUT_SUFFIX = "protocol/openid-connect/logout"


@dataclass
class ProviderEndpoints:
    """The protocol endpoints of a provider.

    Any field may be ``None`` when the method does not need it
    (``apache`` has no token endpoint) or when resolution failed.
    """

    auth_url: str | None = None
    token_url: str | None = None
    refresh_url: str | None = None
    userinfo_url: str | None = None
    logout_url: str | None = None

    @property
    def is_resolved(self) -> bool:
        """Whether the authorize endpoint is known."""
        return bool(self.auth_url)

    def merge(self, other: ProviderEndpoints) -> None:
        """Fill unset fields from ``other``."""
        for f in fields(self):
            if getattr(self, f.name) is None:
                setattr(self, f.name, getattr(other, f.name))


def normalize_base_url(url: str) -> str:
    """Append a trailing ``/`` to ``url`` when it has none."""
    return url if url.endswith("/") else url + "/"


def endpoints_from_template(base_url: str) -> ProviderEndpoints:
    """Build endpoints for a Keycloak-style realm URL.

    No request is made and the URL is not validated; a malformed base
    surfaces later as a failed request.

    Parameters
    ----------
    base_url : str
        Realm URL, e.g. ``https://sso.example.com/auth/realms/demo``.

    Returns
    -------
    ProviderEndpoints
        Endpoints built by suffix concatenation. Refresh uses the token
        endpoint.
    """
    base = normalize_base_url(base_url)
    token_url = base + TOKEN_SUFFIX
    return ProviderEndpoints(
        auth_url=base + AUTH_SUFFIX,
        token_url=token_url,
        refresh_url=token_url,
        userinfo_url=base + USERINFO_SUFFIX,
        logout_url=base + LOGOUT_SUFFIX,
    )


def _optional_str(document: dict[str, Any], key: str) -> str | None:
    value = document.get(key)
    return value if isinstance(value, str) and value else None


def endpoints_from_metadata(document: Any) -> ProviderEndpoints:
    """Map an OIDC discovery document to endpoints.

    Parameters
    ----------
    document : Any
        The decoded JSON body of the discovery response.

    Returns
    -------
    ProviderEndpoints
        Endpoints taken from the typed fields of the document.

    Raises
    ------
    ProviderMetadataError
        If the document is not an object or lacks an authorization endpoint.
    """
    if not isinstance(document, dict):
        msg = "Discovery document is not a JSON object"
        raise ProviderMetadataError(msg)
    auth_url = _optional_str(document, "authorization_endpoint")
    if auth_url is None:
        msg = "Discovery document has no authorization_endpoint"
        raise ProviderMetadataError(msg)
    token_url = _optional_str(document, "token_endpoint")
    return ProviderEndpoints(
        auth_url=auth_url,
        token_url=token_url,
        refresh_url=token_url,
        userinfo_url=_optional_str(document, "userinfo_endpoint"),
        logout_url=_optional_str(document, "end_session_endpoint"),
    )


async def discover_endpoints(client: httpx.AsyncClient, base_url: str) -> ProviderEndpoints:
    """Fetch and parse the discovery document below ``base_url``.

    Raises
    ------
    ProviderMetadataError
        On transport failure, an error status, an undecodable body or a
        malformed document.
    """
    url = normalize_base_url(base_url) + DISCOVERY_PATH
    try:
        resp = await client.get(url)
        resp.raise_for_status()
        document = resp.json()
    except httpx.HTTPStatusError as exc:
        msg = f"Discovery failed: {exc.response.status_code}"
        raise ProviderMetadataError(msg, url=url) from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        msg = f"Discovery request failed: {exc}"
        raise ProviderMetadataError(msg, url=url) from exc
    except ValueError as exc:
        msg = "Discovery response is not JSON"
        raise ProviderMetadataError(msg, url=url) from exc
    return endpoints_from_metadata(document)


class ProviderResolver:
    """Resolves the endpoints of one session.

    Parameters
    ----------
    config : SessionConfig
        The session configuration.
    settings : AuthSettings
        Process-wide settings (supplies the default template URL).
    """

    def __init__(self, config: SessionConfig, settings: AuthSettings) -> None:
        """Initialize the resolver."""
        self.config = config
        self.kind = config.provider_kind(settings)
        self._template_url = config.template_url(settings)
        self._discovery_attempted = False

    def resolve_static(self) -> ProviderEndpoints:
        """Endpoints known without a network call.

        Explicit configuration first, then the template when one applies.
        """
        endpoints = ProviderEndpoints(
            auth_url=self.config.auth_url,
            token_url=self.config.token_url,
            refresh_url=self.config.refresh_url,
            userinfo_url=self.config.userinfo_url,
            logout_url=self.config.logout_url,
        )
        if self._template_url:
            endpoints.merge(endpoints_from_template(self._template_url))
        elif endpoints.refresh_url is None:
            endpoints.refresh_url = endpoints.token_url
        return endpoints

    @property
    def needs_discovery(self) -> bool:
        """Whether a discovery fetch is still outstanding."""
        return self.kind is ProviderKind.DISCOVERED and not self._discovery_attempted

    async def resolve(self, client: httpx.AsyncClient, endpoints: ProviderEndpoints) -> None:
        """Complete ``endpoints`` from discovery.

        The discovery document is fetched at most once per resolver;
        later calls return without a request.

        Raises
        ------
        ProviderMetadataError
            If the discovery fetch failed. ``endpoints`` is left untouched.
        """
        if not self.needs_discovery:
            return
        self._discovery_attempted = True
        assert self.config.discovery_url is not None
        try:
            discovered = await discover_endpoints(client, self.config.discovery_url)
        except ProviderMetadataError as exc:
            logger.warning("OIDC discovery failed for %s: %s", self.config.discovery_url, exc)
            raise
        endpoints.merge(discovered)
        logger.debug("Discovered endpoints for %s", self.config.discovery_url)
