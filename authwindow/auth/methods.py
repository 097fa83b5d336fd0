"""Method strategies.

A session trusts its backend in one of four ways. Each way is a
:class:`MethodStrategy` that owns the request shapes for code exchange,
refresh, userinfo and logout, and maps raw provider JSON into the
discriminated :data:`~authwindow.types.ExchangeResult`. The session selects
its strategy once, at construction, with :func:`strategy_for`.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import quote, urlencode

import httpx

from ..exceptions import (
    AuthenticationError,
    TokenError,
    TokenRefreshError,
    UserinfoError,
)
from ..types import (
    AmbientIdentity,
    AuthMethod,
    ChannelMessage,
    ExchangeResult,
    NoCredentials,
    TokenGrant,
)


if TYPE_CHECKING:
    from .session import Session


logger = logging.getLogger("authwindow.auth")


@dataclass(frozen=True)
class AcceptedMessage:
    """A channel message that passed validation.

    Exactly one attribute is set: ``code`` for an authorization result,
    ``identity`` for a delegated (``apache``) identity, ``error`` for a
    provider-reported failure.
    """

    code: str | None = None
    identity: dict[str, Any] | None = None
    error: str | None = None


def _expires_in(raw: dict[str, Any]) -> int | None:
    value = raw.get("expires_in")
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _identity_from(raw: Any) -> dict[str, Any] | None:
    """Extract an identity from a cookie-session response, if it has one."""
    if not isinstance(raw, dict):
        return None
    if raw.get("email"):
        return dict(raw)
    profile = raw.get("profile")
    if isinstance(profile, dict) and profile.get("email"):
        return dict(profile)
    return None


class MethodStrategy(ABC):
    """How a session exchanges, refreshes, identifies and logs out.

    Subclasses set ``method`` and implement the abstract operations.
    ``requires_probe`` marks strategies whose ``start()`` checks for an
    existing cookie session; ``ambient`` marks strategies whose credential
    carrier is the cookie jar (token sentinel ``True``).
    """

    method: ClassVar[AuthMethod]
    requires_probe: ClassVar[bool] = False
    ambient: ClassVar[bool] = False

    def authorize_url(self, session: Session) -> str:
        """Build the authorize URL with the authorization-code query.

        Raises
        ------
        EndpointNotResolvedError
            If the authorize endpoint is unknown.
        """
        base = session.require_endpoint("auth_url")
        params = {
            "redirect_uri": session.settings.redirect_uri,
            "response_type": "code",
            "client_id": session.config.client_id or "",
            "scope": "openid",
            "state": session.state,
            "nonce": session.nonce,
        }
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode(params, quote_via=quote)}"

    def interpret_message(
        self, session: Session, message: ChannelMessage
    ) -> AcceptedMessage | None:
        """Validate a posted message.

        Only a message whose ``state`` equals the session's correlation
        token is accepted; anything else returns None and must leave the
        session untouched.
        """
        data = message.data if isinstance(message.data, dict) else {}
        if data.get("state") != session.state:
            return None
        code = data.get("code")
        if isinstance(code, str) and code:
            return AcceptedMessage(code=code)
        error = data.get("error")
        if error:
            return AcceptedMessage(error=str(error))
        return None

    def map_response(self, raw: Any) -> ExchangeResult:
        """Map a token response into an :data:`ExchangeResult`.

        Recognizes ``token`` or ``access_token``, ``refresh_token``,
        ``id_token`` and ``expires_in``. A token backend may return its own
        JWT as ``token``; it then doubles as the identity token.
        """
        if not isinstance(raw, dict):
            return NoCredentials()
        token = raw.get("token") or raw.get("access_token")
        if not isinstance(token, str) or not token:
            return NoCredentials(raw=raw)
        refresh_token = raw.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            refresh_token = token
        id_token = raw.get("id_token") or raw.get("token")
        return TokenGrant(
            token=token,
            refresh_token=refresh_token,
            id_token=id_token if isinstance(id_token, str) else None,
            expires_in=_expires_in(raw),
            raw=raw,
        )

    @abstractmethod
    async def exchange_code(self, session: Session, code: str) -> ExchangeResult:
        """Exchange an authorization code for credentials.

        Raises
        ------
        TokenError
            If the exchange request fails.
        """

    @abstractmethod
    async def refresh(self, session: Session) -> ExchangeResult:
        """Refresh the token or probe the cookie session.

        Raises
        ------
        TokenRefreshError
            If the refresh request fails.
        """

    @abstractmethod
    async def logout(self, session: Session) -> None:
        """End the session at the provider or backend."""

    async def userinfo(self, session: Session) -> dict[str, Any]:
        """Fetch the user profile with the bearer token.

        Raises
        ------
        UserinfoError
            If the request fails or does not return a JSON object.
        """
        url = session.require_endpoint("userinfo_url")
        headers = {"Authorization": f"Bearer {session.token}", "Accept": "application/json"}
        raw = await self._send(
            session, "GET", url, credentials=False, error_cls=UserinfoError, headers=headers
        )
        if not isinstance(raw, dict):
            msg = "Userinfo response is not a JSON object"
            raise UserinfoError(msg, identifier=session.identifier)
        return raw

    async def _send(
        self,
        session: Session,
        method: str,
        url: str,
        *,
        credentials: bool,
        error_cls: type[AuthenticationError],
        expect_json: bool = True,
        **kwargs: Any,
    ) -> Any:
        """Issue one request and decode its JSON body.

        ``credentials`` selects the client carrying the cookie session;
        without it no cookie is sent.
        """
        client = session.http_client(credentials=credentials)
        try:
            resp = await client.request(method, url, **kwargs)
            logger.debug("%s %s returned %d", method, url, resp.status_code)
            resp.raise_for_status()
            if not expect_json:
                return None
            raw = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Request failed: {exc.response.status_code}"
            raise error_cls(msg, identifier=session.identifier, url=url) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            msg = f"Request failed: {exc}"
            raise error_cls(msg, identifier=session.identifier, url=url) from exc
        except ValueError as exc:
            msg = "Response is not JSON"
            raise error_cls(msg, identifier=session.identifier, url=url) from exc
        return raw


class PublicStrategy(MethodStrategy):
    """Public client talking to the provider's token endpoint directly."""

    method = AuthMethod.PUBLIC

    async def exchange_code(self, session: Session, code: str) -> ExchangeResult:
        """POST the authorization-code grant as a form."""
        url = session.require_endpoint("token_url")
        data = {
            "code": code,
            "grant_type": "authorization_code",
            "client_id": session.config.client_id or "",
            "redirect_uri": session.settings.redirect_uri,
        }
        raw = await self._send(
            session,
            "POST",
            url,
            credentials=False,
            error_cls=TokenError,
            data=data,
            headers={"Accept": "application/json"},
        )
        return self.map_response(raw)

    async def refresh(self, session: Session) -> ExchangeResult:
        """POST the refresh-token grant as a form."""
        if not isinstance(session.refresh_token, str):
            msg = "No refresh token available"
            raise TokenRefreshError(msg, identifier=session.identifier)
        url = session.require_endpoint("refresh_url")
        data = {
            "refresh_token": session.refresh_token,
            "grant_type": "refresh_token",
            "client_id": session.config.client_id or "",
            "redirect_uri": session.settings.redirect_uri,
        }
        raw = await self._send(
            session,
            "POST",
            url,
            credentials=False,
            error_cls=TokenRefreshError,
            data=data,
            headers={"Accept": "application/json"},
        )
        return self.map_response(raw)

    async def logout(self, session: Session) -> None:
        """Open the provider logout page in a popup and wait for it to close."""
        base = session.require_endpoint("logout_url")
        query = urlencode(
            {
                "client_id": session.config.client_id or "",
                "redirect_uri": session.settings.logout_redirect_uri,
            },
            quote_via=quote,
        )
        separator = "&" if "?" in base else "?"
        url = f"{base}{separator}{query}"
        handle = session.channel.open(url, session.settings.popup_dimensions)
        session.popup_handle = handle
        try:
            while not session.channel.is_closed(handle):
                await asyncio.sleep(session.settings.popup_poll_interval)
        finally:
            if session.popup_handle is handle:
                session.popup_handle = None


class BackendTokenStrategy(MethodStrategy):
    """A trusted backend performs the exchange and issues a bearer token."""

    method = AuthMethod.BACKEND_TOKEN

    async def exchange_code(self, session: Session, code: str) -> ExchangeResult:
        """POST the code and correlation data as JSON."""
        url = session.require_endpoint("token_url")
        payload = {
            "code": code,
            "state": session.state,
            "clientId": session.config.client_id,
            "redirectUri": session.settings.redirect_uri,
        }
        raw = await self._send(
            session,
            "POST",
            url,
            credentials=False,
            error_cls=TokenError,
            json=payload,
            headers={"Accept": "application/json"},
        )
        return self.map_response(raw)

    async def refresh(self, session: Session) -> ExchangeResult:
        """GET the refresh endpoint with the refresh token as bearer."""
        if not isinstance(session.refresh_token, str):
            msg = "No refresh token available"
            raise TokenRefreshError(msg, identifier=session.identifier)
        url = session.require_endpoint("refresh_url")
        raw = await self._send(
            session,
            "GET",
            url,
            credentials=False,
            error_cls=TokenRefreshError,
            headers={"Authorization": f"Bearer {session.refresh_token}"},
        )
        return self.map_response(raw)

    async def logout(self, session: Session) -> None:
        """POST to the backend logout endpoint with the bearer token."""
        url = session.require_endpoint("logout_url")
        await self._send(
            session,
            "POST",
            url,
            credentials=False,
            error_cls=AuthenticationError,
            expect_json=False,
            headers={"Authorization": f"Bearer {session.token}"},
        )


class BackendCredentialsStrategy(MethodStrategy):
    """A backend keeps the session in a cookie; no bearer token is exposed."""

    method = AuthMethod.BACKEND_CREDENTIALS
    requires_probe = True
    ambient = True

    def map_response(self, raw: Any) -> ExchangeResult:
        """A response with an email-like field resolves the identity."""
        identity = _identity_from(raw)
        if identity is None:
            return NoCredentials(raw=raw if isinstance(raw, dict) else {})
        return AmbientIdentity(identity=identity, raw=raw)

    async def exchange_code(self, session: Session, code: str) -> ExchangeResult:
        """POST the code as a form with the cookie session.

        When the backend answers without an identity (it only set the
        cookie), the refresh endpoint is probed once for it.
        """
        url = session.require_endpoint("token_url")
        data = {
            "code": code,
            "clientId": session.config.client_id or "",
            "redirectUri": session.settings.redirect_uri,
            "nonce": session.nonce,
        }
        if session.config.sso:
            data["sso"] = session.config.sso
        raw = await self._send(
            session,
            "POST",
            url,
            credentials=True,
            error_cls=TokenError,
            data=data,
            headers={"Accept": "application/json"},
        )
        result = self.map_response(raw)
        if isinstance(result, AmbientIdentity) or not session.endpoints.refresh_url:
            return result
        try:
            return await self.refresh(session)
        except TokenRefreshError as exc:
            raise TokenError(exc.message, identifier=session.identifier) from exc

    async def refresh(self, session: Session) -> ExchangeResult:
        """GET the refresh endpoint with the cookie session."""
        url = session.require_endpoint("refresh_url")
        raw = await self._send(
            session,
            "GET",
            url,
            credentials=True,
            error_cls=TokenRefreshError,
            headers={"Accept": "application/json"},
        )
        return self.map_response(raw)

    async def logout(self, session: Session) -> None:
        """GET the logout endpoint with the cookie session."""
        url = session.require_endpoint("logout_url")
        await self._send(
            session, "GET", url, credentials=True, error_cls=AuthenticationError, expect_json=False
        )

    async def userinfo(self, session: Session) -> dict[str, Any]:
        """GET the userinfo endpoint with the cookie session."""
        url = session.require_endpoint("userinfo_url")
        raw = await self._send(
            session,
            "GET",
            url,
            credentials=True,
            error_cls=UserinfoError,
            headers={"Accept": "application/json"},
        )
        if not isinstance(raw, dict):
            msg = "Userinfo response is not a JSON object"
            raise UserinfoError(msg, identifier=session.identifier)
        return raw


class ApacheStrategy(BackendCredentialsStrategy):
    """An authenticating gateway resolves the user and posts the identity.

    There is no code exchange: the gateway page posts the identity fields
    directly, and the authorize URL is opened verbatim.
    """

    method = AuthMethod.APACHE

    def authorize_url(self, session: Session) -> str:
        """The configured authorize URL, untouched."""
        return session.require_endpoint("auth_url")

    def interpret_message(
        self, session: Session, message: ChannelMessage
    ) -> AcceptedMessage | None:
        """Accept identity payloads posted from the gateway origin."""
        auth_url = session.endpoints.auth_url
        if not auth_url or not message.origin or message.origin not in auth_url:
            return None
        identity = _identity_from(message.data)
        if identity is None:
            return None
        return AcceptedMessage(identity=identity)

    async def exchange_code(self, session: Session, code: str) -> ExchangeResult:
        """Never called: gateway messages carry no code."""
        msg = "The apache method has no code exchange"
        raise TokenError(msg, identifier=session.identifier)


_STRATEGIES: dict[AuthMethod, type[MethodStrategy]] = {
    AuthMethod.PUBLIC: PublicStrategy,
    AuthMethod.BACKEND_TOKEN: BackendTokenStrategy,
    AuthMethod.BACKEND_CREDENTIALS: BackendCredentialsStrategy,
    AuthMethod.APACHE: ApacheStrategy,
}


def strategy_for(method: AuthMethod | str) -> MethodStrategy:
    """Instantiate the strategy for ``method``.

    Raises
    ------
    ValueError
        If ``method`` names no known strategy.
    """
    return _STRATEGIES[AuthMethod(method)]()
