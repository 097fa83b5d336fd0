"""OAuth2 / OIDC session with automatic refresh.

A :class:`Session` owns one identity-provider integration: it resolves the
provider endpoints, opens the authorization flow through a redirect
channel, validates the message the redirect target posts back, exchanges
it for credentials with its method strategy, derives the identity and
keeps the session alive with a single refresh timer.

Everything runs on one asyncio event loop. Results of network calls are
committed only if the session was not reset or removed while the call was
in flight.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes,too-many-public-methods

from __future__ import annotations

import base64
import datetime
import logging
import time

from typing import TYPE_CHECKING, Any

import httpx
import jwt

from ..config import SessionConfig, get_settings
from ..exceptions import (
    AuthenticationError,
    EndpointNotResolvedError,
    NotAuthenticatedError,
    NoUserinfoUrlError,
    ProviderMetadataError,
    UserinfoError,
)
from ..log import redact_sensitive_data
from ..types import (
    AmbientIdentity,
    ErrorKind,
    ProviderKind,
    SessionState,
    TokenGrant,
)
from .methods import strategy_for
from .providers import ProviderResolver
from .scheduler import RefreshScheduler


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..config import AuthSettings
    from ..types import ChannelMessage, ExchangeResult
    from .channel import RedirectChannel


logger = logging.getLogger("authwindow.auth")

EVENTS = ("authenticated", "logout", "error")

# Floor for the refresh interval when a token is already at or past expiry.
MIN_REFRESH_INTERVAL_MS = 1000

_B64_SUBSTITUTES = str.maketrans({"=": "0", "+": "0", "/": "0"})


def _encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii").translate(_B64_SUBSTITUTES)


def make_correlation(identifier: str, today: datetime.date | None = None) -> tuple[str, str]:
    """Derive the correlation token and nonce of a session.

    Both are deterministic in ``identifier`` and the date.

    Parameters
    ----------
    identifier : str
        The session identifier.
    today : datetime.date, optional
        The date to derive from (defaults to today).

    Returns
    -------
    tuple[str, str]
        ``(state, nonce)``, base64 with ``=``, ``+`` and ``/`` replaced by ``0``.
    """
    today = today or datetime.date.today()
    state = _encode(f"app_fmt{identifier}_{today.isoformat()}")
    nonce = _encode(f"{identifier}_{today.month}_{today.day}")
    return state, nonce


def decode_identity_token(token: str | None) -> dict[str, Any] | None:
    """Decode a JWT payload without verifying it.

    Signature verification is the caller's responsibility; the payload is
    trusted as-is.

    Returns
    -------
    dict or None
        The claims, or None if ``token`` is not a decodable JWT.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    return claims if isinstance(claims, dict) else None


class Session:
    """One client-side OAuth2 / OIDC session.

    Parameters
    ----------
    identifier : str
        Opaque name of the session; seeds the correlation token.
    config : SessionConfig, optional
        Per-session configuration (defaults to a ``public`` session).
    channel : RedirectChannel
        Capability used to open popups and hidden frames and to receive
        posted messages.
    settings : AuthSettings, optional
        Process-wide settings. Defaults to :func:`get_settings`.
    http_client : httpx.AsyncClient, optional
        Client whose cookie jar carries the ambient session. Not closed by
        the session.
    transport : httpx.AsyncBaseTransport, optional
        Transport for the clients the session creates itself.
    """

    def __init__(
        self,
        identifier: str,
        config: SessionConfig | None = None,
        *,
        channel: RedirectChannel,
        settings: AuthSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the session."""
        self._identifier = identifier
        self.config = config or SessionConfig()
        self.settings = settings or get_settings()
        self.channel = channel
        self.strategy = strategy_for(self.config.method)
        self.resolver = ProviderResolver(self.config, self.settings)
        self.endpoints = self.resolver.resolve_static()

        self._transport = transport
        self._ambient_client = http_client
        self._owns_ambient_client = http_client is None
        self._isolated_client: httpx.AsyncClient | None = None

        self._callbacks: dict[str, Callable[..., Any] | None] = dict.fromkeys(EVENTS)
        self._listener: Callable[[ChannelMessage], Any] | None = None

        self._state, self._nonce = make_correlation(identifier)
        self._token: str | bool | None = None
        self._refresh_token: str | bool | None = None
        self._identity: dict[str, Any] | None = None
        self._expiry_ms: int | None = None
        self._status = SessionState.UNAUTHENTICATED
        self._generation = 0

        self.frame_handle: Any = None
        self.popup_handle: Any = None
        self.refresh_scheduler = RefreshScheduler(self.refresh, name=identifier)

    # ── Accessors ───────────────────────────────────────────────────

    @property
    def identifier(self) -> str:
        """The session identifier."""
        return self._identifier

    @property
    def token(self) -> str | bool | None:
        """The bearer token, ``True`` for a cookie session, or None."""
        return self._token

    @property
    def refresh_token(self) -> str | bool | None:
        """The refresh token (equal to ``token`` when not separate)."""
        return self._refresh_token

    @property
    def identity(self) -> dict[str, Any] | None:
        """The identity claims of the current user."""
        return self._identity

    @property
    def user(self) -> dict[str, Any] | None:
        """Alias of :attr:`identity`."""
        return self._identity

    @property
    def email(self) -> str | None:
        """The user's email, when the identity carries one."""
        if self._identity and self._identity.get("email"):
            return self._identity["email"]
        return None

    @property
    def expiry_ms(self) -> int | None:
        """Milliseconds between refreshes of the current credential."""
        return self._expiry_ms

    @property
    def status(self) -> SessionState:
        """Current lifecycle state."""
        return self._status

    @property
    def is_authenticated(self) -> bool:
        """Whether a credential is held."""
        return self._status is SessionState.AUTHENTICATED

    @property
    def state(self) -> str:
        """The correlation token sent as ``state``."""
        return self._state

    @property
    def nonce(self) -> str:
        """The nonce sent with the authorization request."""
        return self._nonce

    @property
    def authorize_url(self) -> str:
        """The URL that starts the authorization flow.

        Raises
        ------
        EndpointNotResolvedError
            If the authorize endpoint is unknown.
        """
        return self.strategy.authorize_url(self)

    def require_endpoint(self, name: str) -> str:
        """Return the endpoint ``name`` or raise if it is unresolved."""
        url = getattr(self.endpoints, name)
        if not url:
            msg = f"Endpoint {name} is not resolved"
            raise EndpointNotResolvedError(msg, identifier=self._identifier)
        return url

    def http_client(self, *, credentials: bool) -> httpx.AsyncClient:
        """Client for one request.

        With ``credentials`` the client carrying the cookie session is
        returned; otherwise an isolated client whose jar is emptied first.
        """
        if credentials:
            if self._ambient_client is None or self._ambient_client.is_closed:
                self._ambient_client = self._new_client()
                self._owns_ambient_client = True
            return self._ambient_client
        if self._isolated_client is None or self._isolated_client.is_closed:
            self._isolated_client = self._new_client()
        self._isolated_client.cookies.clear()
        return self._isolated_client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.http_timeout, transport=self._transport)

    # ── Callbacks ───────────────────────────────────────────────────

    def on(self, event_name: str, callback: Callable[..., Any] | None) -> None:
        """Record the callback for ``event_name``.

        Events: ``authenticated(identity, session)``, ``logout()`` and
        ``error(kind)``. Unknown names are ignored.
        """
        if event_name in self._callbacks:
            self._callbacks[event_name] = callback
        else:
            logger.debug("Ignoring callback for unknown event %r", event_name)

    def _trigger(self, event_name: str, *args: Any) -> None:
        callback = self._callbacks.get(event_name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(
                "Callback error for %r on session %s", event_name, self._identifier
            )

    def _trigger_error(self, kind: ErrorKind | None) -> None:
        kind = kind or ErrorKind.TOKEN_EXCHANGE_FAILED
        logger.warning("Session %s error: %s", self._identifier, kind.value)
        self._trigger("error", kind)

    # ── Flow ────────────────────────────────────────────────────────

    async def resolve_endpoints(self) -> bool:
        """Run discovery if it is still outstanding.

        A failure fires ``error(INVALID_PROVIDER_METADATA)`` and leaves the
        endpoints unset.

        Returns
        -------
        bool
            Whether the authorize endpoint is known.
        """
        if self.resolver.needs_discovery:
            try:
                await self.resolver.resolve(self.http_client(credentials=False), self.endpoints)
            except ProviderMetadataError as exc:
                self._trigger_error(exc.kind)
        return self.endpoints.is_resolved

    async def start(self) -> None:
        """Attach the session to its channel.

        Opens the hidden frame when silent authentication is configured,
        registers the message listener (once) and probes for an existing
        cookie session when the method needs it.
        """
        if self._status is SessionState.DESTROYED:
            logger.warning("Session %s was removed and cannot be started", self._identifier)
            return
        resolved = await self.resolve_endpoints()
        self._ensure_listener()
        if self.config.use_hidden_frame and self.frame_handle is None:
            if resolved:
                self.frame_handle = self.channel.open_hidden(self.authorize_url)
                logger.debug("Silent authentication started for %s", self._identifier)
            elif self.resolver.kind is not ProviderKind.DISCOVERED:
                self._trigger_error(ErrorKind.INVALID_PROVIDER_METADATA)
        if self.strategy.requires_probe:
            await self.refresh()

    async def login(self) -> None:
        """Open the authorization flow in a visible popup.

        Returns as soon as the popup is open; the result arrives later as
        a channel message.

        Raises
        ------
        EndpointNotResolvedError
            If the authorize endpoint is unknown.
        """
        if self._status is SessionState.DESTROYED:
            logger.warning("Session %s was removed and cannot log in", self._identifier)
            return
        await self.resolve_endpoints()
        url = self.authorize_url
        self._ensure_listener()
        self.popup_handle = self.channel.open(url, self.settings.popup_dimensions)

    def _ensure_listener(self) -> None:
        if self._listener is None:
            self._listener = self.receive_message
            self.channel.on_message(self._listener)

    async def receive_message(self, message: ChannelMessage) -> None:
        """Handle a message posted by a redirect target.

        Messages that fail validation are discarded without touching the
        session: several sessions may share one page-wide listener.
        """
        if self._status is SessionState.DESTROYED:
            return
        accepted = self.strategy.interpret_message(self, message)
        if accepted is None:
            logger.debug(
                "Session %s discarded a message from %s", self._identifier, message.origin
            )
            return

        silent = self.frame_handle is not None
        if not silent:
            # The redirect target closes the popup after posting.
            self.popup_handle = None

        if accepted.identity is not None:
            self._set_ambient_identity(accepted.identity)
            return

        self._remove_frame()
        if accepted.error is not None:
            if silent:
                logger.info(
                    "Silent authentication for %s ended: %s", self._identifier, accepted.error
                )
            else:
                self._trigger_error(ErrorKind.AUTHORIZATION_DENIED)
            return

        assert accepted.code is not None
        await self._exchange(accepted.code)

    async def _exchange(self, code: str) -> None:
        generation = self._generation
        self._status = SessionState.EXCHANGING
        try:
            result = await self.strategy.exchange_code(self, code)
        except AuthenticationError as exc:
            if self._is_current(generation):
                # A failed re-login keeps the credential already held.
                self._status = (
                    SessionState.AUTHENTICATED if self._token else SessionState.UNAUTHENTICATED
                )
                self._trigger_error(exc.kind)
            return
        if not self._is_current(generation):
            logger.info("Dropping exchange result for reset session %s", self._identifier)
            return
        await self._apply(result, generation)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._status is not SessionState.DESTROYED

    async def _apply(self, result: ExchangeResult, generation: int) -> None:
        logger.debug(
            "Session %s received %s", self._identifier, redact_sensitive_data(result.raw)
        )
        if isinstance(result, TokenGrant):
            await self._set_token(result, generation)
        elif isinstance(result, AmbientIdentity):
            self._set_ambient_identity(result.identity)
        else:
            logger.info("Session %s received no credentials", self._identifier)
            self._reset_user()

    async def _set_token(self, grant: TokenGrant, generation: int) -> None:
        """Record a bearer grant and derive identity and expiry."""
        self._token = grant.token
        self._refresh_token = grant.refresh_token
        self._identity = None

        claims = decode_identity_token(grant.id_token)
        expiry_ms: int | None = None
        if claims is not None:
            data = claims.get("data")
            self._identity = dict(data) if isinstance(data, dict) else claims
            expiry_ms = self._expiry_from_claims(claims)
        if grant.expires_in is not None:
            expiry_ms = grant.expires_in * 1000
        self._expiry_ms = expiry_ms

        if claims is None:
            try:
                await self._fetch_userinfo()
            except AuthenticationError as exc:
                if self._is_current(generation):
                    self._trigger_error(exc.kind)
                    self._reset_user()
                return
            if not self._is_current(generation):
                return

        self._authenticated()

    def _expiry_from_claims(self, claims: dict[str, Any]) -> int | None:
        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return None
        remaining = int(exp * 1000 - time.time() * 1000)
        return min(remaining, self.settings.max_expiry_seconds * 1000)

    def _set_ambient_identity(self, identity: dict[str, Any]) -> None:
        """Record an identity resolved by a cookie session."""
        self._token = True
        self._refresh_token = True
        self._identity = dict(identity)
        lifetime = self.config.lifetime_seconds or self.settings.ambient_lifetime_seconds
        self._expiry_ms = lifetime * 1000
        self._authenticated()

    def _authenticated(self) -> None:
        self._status = SessionState.AUTHENTICATED
        if self._expiry_ms is not None:
            self.refresh_scheduler.arm(max(self._expiry_ms, MIN_REFRESH_INTERVAL_MS))
        logger.info("Session %s authenticated", self._identifier)
        self._trigger("authenticated", self._identity, self)

    # ── Refresh and identity ────────────────────────────────────────

    async def refresh(self) -> None:
        """Refresh the credential, or probe for a cookie session.

        Invoked by the refresh timer. Any failure, or a response without
        credentials, resets the session and fires ``logout``.
        """
        if self._status is SessionState.DESTROYED:
            return
        generation = self._generation
        if self._status is SessionState.UNAUTHENTICATED:
            self._status = SessionState.EXCHANGING
        try:
            result = await self.strategy.refresh(self)
        except AuthenticationError as exc:
            logger.info("Refresh failed for session %s: %s", self._identifier, exc)
            if self._is_current(generation):
                self._reset_user()
            return
        if not self._is_current(generation):
            return

        if isinstance(result, TokenGrant):
            self._token = result.token
            self._refresh_token = result.refresh_token
            if self._status is SessionState.EXCHANGING:
                await self._set_token(result, generation)
            logger.debug("Session %s refreshed", self._identifier)
        elif isinstance(result, AmbientIdentity):
            self._set_ambient_identity(result.identity)
        else:
            logger.info("Session %s has no active session upstream", self._identifier)
            self._reset_user()

    async def get_userinfo(self) -> dict[str, Any]:
        """Request the user profile and merge it into the identity.

        Returns
        -------
        dict[str, Any]
            The updated identity.

        Raises
        ------
        NotAuthenticatedError
            If no token is held.
        NoUserinfoUrlError
            If no userinfo endpoint is known.
        UserinfoError
            If the request fails.
        """
        return await self._fetch_userinfo()

    async def _fetch_userinfo(self) -> dict[str, Any]:
        if not self._token:
            msg = "Userinfo requires an authenticated session"
            raise NotAuthenticatedError(msg, identifier=self._identifier)
        if not self.endpoints.userinfo_url:
            msg = "No userinfo endpoint configured"
            raise NoUserinfoUrlError(msg, identifier=self._identifier)
        raw = await self.strategy.userinfo(self)
        profile = raw.get("profile")
        if profile is not None and not isinstance(profile, dict):
            msg = "Userinfo profile is not an object"
            raise UserinfoError(msg, identifier=self._identifier)
        if self._identity is None:
            self._identity = {}
        self._identity.update(profile or raw)
        return self._identity

    # ── Teardown ────────────────────────────────────────────────────

    async def logout(self) -> None:
        """Log the user out.

        Calls the strategy logout when a logout endpoint is known; the
        session ends unauthenticated whether or not that call succeeds.
        """
        if self._status is SessionState.DESTROYED:
            return
        # In-flight exchanges must not resurrect the session.
        self._generation += 1
        try:
            if self.endpoints.logout_url:
                await self.strategy.logout(self)
        except AuthenticationError as exc:
            logger.warning("Logout request failed for session %s: %s", self._identifier, exc)
        finally:
            self._reset_user()

    def _reset_user(self) -> None:
        """Forget the user and cancel the refresh timer."""
        self.refresh_scheduler.cancel()
        self._generation += 1
        self._token = None
        self._refresh_token = None
        self._identity = None
        self._expiry_ms = None
        if self._status is not SessionState.DESTROYED:
            self._status = SessionState.UNAUTHENTICATED
        self._trigger("logout")

    def _remove_frame(self) -> None:
        if self.frame_handle is not None:
            self.channel.close(self.frame_handle)
            self.frame_handle = None

    def remove(self) -> None:
        """Detach the session for good.

        Resets the user, detaches the listener and removes the hidden frame
        and any popup. The session cannot be started again.
        """
        if self._status is SessionState.DESTROYED:
            return
        self._reset_user()
        if self._listener is not None:
            self.channel.off_message(self._listener)
            self._listener = None
        self._remove_frame()
        if self.popup_handle is not None:
            self.channel.close(self.popup_handle)
            self.popup_handle = None
        self._status = SessionState.DESTROYED
        logger.debug("Session %s removed", self._identifier)

    async def aclose(self) -> None:
        """Remove the session and close the HTTP clients it created."""
        await self.refresh_scheduler.wait_closed()
        self.remove()
        if self._isolated_client is not None:
            await self._isolated_client.aclose()
            self._isolated_client = None
        if self._owns_ambient_client and self._ambient_client is not None:
            await self._ambient_client.aclose()
            self._ambient_client = None
