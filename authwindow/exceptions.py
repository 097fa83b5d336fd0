"""authwindow exception hierarchy.

All authwindow-specific exceptions inherit from AuthWindowException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any

from .types import ErrorKind


class AuthWindowException(Exception):
    """Base exception for all authwindow errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize authwindow exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (identifier, url, method, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(AuthWindowException):
    """Process-wide configuration was used incorrectly.

    Raised when settings are reconfigured after a session has
    already read them.
    """


class AuthenticationError(AuthWindowException):
    """Base exception for authentication failures.

    Every authentication error carries an :class:`ErrorKind`, the value
    handed to ``error`` callbacks.
    """

    default_kind: ErrorKind | None = None

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        identifier: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        kind : ErrorKind, optional
            The error kind. Defaults to the class-level kind.
        identifier : str, optional
            The identifier of the session that failed.
        **context : Any
            Additional context.
        """
        if identifier is not None:
            context["identifier"] = identifier
        super().__init__(message, **context)
        self.kind = kind or self.default_kind
        self.identifier = identifier


class ProviderMetadataError(AuthenticationError):
    """Discovery metadata could not be fetched or parsed."""

    default_kind = ErrorKind.INVALID_PROVIDER_METADATA


class EndpointNotResolvedError(AuthenticationError):
    """An operation needs a provider endpoint that was never resolved.

    Raised instead of silently issuing a request against ``None`` when
    discovery failed or the configuration omitted the endpoint.
    """

    default_kind = ErrorKind.INVALID_PROVIDER_METADATA


class NotAuthenticatedError(AuthenticationError):
    """The operation requires an authenticated session."""

    default_kind = ErrorKind.NOT_AUTHENTICATED


class NoUserinfoUrlError(AuthenticationError):
    """Userinfo was requested but no userinfo endpoint is known."""

    default_kind = ErrorKind.NO_USERINFO_URL


class TokenError(AuthenticationError):
    """Base exception for token-related failures.

    Raised when the authorization code exchange fails.
    """

    default_kind = ErrorKind.TOKEN_EXCHANGE_FAILED


class TokenRefreshError(TokenError):
    """Token or session refresh failed."""

    default_kind = ErrorKind.REFRESH_FAILED


class UserinfoError(AuthenticationError):
    """The userinfo request failed."""

    default_kind = ErrorKind.USERINFO_FAILED
