"""Tests for authwindow.exceptions module.

These tests verify the exception hierarchy, message formatting, context
storage and the error kind carried by authentication errors.
"""

from __future__ import annotations

import pytest

from authwindow.exceptions import (
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
from authwindow.types import ErrorKind


class TestAuthWindowException:
    """Test base exception class behavior."""

    def test_message_only(self) -> None:
        """Exception with just a message stores it correctly."""
        exc = AuthWindowException("Something went wrong")
        assert exc.message == "Something went wrong"
        assert not exc.context
        assert str(exc) == "Something went wrong"

    def test_with_context(self) -> None:
        """Exception with context includes it in string representation."""
        exc = AuthWindowException("Failed", url="https://idp.example.com", attempt=2)
        assert exc.context == {"url": "https://idp.example.com", "attempt": 2}
        exc_str = str(exc)
        assert exc_str.startswith("Failed (")
        assert "url='https://idp.example.com'" in exc_str
        assert "attempt=2" in exc_str

    def test_args_preserved(self) -> None:
        """Standard exception args are preserved."""
        assert AuthWindowException("message").args == ("message",)


class TestAuthenticationError:
    """Tests for error kinds and identifiers."""

    def test_identifier_in_context(self) -> None:
        """The session identifier is stored and rendered."""
        exc = TokenError("exchange failed", identifier="app")
        assert exc.identifier == "app"
        assert "identifier='app'" in str(exc)

    def test_no_identifier(self) -> None:
        """Without an identifier the context stays empty."""
        exc = AuthenticationError("failed")
        assert exc.identifier is None
        assert exc.kind is None
        assert str(exc) == "failed"

    def test_explicit_kind_wins(self) -> None:
        """A kind passed explicitly overrides the class default."""
        exc = TokenError("denied", kind=ErrorKind.AUTHORIZATION_DENIED)
        assert exc.kind is ErrorKind.AUTHORIZATION_DENIED

    @pytest.mark.parametrize(
        ("exc_cls", "kind"),
        [
            (ProviderMetadataError, ErrorKind.INVALID_PROVIDER_METADATA),
            (EndpointNotResolvedError, ErrorKind.INVALID_PROVIDER_METADATA),
            (NotAuthenticatedError, ErrorKind.NOT_AUTHENTICATED),
            (NoUserinfoUrlError, ErrorKind.NO_USERINFO_URL),
            (TokenError, ErrorKind.TOKEN_EXCHANGE_FAILED),
            (TokenRefreshError, ErrorKind.REFRESH_FAILED),
            (UserinfoError, ErrorKind.USERINFO_FAILED),
        ],
    )
    def test_default_kinds(self, exc_cls, kind) -> None:
        """Every error class carries its default kind."""
        exc = exc_cls("boom")
        assert exc.kind is kind
        assert isinstance(exc, AuthenticationError)
        assert isinstance(exc, AuthWindowException)


class TestHierarchy:
    """Tests for catch-all handling."""

    def test_refresh_error_is_token_error(self) -> None:
        """TokenRefreshError can be caught as TokenError."""
        with pytest.raises(TokenError):
            raise TokenRefreshError("expired")

    def test_configuration_error_is_not_authentication_error(self) -> None:
        """Configuration errors are separate from authentication failures."""
        exc = ConfigurationError("locked")
        assert isinstance(exc, AuthWindowException)
        assert not isinstance(exc, AuthenticationError)
