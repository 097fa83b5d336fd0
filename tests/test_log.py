"""Tests for logging utilities."""

from __future__ import annotations

import logging

from authwindow.log import enable_debug, get_logger, redact_sensitive_data, set_level


class TestLogger:
    """Tests for the shared authwindow logger."""

    def test_single_instance(self) -> None:
        """get_logger() returns the package parent logger."""
        logger = get_logger()
        assert logger is get_logger()
        assert logger.name == "authwindow"
        assert logger.handlers

    def test_module_loggers_are_children(self) -> None:
        """Module loggers propagate to the package logger."""
        assert logging.getLogger("authwindow.auth").parent is get_logger()

    def test_set_level_accepts_names(self) -> None:
        """Levels may be given by name."""
        try:
            set_level("info")
            assert get_logger().level == logging.INFO
            enable_debug()
            assert get_logger().level == logging.DEBUG
        finally:
            set_level(logging.WARNING)


class TestRedaction:
    """Tests for redact_sensitive_data()."""

    def test_redacts_credentials(self) -> None:
        """Token-like keys are replaced."""
        data = {
            "access_token": "t1",
            "refresh_token": "r1",
            "id_token": "jwt",
            "code": "abc",
            "client_secret": "s",
            "expires_in": 60,
        }
        assert redact_sensitive_data(data) == {
            "access_token": "[REDACTED]",
            "refresh_token": "[REDACTED]",
            "id_token": "[REDACTED]",
            "code": "[REDACTED]",
            "client_secret": "[REDACTED]",
            "expires_in": 60,
        }

    def test_nested_structures(self) -> None:
        """Dicts inside lists and dicts are redacted too."""
        data = {"items": [{"Authorization": "Bearer x", "email": "a@b.com"}]}
        assert redact_sensitive_data(data) == {
            "items": [{"Authorization": "[REDACTED]", "email": "a@b.com"}]
        }

    def test_input_untouched(self) -> None:
        """A copy is returned."""
        data = {"token": "t"}
        redact_sensitive_data(data)
        assert data == {"token": "t"}

    def test_depth_limit(self) -> None:
        """Deep nesting stops at the depth limit."""
        data = {"a": {"b": {"c": 1}}}
        assert redact_sensitive_data(data, max_depth=2) == {"a": {"b": "[MAX_DEPTH]"}}

    def test_scalars_pass_through(self) -> None:
        """Non-container values are returned as-is."""
        assert redact_sensitive_data("plain") == "plain"
        assert redact_sensitive_data(None) is None
