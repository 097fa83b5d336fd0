"""Configuration system for authwindow using pydantic-settings.

Process-wide settings are layered:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.authwindow] section (project-level)
3. ./authwindow.toml (project-level, explicit)
4. ~/.config/authwindow/config.toml (user-level, overrides project)
5. Environment variables
6. Keyword arguments passed to ``configure()`` (highest priority)

Environment variables use the AUTHWINDOW_ prefix.
Example: AUTHWINDOW_REDIRECT_URI, AUTHWINDOW_POPUP_WIDTH

The process-wide settings are set once, before any session is built, and
are read-only afterwards. Per-session configuration lives in
:class:`SessionConfig`.
"""

from __future__ import annotations

import logging
import os
import sys
import threading

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .types import AuthMethod, PopupDimensions, ProviderKind


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


logger = logging.getLogger("authwindow.config")


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    local_toml = Path("authwindow.toml")
    if local_toml.exists():
        files.append(local_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "authwindow" / "config.toml"
    else:
        user_config = Path("~/.config/authwindow/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("AUTHWINDOW_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    if tomllib is None:
        return {}

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.warning("Ignoring unreadable config file %s: %s", config_file, exc)
            continue

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("authwindow", {})

        merged.update(data)

    return merged


class AuthSettings(BaseSettings):
    """Process-wide authentication settings shared by every session.

    Environment prefix: AUTHWINDOW_
    Example: AUTHWINDOW_PROVIDER_URL=https://sso.example.com/auth/realms/demo
    Example: AUTHWINDOW_REDIRECT_URI=http://127.0.0.1:8765/callback

    TOML section: [tool.authwindow]
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHWINDOW_",
        extra="ignore",
        frozen=True,
    )

    provider_url: str | None = Field(
        default=None,
        description="Default provider template URL (realm URL) used when a session names none",
    )
    redirect_uri: str = Field(
        default="",
        description="Redirect target the provider returns to after login",
    )
    redirect_uri_logout: str | None = Field(
        default=None,
        description="Redirect target after logout (defaults to redirect_uri)",
    )
    popup_width: int = Field(default=850, ge=100, description="Authentication popup width")
    popup_height: int = Field(default=750, ge=100, description="Authentication popup height")
    max_expiry_seconds: int = Field(
        default=1800,
        ge=1,
        description="Ceiling applied to lifetimes read from an identity token",
    )
    ambient_lifetime_seconds: int = Field(
        default=1200,
        ge=1,
        description="Refresh interval for cookie-carried sessions",
    )
    popup_poll_interval: float = Field(
        default=0.5,
        gt=0.0,
        description="Seconds between checks for a closed logout popup",
    )
    http_timeout: float = Field(
        default=30.0, gt=0.0, description="HTTP request timeout in seconds"
    )

    @property
    def logout_redirect_uri(self) -> str:
        """Redirect target after logout."""
        return self.redirect_uri_logout or self.redirect_uri

    @property
    def popup_dimensions(self) -> PopupDimensions:
        """Popup size as a :class:`PopupDimensions`."""
        return PopupDimensions(width=self.popup_width, height=self.popup_height)

    @classmethod
    def load(cls, **overrides: Any) -> AuthSettings:
        """Build settings from TOML files, the environment and ``overrides``.

        TOML values are the lowest layer; pydantic-settings lets
        environment variables win over them, and ``overrides`` win over
        everything.
        """
        toml_config = _load_toml_config()
        env_keys = {
            name
            for name in cls.model_fields
            if f"AUTHWINDOW_{name.upper()}" in os.environ
        }
        data = {k: v for k, v in toml_config.items() if k not in env_keys}
        data.update(overrides)
        return cls(**data)


class _SettingsHolder:
    """Holder for the process-wide settings to avoid global statements."""

    instance: AuthSettings | None = None
    locked: bool = False


_holder = _SettingsHolder()
_holder_lock = threading.Lock()


def configure(**overrides: Any) -> AuthSettings:
    """Set the process-wide settings.

    Must be called at startup, before any session reads the settings.

    Parameters
    ----------
    **overrides : Any
        Field values that take precedence over files and environment.

    Returns
    -------
    AuthSettings
        The installed settings.

    Raises
    ------
    ConfigurationError
        If a session has already read the settings.
    """
    with _holder_lock:
        if _holder.locked:
            msg = "Settings are read-only once a session has been created"
            raise ConfigurationError(msg)
        _holder.instance = AuthSettings.load(**overrides)
        return _holder.instance


def get_settings() -> AuthSettings:
    """Get the process-wide settings, building defaults if needed.

    Reading the settings locks them: later ``configure()`` calls fail.
    """
    with _holder_lock:
        if _holder.instance is None:
            _holder.instance = AuthSettings.load()
        _holder.locked = True
        return _holder.instance


def reset_settings() -> None:
    """Discard and unlock the process-wide settings."""
    with _holder_lock:
        _holder.instance = None
        _holder.locked = False


class SessionConfig(BaseModel):
    """Per-session configuration.

    Attributes
    ----------
    method : AuthMethod
        The method strategy; fixed for the session lifetime.
    client_id : str or None
        Client identifier registered with the provider.
    provider_url : str or None
        Provider template URL overriding ``AuthSettings.provider_url``.
    discovery_url : str or None
        OIDC issuer URL whose discovery document supplies the endpoints.
    auth_url, token_url, refresh_url, userinfo_url, logout_url : str or None
        Explicit endpoints. They win over template or discovered values.
    use_hidden_frame : bool
        Attempt silent authentication in a hidden frame on ``start()``.
    sso : str or None
        Optional SSO hint forwarded by the ``backend-credentials`` exchange.
    lifetime_seconds : int or None
        Refresh interval for cookie-carried sessions, overriding
        ``AuthSettings.ambient_lifetime_seconds``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    method: AuthMethod = AuthMethod.PUBLIC
    client_id: str | None = None
    provider_url: str | None = None
    discovery_url: str | None = None
    auth_url: str | None = None
    token_url: str | None = None
    refresh_url: str | None = None
    userinfo_url: str | None = None
    logout_url: str | None = None
    use_hidden_frame: bool = False
    sso: str | None = None
    lifetime_seconds: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_provider_source(self) -> SessionConfig:
        """Reject configurations naming both a template and a discovery URL."""
        if self.provider_url and self.discovery_url:
            msg = "provider_url and discovery_url are mutually exclusive"
            raise ValueError(msg)
        return self

    def provider_kind(self, settings: AuthSettings) -> ProviderKind:
        """Determine how endpoints are obtained under ``settings``."""
        if self.provider_url:
            return ProviderKind.FIXED_TEMPLATE
        if self.discovery_url:
            return ProviderKind.DISCOVERED
        if settings.provider_url and self.method is not AuthMethod.APACHE:
            return ProviderKind.FIXED_TEMPLATE
        return ProviderKind.EXPLICIT

    def template_url(self, settings: AuthSettings) -> str | None:
        """Template base URL in effect, if any."""
        if self.provider_kind(settings) is not ProviderKind.FIXED_TEMPLATE:
            return None
        return self.provider_url or settings.provider_url
