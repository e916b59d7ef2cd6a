"""Configuration for loopback-oauth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.loopback_oauth] section (project-level)
3. ./loopback-oauth.toml (project-level, explicit)
4. ~/.config/loopback-oauth/config.toml (user-level, overrides project)
5. LOOPBACK_OAUTH_CONFIG_FILE (explicit file)
6. .env files (src-tauri/.env, .env)
7. Environment variables (highest priority)

The provider settings keep the environment names of the desktop
application (DISCORD_CLIENT_ID, DISCORD_SCOPES, OAUTH_PORT, REDIRECT_PATH,
KEYRING_SERVICE); everything else uses the LOOPBACK_OAUTH_ prefix.

Settings are loaded once at process start with ``load_settings()`` and
passed explicitly to every component that needs them.
"""

from __future__ import annotations

import os
import sys

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigurationError


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


LOOPBACK_HOST = "127.0.0.1"

DISCORD_AUTHORIZE_URL = "https://discord.com/api/oauth2/authorize"
DISCORD_TOKEN_URL = "https://discord.com/api/oauth2/token"  # noqa: S105
DISCORD_USERINFO_URL = "https://discord.com/api/users/@me"
DISCORD_CDN_URL = "https://cdn.discordapp.com"

TOOL_SECTION = "loopback_oauth"


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    project_toml = Path("loopback-oauth.toml")
    if project_toml.exists():
        files.append(project_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "loopback-oauth" / "config.toml"
    else:
        user_config = Path("~/.config/loopback-oauth/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("LOOPBACK_OAUTH_CONFIG_FILE")
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
            msg = f"Cannot read configuration file {config_file}: {exc}"
            raise ConfigurationError(msg, path=str(config_file)) from exc

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get(TOOL_SECTION, {})

        merged.update(data)

    return merged


class _TomlConfigSource(PydanticBaseSettingsSource):
    """Settings source backed by the merged TOML files."""

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._data = _load_toml_config()

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return {
            name: self._data[name] for name in self.settings_cls.model_fields if name in self._data
        }


class OAuthSettings(BaseSettings):
    """Settings for the loopback login flow.

    Example: DISCORD_CLIENT_ID=1234 OAUTH_PORT=53682
    Example: LOOPBACK_OAUTH_TOKEN_STORE=memory

    TOML section: [tool.loopback_oauth]
    """

    model_config = SettingsConfigDict(
        env_prefix="LOOPBACK_OAUTH_",
        env_file=("src-tauri/.env", ".env"),
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    # Provider client
    client_id: str = Field(
        default="1398967218842108006",
        validation_alias=AliasChoices("DISCORD_CLIENT_ID", "LOOPBACK_OAUTH_CLIENT_ID"),
        description="OAuth2 client ID of the public (secretless) client",
    )
    scopes: str = Field(
        default="identify email",
        validation_alias=AliasChoices("DISCORD_SCOPES", "LOOPBACK_OAUTH_SCOPES"),
        description="Space-separated OAuth2 scopes to request",
    )

    # Loopback redirect
    port: int = Field(
        default=53682,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("OAUTH_PORT", "LOOPBACK_OAUTH_PORT"),
        description="Fixed loopback port registered with the provider",
    )
    callback_path: str = Field(
        default="/callback",
        validation_alias=AliasChoices("REDIRECT_PATH", "LOOPBACK_OAUTH_CALLBACK_PATH"),
        description="Path component of the redirect URI",
    )

    # Token storage
    keyring_service: str = Field(
        default="Aquila",
        validation_alias=AliasChoices("KEYRING_SERVICE", "LOOPBACK_OAUTH_KEYRING_SERVICE"),
        description="Service name of the OS credential store entry",
    )
    token_store_backend: Literal["keyring", "memory"] = Field(
        default="keyring",
        validation_alias=AliasChoices("LOOPBACK_OAUTH_TOKEN_STORE"),
        description="Token storage backend: keyring or memory",
    )

    # Timeouts
    auth_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("LOOPBACK_OAUTH_AUTH_TIMEOUT"),
        description="Seconds to wait for the browser redirect before abandoning the login",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("LOOPBACK_OAUTH_HTTP_TIMEOUT"),
        description="Timeout for token and profile requests",
    )

    # Provider endpoints
    authorize_url: str = DISCORD_AUTHORIZE_URL
    token_url: str = DISCORD_TOKEN_URL
    userinfo_url: str = DISCORD_USERINFO_URL
    avatar_cdn_url: str = DISCORD_CDN_URL

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Put TOML files below .env files and environment variables."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _TomlConfigSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("callback_path")
    @classmethod
    def _validate_callback_path(cls, v: str) -> str:
        """Require an absolute path without query or fragment."""
        if not v.startswith("/") or "?" in v or "#" in v:
            msg = f"callback path must be an absolute path, got {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("scopes", mode="before")
    @classmethod
    def _normalize_scopes(cls, v: Any) -> Any:
        """Accept a list (from TOML) or a space/comma separated string."""
        if isinstance(v, (list, tuple)):
            return " ".join(str(s).strip() for s in v if str(s).strip())
        if isinstance(v, str):
            return " ".join(v.replace(",", " ").split())
        return v

    @property
    def host(self) -> str:
        """Loopback address the redirect listener binds to."""
        return LOOPBACK_HOST

    @property
    def redirect_uri(self) -> str:
        """The redirect URI registered with the provider."""
        return f"http://{LOOPBACK_HOST}:{self.port}{self.callback_path}"

    def require_client(self) -> None:
        """Check the settings needed to start a login.

        Raises
        ------
        ConfigurationError
            If no client id is configured.
        """
        if not self.client_id.strip():
            msg = "No OAuth2 client id configured (set DISCORD_CLIENT_ID)"
            raise ConfigurationError(msg)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# loopback-oauth Environment Variables",
            "# Generated by: loopback-oauth config --env",
            "",
        ]
        for field_name, field_info in type(self).model_fields.items():
            alias = field_info.validation_alias
            if isinstance(alias, AliasChoices):
                env_name = str(alias.choices[0])
            else:
                env_name = f"LOOPBACK_OAUTH_{field_name.upper()}"
            lines.append(f'export {env_name}="{getattr(self, field_name)}"')
        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["loopback-oauth Configuration", "=" * 60, ""]
        for field_name, field_value in self.model_dump().items():
            value_str = str(field_value)
            if len(value_str) > 50:
                value_str = value_str[:47] + "..."
            lines.append(f"  {field_name:22} = {value_str}")
        lines.append(f"  {'redirect_uri':22} = {self.redirect_uri}")
        return "\n".join(lines)


def load_settings(**overrides: Any) -> OAuthSettings:
    """Load settings from all sources.

    Parameters
    ----------
    **overrides : Any
        Explicit values taking precedence over every other source.

    Returns
    -------
    OAuthSettings
        A fresh settings value.

    Raises
    ------
    ConfigurationError
        If any source holds an invalid value.
    """
    try:
        return OAuthSettings(**overrides)
    except ValidationError as exc:
        msg = f"Invalid configuration: {exc}"
        raise ConfigurationError(msg) from exc
