"""Configuration and credential resolution.

Settings come from the environment:

  METABASE_URL        Base URL of the Metabase instance (required)
  METABASE_API_KEY    API key; takes precedence over username/password
  METABASE_USERNAME   Login email for session auth
  METABASE_PASSWORD   Password for session auth
  METABASE_TIMEOUT    Per-request timeout in seconds (default 30)
  METABASE_LOG_LEVEL  Logging level (default INFO)
"""

import logging
import os
from typing import Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from metabase_mcp.errors import ConfigurationError

# ─── Defaults ────────────────────────────────────────────────────────────────

REQUEST_TIMEOUT = 30.0
DEFAULT_LOG_LEVEL = "INFO"

CREDENTIALS_HELP = (
    "Either (METABASE_URL and METABASE_API_KEY) or "
    "(METABASE_URL, METABASE_USERNAME, and METABASE_PASSWORD) "
    "environment variables are required"
)

# ─── Credentials ─────────────────────────────────────────────────────────────


class ApiKeyCredentials(BaseModel):
    """Static API key sent as ``X-API-Key`` on every request."""
    model_config = ConfigDict(frozen=True)

    api_key: str = Field(..., min_length=1)


class PasswordCredentials(BaseModel):
    """Username/password exchanged once for a session token."""
    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)


Credentials = Union[ApiKeyCredentials, PasswordCredentials]

# ─── Settings ────────────────────────────────────────────────────────────────


class MetabaseSettings(BaseModel):
    """Process configuration for the server."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid", frozen=True)

    url: str = Field(..., min_length=1, description="Metabase base URL")
    api_key: Optional[str] = Field(default=None)
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None, repr=False)
    timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    log_level: str = Field(default=DEFAULT_LOG_LEVEL)

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("api_key", "username", "password", mode="before")
    @classmethod
    def _blank_is_missing(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level '{v}'")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MetabaseSettings":
        """Build settings from environment variables.

        Raises:
            ConfigurationError: if METABASE_URL is missing or a value is invalid.
        """
        env = os.environ if environ is None else environ
        url = env.get("METABASE_URL", "").strip()
        if not url:
            raise ConfigurationError(CREDENTIALS_HELP)

        values = {
            "url": url,
            "api_key": env.get("METABASE_API_KEY"),
            "username": env.get("METABASE_USERNAME"),
            "password": env.get("METABASE_PASSWORD"),
        }
        if env.get("METABASE_TIMEOUT"):
            values["timeout"] = env["METABASE_TIMEOUT"]
        if env.get("METABASE_LOG_LEVEL"):
            values["log_level"] = env["METABASE_LOG_LEVEL"]

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid Metabase configuration: {e}") from e


def resolve_credentials(settings: MetabaseSettings) -> Credentials:
    """Pick the active auth strategy. Does no I/O.

    The API key wins whenever it is set, even if a username and password are
    also configured. Otherwise both username and password must be present.

    Raises:
        ConfigurationError: if neither strategy is fully configured.
    """
    if settings.api_key:
        return ApiKeyCredentials(api_key=settings.api_key)
    if settings.username and settings.password:
        return PasswordCredentials(username=settings.username, password=settings.password)
    raise ConfigurationError(CREDENTIALS_HELP)
