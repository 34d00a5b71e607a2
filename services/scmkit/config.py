"""
Configuration management for scmkit.

A driver is built from an immutable ClientConfig value. Settings wraps one
ClientConfig plus logging options for the CLI: non-secret values come from a
YAML file, secrets (tokens, passwords) from environment variables.
"""

from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_PATH = Path("/etc/scmkit/config.yaml")


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    if CONFIG_PATH.exists():
        with open(CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


class DriverKind(StrEnum):
    """Supported provider drivers."""

    STASH = "stash"
    BITBUCKET = "bitbucket"
    GITHUB = "github"
    GITLAB = "gitlab"


DEFAULT_SERVER_URLS: dict[DriverKind, str] = {
    DriverKind.BITBUCKET: "https://api.bitbucket.org",
    DriverKind.GITHUB: "https://api.github.com",
    DriverKind.GITLAB: "https://gitlab.com",
}


class ClientConfig(BaseModel):
    """Immutable connection settings for one provider-bound client."""

    model_config = ConfigDict(frozen=True)

    driver: DriverKind = Field(default=DriverKind.GITHUB)
    server_url: str = Field(
        default="",
        description="Provider base URL. Empty means the public endpoint of the driver. "
        "Bitbucket Server has no public endpoint and requires one.",
    )
    token: str = Field(default="", description="Personal/access token (sent as a bearer token)")
    username: str = Field(default="", description="Username for basic auth")
    password: str = Field(default="", description="Password or app password for basic auth")
    timeout_seconds: float = Field(default=30.0)
    user_agent: str = Field(default="scmkit")
    hook_probe_implies_admin: bool = Field(
        default=True,
        description="Bitbucket Server only: treat a successful webhook listing as proof of "
        "admin access. When false, a separate admin-gated probe decides Admin.",
    )

    def base_url(self) -> str:
        """Resolve the provider base URL, without a trailing slash."""
        url = self.server_url or DEFAULT_SERVER_URLS.get(self.driver, "")
        if not url:
            raise ValueError(f"{self.driver} driver requires server_url")
        return url.rstrip("/")


class Settings(BaseSettings):
    """CLI settings."""

    model_config = SettingsConfigDict(
        env_prefix="SCMKIT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False, description="JSON logging instead of console output")
    client: ClientConfig = Field(default_factory=ClientConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )
