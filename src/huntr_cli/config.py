"""Configuration management using Pydantic Settings."""

import tempfile
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_default_config_dir() -> Path:
    """Get the default config directory (~/.huntr, shared with earlier installs)."""
    return Path.home() / ".huntr"


def get_default_profile_dir() -> Path:
    """Chrome profile reused across capture runs so the login survives."""
    return Path(tempfile.gettempdir()) / "huntr-cdp-profile"


class Settings(BaseSettings):
    """Application settings loaded from HUNTR_* environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="HUNTR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Static token (HUNTR_API_TOKEN)
    api_token: str = Field(default="", description="Static Huntr API token")

    # Huntr endpoints
    api_base_url: str = Field(
        default="https://api.huntr.co/api",
        description="Base URL for the personal Huntr API"
    )
    site_url: str = Field(default="https://huntr.co", description="Huntr web origin")
    app_url: str = Field(
        default="https://huntr.co/home",
        description="App page opened in the debug browser"
    )
    site_domain: str = Field(default="huntr.co", description="Domain owning the session cookies")

    # Clerk (identity provider)
    clerk_frontend_api: str = Field(
        default="https://clerk.huntr.co",
        description="Clerk frontend API origin used for token refresh"
    )
    clerk_js_version: str = Field(
        default="4.73.14",
        description="Clerk JS version reported on refresh requests"
    )

    # Storage
    config_dir: Path = Field(
        default_factory=get_default_config_dir,
        description="Directory holding config.json"
    )
    auth_dir: Optional[Path] = Field(
        default=None,
        description="Fallback secret file directory (default: {config_dir}/auth)"
    )
    keyring_service: str = Field(default="huntr-cli", description="Keyring service name")

    # HTTP
    request_timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")

    # Chrome DevTools Protocol
    cdp_host: str = Field(default="127.0.0.1", description="Remote debugging host")
    cdp_port: int = Field(default=9222, description="Remote debugging port")
    cdp_profile_dir: Path = Field(
        default_factory=get_default_profile_dir,
        description="Dedicated Chrome profile for session capture"
    )
    cdp_transport: Literal["aiohttp", "raw"] = Field(
        default="aiohttp",
        description="WebSocket transport for debugging channels"
    )
    cdp_timeout: float = Field(default=10.0, description="Timeout per debugging round trip")
    chrome_path: Optional[str] = Field(default=None, description="Chrome executable (auto-detect if unset)")

    # Capture polling
    launch_settle_delay: float = Field(default=2.0, description="Wait after launching Chrome")
    tab_wait_timeout: float = Field(default=45.0, description="How long to wait for a huntr.co tab")
    capture_timeout: float = Field(default=120.0, description="How long to wait for login")
    poll_interval: float = Field(default=1.5, description="Delay between polls")

    @field_validator("config_dir", "cdp_profile_dir", mode="before")
    @classmethod
    def expand_dirs(cls, v):
        """Expand user home directory in paths."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @model_validator(mode="after")
    def resolve_paths(self):
        """Resolve auth_dir relative to config_dir if not explicitly set."""
        if self.auth_dir is None:
            self.auth_dir = self.config_dir / "auth"
        elif isinstance(self.auth_dir, str):
            self.auth_dir = Path(self.auth_dir).expanduser()
        return self

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def cookie_urls(self) -> list[str]:
        """URLs whose cookies are read from the browser."""
        return [f"{self.site_url}/", self.app_url, f"{self.clerk_frontend_api}/"]


def load_settings() -> Settings:
    """Load settings from environment and .env file."""
    settings = Settings()
    return settings
