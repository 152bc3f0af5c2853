"""
Configuration module for the OmniStudio companion.

Uses pydantic-settings for environment-based configuration with sensible defaults.
"""

import os
import pathlib
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Detect if we're running in a Docker container
_IS_DOCKER = pathlib.Path("/.dockerenv").exists() or os.getenv("DOCKER_CONTAINER", "").lower() == "true"

if _IS_DOCKER:
    _DEFAULT_CANDIDATES = "http://api:3001"
    _DEFAULT_SQLITE_PATH = "/data/omnistudio.sqlite"
else:
    # Local development: keep data next to the package
    _PROJECT_DIR = pathlib.Path(__file__).parent.parent
    _DEFAULT_CANDIDATES = "http://localhost:3001,http://localhost:3000"
    _DEFAULT_SQLITE_PATH = str(_PROJECT_DIR / "data" / "omnistudio.sqlite")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: STUDIO_API_URL=https://studio.example.com
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    # Studio API connection
    STUDIO_API_URL: str | None = Field(
        default=None,
        description="Base URL of the Studio API; skips candidate probing when set"
    )
    STUDIO_API_CANDIDATES: str = Field(
        default=_DEFAULT_CANDIDATES,
        description="Comma-separated base URLs probed in order when STUDIO_API_URL is unset"
    )
    STUDIO_PROBE_PATH: str = Field(
        default="/api/documents/supported",
        description="Unauthenticated GET endpoint used to detect a reachable base URL"
    )
    STUDIO_TOKEN: str | None = Field(
        default=None,
        description="Bearer JWT used when the caller does not supply one"
    )
    REQUEST_TIMEOUT_S: float = Field(
        default=30.0,
        description="Timeout for a single Studio API request"
    )

    # Job polling
    JOB_POLL_INTERVAL_S: float = Field(
        default=3.0,
        description="Delay between job status requests"
    )
    JOB_TIMEOUT_S: float = Field(
        default=180.0,
        description="Give up on a generation job after this many seconds"
    )

    # Chat history cache
    RECONCILE_WINDOW_S: float = Field(
        default=60.0,
        description="Max distance between local and server timestamps for a title match"
    )
    HISTORY_LIMIT: int = Field(
        default=50,
        description="Maximum number of chats kept per tool"
    )
    STORE: str = Field(
        default="sqlite",
        description="Storage backend: 'sqlite' or 'memory'"
    )
    SQLITE_PATH: str = Field(
        default=_DEFAULT_SQLITE_PATH,
        description="Path to SQLite database file"
    )

    # Sidecar security
    SIDECAR_API_KEY: str | None = Field(
        default=None,
        description="API key required for this service's endpoints"
    )
    RATE_LIMIT_RPS: float = Field(
        default=3.0,
        description="Rate limit: requests per second per IP"
    )
    RATE_LIMIT_BURST: int = Field(
        default=10,
        description="Rate limit: burst capacity"
    )

    # Service metadata
    SERVICE_NAME: str = Field(
        default="omnistudio",
        description="Service name for logging and health checks"
    )
    SERVICE_VERSION: str = Field(
        default="0.3.0",
        description="Service version"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level for the service and CLI"
    )

    def api_candidates(self) -> List[str]:
        """Base URLs to try, in order."""
        if self.STUDIO_API_URL:
            return [self.STUDIO_API_URL.rstrip("/")]
        return [x.strip().rstrip("/") for x in self.STUDIO_API_CANDIDATES.split(",") if x.strip()]


# Singleton settings instance
settings = Settings()
