"""
==============================================================================
Application Settings Module
==============================================================================

Production-grade configuration management using Pydantic Settings.

This module implements the Singleton pattern to ensure a single global
configuration instance throughout the kiosk lifecycle.

Features:
---------
- Environment variable loading with type validation
- .env file support for local development
- Computed properties for derived values (API URL, scan interval)
- Thread-safe singleton implementation

Configuration Priority (highest to lowest):
------------------------------------------
1. Environment variables
2. .env file
3. Default values

Timing Settings:
---------------
The check-in cycle is driven by three delays:

    scan ──► request ──► result overlay ──(result_display_seconds)──►
        clear overlay ──(restart_settle_seconds)──► camera restarted

==============================================================================
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Module logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Kiosk settings loaded from environment variables.

    Attributes:
        app_name: Display name for the kiosk service
        debug: Enable debug mode for verbose logging
        host: Server bind address
        port: Server port number
        api_base_url: Root URL of the upstream cinema API
        request_timeout_seconds: Finite timeout for every upstream call
        auth_token: Bearer token used when none is handed over at session start
        auth_token_file: File holding the bearer token (first line)
        camera_index: Local camera device index
        scan_fps: Decode loop frame rate
        scan_box_width: Width of the centered scan region in pixels
        scan_box_height: Height of the centered scan region in pixels
        result_display_seconds: How long a result overlay stays up
        restart_settle_seconds: Extra wait before the camera restarts
        rate_limit_default_delay_seconds: Retry delay when 429 has no Retry-After
        rate_limit_max_delay_seconds: Longest the kiosk waits before the retry
        toast_throttle_seconds: Window for suppressing duplicate toasts
        log_directory: Directory for session summary logs
        session_logs_enabled: Write a summary log when a session ends
        cors_origins: Allowed CORS origins (JSON array string)

    Example:
        >>> settings = Settings()
        >>> print(settings.api_v1_url)
        'http://localhost:8080/api/v1'
    """

    # =========================================================================
    # PYDANTIC SETTINGS CONFIGURATION
    # =========================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # APPLICATION SETTINGS
    # =========================================================================
    app_name: str = Field(
        default="Cinema Check-In Kiosk",
        description="Display name for the kiosk service"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode for verbose logging"
    )

    # =========================================================================
    # SERVER SETTINGS
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="Server bind address"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Server port number"
    )

    # =========================================================================
    # UPSTREAM API SETTINGS
    # =========================================================================
    api_base_url: str = Field(
        default="http://localhost:8080",
        description="Root URL of the cinema booking API"
    )

    request_timeout_seconds: float = Field(
        default=15.0,
        ge=1,
        le=60,
        description="Network timeout for upstream calls"
    )

    auth_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the booking API"
    )

    auth_token_file: str = Field(
        default="storage/session/token",
        description="File holding the bearer token"
    )

    # =========================================================================
    # SCANNER SETTINGS
    # =========================================================================
    camera_index: int = Field(
        default=0,
        ge=0,
        description="Local camera device index"
    )

    scan_fps: int = Field(
        default=30,
        ge=1,
        le=60,
        description="Decode loop frame rate"
    )

    scan_box_width: int = Field(
        default=280,
        ge=50,
        le=4096,
        description="Width of the centered scan region"
    )

    scan_box_height: int = Field(
        default=200,
        ge=50,
        le=4096,
        description="Height of the centered scan region"
    )

    # =========================================================================
    # CHECK-IN TIMING SETTINGS
    # =========================================================================
    result_display_seconds: float = Field(
        default=2.5,
        ge=0,
        le=30,
        description="How long a result overlay stays visible"
    )

    restart_settle_seconds: float = Field(
        default=0.8,
        ge=0,
        le=10,
        description="Wait for the camera to settle before restarting"
    )

    rate_limit_default_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        le=120,
        description="Retry delay used when a 429 has no Retry-After"
    )

    rate_limit_max_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        le=300,
        description="Cap on the rate-limit retry delay"
    )

    toast_throttle_seconds: float = Field(
        default=5.0,
        ge=0,
        le=60,
        description="Suppress duplicate toasts within this window"
    )

    # =========================================================================
    # FILE PATH SETTINGS
    # =========================================================================
    log_directory: str = Field(
        default="storage/logs",
        description="Directory for session summary logs"
    )

    session_logs_enabled: bool = Field(
        default=True,
        description="Write a summary log when a kiosk session ends"
    )

    # =========================================================================
    # CORS SETTINGS
    # =========================================================================
    cors_origins: str = Field(
        default='["*"]',
        description="Allowed CORS origins as JSON array string"
    )

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, value: str) -> str:
        """
        Normalize the upstream API root.

        Raises:
            ValueError: If the URL is empty or not http(s)
        """
        normalized = value.strip().rstrip("/")

        if not normalized.startswith(("http://", "https://")):
            raise ValueError(
                f"api_base_url must start with http:// or https://, got {value!r}"
            )

        return normalized

    @field_validator("auth_token")
    @classmethod
    def blank_token_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    # =========================================================================
    # COMPUTED PROPERTIES
    # =========================================================================
    @property
    def api_v1_url(self) -> str:
        """Versioned API root used by the HTTP client."""
        return f"{self.api_base_url}/api/v1"

    @property
    def scan_interval_seconds(self) -> float:
        """Target time between two decoded frames."""
        return 1.0 / self.scan_fps

    @property
    def log_path(self) -> Path:
        """
        Get log directory as Path object.

        Creates the directory if it doesn't exist.
        """
        path = Path(self.log_directory)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def token_path(self) -> Path:
        return Path(self.auth_token_file)

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS origins from JSON string to list.

        Returns:
            List of allowed origin strings
        """
        try:
            origins = json.loads(self.cors_origins)
            if isinstance(origins, list):
                return origins
            return ["*"]
        except json.JSONDecodeError:
            logger.warning(
                f"Invalid CORS origins JSON: {self.cors_origins}, "
                "defaulting to ['*']"
            )
            return ["*"]

    def ensure_directories(self) -> None:
        """Create the log directory if session logs are enabled."""
        if self.session_logs_enabled:
            self.log_path.mkdir(parents=True, exist_ok=True)

        logger.debug("Required directories created/verified")

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Settings(app_name={self.app_name!r}, "
            f"api_base_url={self.api_base_url!r}, "
            f"debug={self.debug})"
        )


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the global Settings instance (singleton pattern).

    Returns:
        Global Settings instance

    Example:
        >>> settings = get_settings()
        >>> print(settings.scan_fps)
        30
    """
    settings = Settings()

    settings.ensure_directories()

    if settings.debug:
        logger.info(f"Configuration loaded: {settings}")

    return settings
