"""
==============================================================================
Configuration Package
==============================================================================

Centralized configuration management using Pydantic Settings.

Usage:
------
    from checkin_kiosk.config import get_settings, Settings

    settings = get_settings()
    print(settings.api_v1_url)
    print(settings.result_display_seconds)

==============================================================================
"""

from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
