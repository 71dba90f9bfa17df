"""
==============================================================================
API v1 Endpoints
==============================================================================

Version 1 of the REST API.

Routers:
--------
- health: Health check endpoints
- checkin: Kiosk session, status and manual scan entry

==============================================================================
"""

from . import health, checkin

__all__ = ["health", "checkin"]
