"""
==============================================================================
WebSocket Package
==============================================================================

Real-time WebSocket handlers for the check-in kiosk.

Handlers:
---------
- checkin: Kiosk event feed and browser frame upload

==============================================================================
"""

from .checkin import router as checkin_router

__all__ = ["checkin_router"]
