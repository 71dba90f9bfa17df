"""
==============================================================================
Services Package - Check-In Logic Layer
==============================================================================

Service classes between the API endpoints and the booking backend.

This package provides:
- CinemaApiClient: Async client for the booking API
- RateLimitPolicy: Single retry after an HTTP 429
- ScheduleResolver: Schedule id lookup for the check-in request
- CheckInCoordinator: One-at-a-time check-in cycle around the scan driver
- KioskService: Session ownership and event fan-out

Architecture Pattern: Service Layer
----------------------------------
    ┌─────────────────┐
    │ API / WebSocket │
    └────────┬────────┘
             │
    ┌────────▼────────┐
    │  KioskService   │  ← Session lifecycle
    └────────┬────────┘
             │
    ┌────────▼────────┐
    │   Coordinator   │  ← Check-in cycle
    └────────┬────────┘
             │
    ┌────────▼────────┐
    │ CinemaApiClient │  ← Booking API (httpx)
    └─────────────────┘

==============================================================================
"""

from .api_client import CinemaApiClient
from .retry import RateLimitPolicy
from .schedule_resolver import ScheduleResolver
from .checkin_coordinator import CheckInCoordinator
from .kiosk_service import KioskService, get_kiosk_service

__all__ = [
    "CinemaApiClient",
    "RateLimitPolicy",
    "ScheduleResolver",
    "CheckInCoordinator",
    "KioskService",
    "get_kiosk_service",
]
