"""
==============================================================================
Schemas Package
==============================================================================

Pydantic models for upstream API bodies, kiosk state and REST responses.

==============================================================================
"""

from .checkin import (
    OverlayVariant,
    Overlay,
    CheckInRequest,
    CheckInResult,
    ScheduleRecord,
    BookingRecord,
    ScanContext,
    CheckInStats,
    StartSessionRequest,
    ManualScanRequest,
    SessionStatusResponse,
    ManualScanResponse,
)

__all__ = [
    "OverlayVariant",
    "Overlay",
    "CheckInRequest",
    "CheckInResult",
    "ScheduleRecord",
    "BookingRecord",
    "ScanContext",
    "CheckInStats",
    "StartSessionRequest",
    "ManualScanRequest",
    "SessionStatusResponse",
    "ManualScanResponse",
]
