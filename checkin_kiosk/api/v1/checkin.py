"""
==============================================================================
Check-In Endpoints
==============================================================================

Kiosk session lifecycle, status, and manual scan entry.

==============================================================================
"""

from fastapi import APIRouter, Depends

from checkin_kiosk.services.kiosk_service import KioskService, get_kiosk_service
from checkin_kiosk.schemas.checkin import (
    ManualScanRequest,
    ManualScanResponse,
    SessionStatusResponse,
    StartSessionRequest,
)


router = APIRouter(prefix="/checkin", tags=["Check-In"])


class CheckInController:
    """Controller for kiosk session operations."""
    
    def __init__(self, kiosk: KioskService):
        self._kiosk = kiosk
    
    async def open_session(self, data: StartSessionRequest) -> SessionStatusResponse:
        """Mount the kiosk and start scanning."""
        return await self._kiosk.start_session(data)
    
    async def close_session(self) -> SessionStatusResponse:
        """Unmount the kiosk."""
        return await self._kiosk.stop_session()
    
    def status(self) -> SessionStatusResponse:
        return self._kiosk.status()
    
    async def scan(self, data: ManualScanRequest) -> ManualScanResponse:
        """Submit a payload through the check-in path."""
        return await self._kiosk.submit_payload(data.payload)


@router.post("/session", response_model=SessionStatusResponse)
async def start_session(
    data: StartSessionRequest,
    kiosk: KioskService = Depends(get_kiosk_service)
):
    """
    Open a check-in session.
    
    - **schedule_id**: Schedule the kiosk checks guests into
    - **booking_id**: Booking to derive the schedule from
    - **source**: "camera" (local camera) or "stream" (frames over WebSocket)
    - **token**: Bearer token handed over from the operator login
    """
    controller = CheckInController(kiosk)
    return await controller.open_session(data)


@router.delete("/session", response_model=SessionStatusResponse)
async def stop_session(kiosk: KioskService = Depends(get_kiosk_service)):
    """Close the active check-in session."""
    controller = CheckInController(kiosk)
    return await controller.close_session()


@router.get("/status", response_model=SessionStatusResponse)
async def get_status(kiosk: KioskService = Depends(get_kiosk_service)):
    """Get scanner state, overlay, and counters of the active session."""
    controller = CheckInController(kiosk)
    return controller.status()


@router.post("/scan", response_model=ManualScanResponse)
async def submit_scan(
    data: ManualScanRequest,
    kiosk: KioskService = Depends(get_kiosk_service)
):
    """
    Submit a payload typed by the operator or read by a keyboard-wedge scanner.
    
    Dropped (not queued) while another check-in is in flight.
    """
    controller = CheckInController(kiosk)
    return await controller.scan(data)
