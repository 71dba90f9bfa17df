"""
==============================================================================
Health Check Endpoints
==============================================================================

System health status endpoints for monitoring and orchestration.

==============================================================================
"""

from fastapi import APIRouter, Depends

from checkin_kiosk.scanner import ScannerState
from checkin_kiosk.services.kiosk_service import KioskService, get_kiosk_service


router = APIRouter(prefix="/health", tags=["Health"])


class HealthController:
    """Controller for health check operations."""
    
    def __init__(self, kiosk: KioskService):
        self._kiosk = kiosk
    
    def check_scanner(self) -> str:
        """Scanner state of the active session, or idle."""
        status = self._kiosk.status()
        if not status.active:
            return "idle"
        return status.scanner_state
    
    def get_health(self) -> dict:
        """Get full health status."""
        scanner = self.check_scanner()
        overall = "degraded" if scanner == ScannerState.ERROR.value else "healthy"
        
        return {
            "status": overall,
            "components": {
                "api": "healthy",
                "scanner": scanner
            },
            "details": {
                "session_active": self._kiosk.is_active,
                "token_available": self._kiosk.session_store.get_token() is not None
            }
        }


@router.get("")
async def health_check(kiosk: KioskService = Depends(get_kiosk_service)):
    """
    Health check endpoint.
    
    Returns API status and the scanner state of the active session.
    """
    controller = HealthController(kiosk)
    return controller.get_health()


@router.get("/ready")
async def readiness_check():
    """Readiness probe for container orchestration."""
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """Liveness probe for container orchestration."""
    return {"alive": True}
