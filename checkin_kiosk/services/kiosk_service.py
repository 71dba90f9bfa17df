"""
==============================================================================
Kiosk Service Module
==============================================================================

Hosts the check-in kiosk: at most one session (scan driver + coordinator +
frame source) at a time, plus the event fan-out to operator consoles
connected over the WebSocket.

Session Lifecycle:
-----------------
    start_session ──► scanning ... check-ins ... ──► stop_session
         │                                              │
         └── camera unavailable: session kept in ERROR   └── summary log

Events:
-------
- {"type": "overlay", "message", "variant", "color"}
- {"type": "checkin", "data"}           one per successful check-in
- {"type": "toast", "level", "message"}
- {"type": "scanner", "state"}

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Set

import httpx

from checkin_kiosk.config import Settings, get_settings
from checkin_kiosk.core import SessionStore, exceptions
from checkin_kiosk.scanner import (
    FrameSource,
    OpenCVFrameSource,
    QRScanDriver,
    StreamFrameSource,
)
from checkin_kiosk.schemas.checkin import (
    ManualScanResponse,
    Overlay,
    SessionStatusResponse,
    StartSessionRequest,
)
from checkin_kiosk.services.api_client import CinemaApiClient
from checkin_kiosk.services.checkin_coordinator import CheckInCoordinator
from checkin_kiosk.utils import CheckInSessionLogger, ToastThrottle


# Module logger
logger = logging.getLogger(__name__)


# Toast keys that repeat in bursts while something is down
THROTTLED_TOASTS = {"network", "camera", "restart"}

SUBSCRIBER_QUEUE_SIZE = 100


class KioskService:
    """
    Owner of the active check-in session.

    Example:
        >>> kiosk = KioskService()
        >>> await kiosk.start_session(StartSessionRequest(schedule_id=7))
        >>> await kiosk.submit_payload("QR123")
        >>> await kiosk.stop_session()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        source_factory: Optional[Callable[[str], FrameSource]] = None
    ) -> None:
        """
        Initialize the kiosk service.

        Args:
            settings: Kiosk settings (global settings if None)
            transport: httpx transport for the booking API client
            source_factory: Builds a frame source from "camera"/"stream"
        """
        self._settings = settings or get_settings()
        self._transport = transport
        self._source_factory = source_factory or self._build_source
        self._session_store = SessionStore(self._settings)
        self._throttle = ToastThrottle(self._settings.toast_throttle_seconds)
        self._client: Optional[CinemaApiClient] = None
        self._coordinator: Optional[CheckInCoordinator] = None
        self._driver: Optional[QRScanDriver] = None
        self._source: Optional[FrameSource] = None
        self._subscribers: Set[asyncio.Queue] = set()
        self._lock = asyncio.Lock()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client(self) -> CinemaApiClient:
        if self._client is None:
            self._client = CinemaApiClient(self._settings, transport=self._transport)
        return self._client

    @property
    def session_store(self) -> SessionStore:
        return self._session_store

    @property
    def coordinator(self) -> Optional[CheckInCoordinator]:
        return self._coordinator

    @property
    def is_active(self) -> bool:
        return self._coordinator is not None

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    async def start_session(self, request: StartSessionRequest) -> SessionStatusResponse:
        """
        Open the kiosk for a schedule or booking and start scanning.

        Raises:
            AppException: SESSION_ACTIVE if a session is running,
                CAMERA_UNAVAILABLE if the camera cannot be acquired
        """
        async with self._lock:
            if self._coordinator is not None:
                raise exceptions.session_active()

            if request.token:
                self._session_store.set_token(request.token)

            source = self._source_factory(request.source)
            driver = QRScanDriver(self._settings)
            coordinator = CheckInCoordinator(
                driver,
                self.client,
                self._session_store,
                context=request.context,
                on_successful_scan=self._publish_checkin,
                settings=self._settings,
                on_overlay=self._publish_overlay,
                on_toast=self._publish_toast,
            )

            self._coordinator = coordinator
            self._driver = driver
            self._source = source

            logger.info(f"📱 Starting check-in session ({request.context.label()}, {source.name})")

            try:
                await coordinator.start(source)
            finally:
                self._publish({"type": "scanner", "state": driver.state.value})

            return self.status()

    async def stop_session(self) -> SessionStatusResponse:
        """
        Close the active session.

        Returns:
            Final status of the closed session

        Raises:
            AppException: SESSION_NOT_FOUND
        """
        async with self._lock:
            coordinator = self._coordinator
            if coordinator is None:
                raise exceptions.session_not_found()

            await coordinator.teardown()
            final = self.status()
            final.active = False

            self._coordinator = None
            self._driver = None
            self._source = None

            self._publish({"type": "scanner", "state": coordinator.scanner_state.value})
            self._write_session_log(coordinator)

            return final

    async def shutdown(self) -> None:
        """Close any session and the HTTP client."""
        if self._coordinator is not None:
            await self.stop_session()

        if self._client is not None:
            await self._client.aclose()
            self._client = None

        logger.info("✅ Kiosk service shut down")

    # =========================================================================
    # INPUT
    # =========================================================================

    async def submit_payload(self, raw: str) -> ManualScanResponse:
        """
        Feed a manually entered payload through the check-in path.

        Raises:
            AppException: SESSION_NOT_FOUND
        """
        coordinator = self._coordinator
        if coordinator is None:
            raise exceptions.session_not_found()

        result = await coordinator.on_decode_payload(raw)
        if result is None:
            return ManualScanResponse(
                success=False,
                dropped=True,
                message="A check-in is already in progress"
            )

        return ManualScanResponse(
            success=result.success,
            message=result.message,
            data=result.data
        )

    def push_frame(self, encoded: str) -> bool:
        """Hand a browser-captured frame to the stream source."""
        if not isinstance(self._source, StreamFrameSource):
            return False
        return self._source.push_encoded(encoded)

    # =========================================================================
    # STATUS
    # =========================================================================

    def status(self) -> SessionStatusResponse:
        coordinator = self._coordinator
        if coordinator is None:
            return SessionStatusResponse(active=False)

        return SessionStatusResponse(
            active=True,
            scanner_state=coordinator.scanner_state.value,
            processing=coordinator.is_processing,
            overlay=coordinator.overlay,
            context=coordinator.context,
            stats=coordinator.stats.model_copy(),
        )

    # =========================================================================
    # EVENT FAN-OUT
    # =========================================================================

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def _publish(self, event: Dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropping {event['type']} event")

    def _publish_overlay(self, overlay: Overlay) -> None:
        self._publish(overlay.to_event())

    def _publish_checkin(self, data: Any) -> None:
        self._publish({"type": "checkin", "data": data})

    def _publish_toast(self, level: str, message: str, key: str) -> None:
        if key in THROTTLED_TOASTS and not self._throttle.allow(key):
            return
        self._publish({"type": "toast", "level": level, "message": message})

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _build_source(self, kind: str) -> FrameSource:
        if kind == "stream":
            return StreamFrameSource()
        return OpenCVFrameSource(self._settings.camera_index)

    def _write_session_log(self, coordinator: CheckInCoordinator) -> None:
        if not self._settings.session_logs_enabled:
            return
        try:
            CheckInSessionLogger(self._settings.log_path).generate_log(
                coordinator.context,
                coordinator.stats,
                coordinator.started_at,
            )
        except OSError as e:
            logger.error(f"❌ Failed to write session log: {e}")


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

@lru_cache(maxsize=1)
def get_kiosk_service() -> KioskService:
    """Get the global KioskService instance (FastAPI dependency)."""
    return KioskService()
