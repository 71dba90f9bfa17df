"""
==============================================================================
Check-In Coordinator Module
==============================================================================

Turns decoded scan payloads into check-in requests, one at a time.

Cycle:
------
    decode ──► lock ──► stop camera ──► resolve schedule ──► POST check-in
                                                                 │
    start camera ◄── release lock ◄── clear overlay ◄── show result overlay

Guarantees:
-----------
- At most one check-in request in flight; payloads decoded while the lock
  is held are dropped, not queued
- Every outcome (success, rejection, network failure, exhausted retry,
  missing token) ends with the lock released and the camera restarted once
- Only a 429 is retried, exactly once
- After teardown, late results are ignored (no overlay, no callback)

==============================================================================
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from checkin_kiosk.config import Settings, get_settings
from checkin_kiosk.core import AppException, SessionStore
from checkin_kiosk.scanner import FrameSource, QRScanDriver, ScannerState
from checkin_kiosk.schemas.checkin import (
    CheckInRequest,
    CheckInResult,
    CheckInStats,
    Overlay,
    OverlayVariant,
    ScanContext,
)
from checkin_kiosk.services.api_client import CinemaApiClient
from checkin_kiosk.services.retry import RateLimitPolicy
from checkin_kiosk.services.schedule_resolver import ScheduleResolver


# Module logger
logger = logging.getLogger(__name__)


SuccessCallback = Callable[[Any], Any]
OverlayCallback = Callable[[Overlay], Any]
ToastCallback = Callable[[str, str, str], Any]


# =============================================================================
# OPERATOR MESSAGES
# =============================================================================

MSG_PROCESSING = "Processing..."
MSG_SUCCESS = "Check-in Successful! 🎉"
MSG_REJECTED = "Failed"
MSG_NETWORK = "Network Error"
MSG_NETWORK_TOAST = "Network error during check-in"
MSG_UNEXPECTED = "Check-in failed"
MSG_RESTART_FAILED = "Failed to restart scanner"
MSG_CAMERA_FAILED = "Camera failed."


class CheckInCoordinator:
    """
    Serializes scan payloads into check-ins against the booking API.

    Attributes:
        stats: Counters for this kiosk session
        started_at: When the coordinator was mounted

    Example:
        >>> coordinator = CheckInCoordinator(
        ...     driver, client, session,
        ...     context=ScanContext(schedule_id=7),
        ...     on_successful_scan=refresh_participants,
        ... )
        >>> await coordinator.start(OpenCVFrameSource(0))
        >>> ...
        >>> await coordinator.teardown()
    """

    def __init__(
        self,
        driver: QRScanDriver,
        client: CinemaApiClient,
        session: SessionStore,
        context: Optional[ScanContext] = None,
        on_successful_scan: Optional[SuccessCallback] = None,
        settings: Optional[Settings] = None,
        on_overlay: Optional[OverlayCallback] = None,
        on_toast: Optional[ToastCallback] = None,
        retry_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            driver: Scan driver this coordinator exclusively controls
            client: Booking API client
            session: Bearer token source
            context: Schedule/booking the kiosk was opened for
            on_successful_scan: Receives the server's ``data`` per successful check-in
            settings: Kiosk settings (global settings if None)
            on_overlay: Receives every overlay change
            on_toast: Receives (level, message, key) notifications
            retry_sleep: Sleep used before the rate-limit retry
        """
        self._settings = settings or get_settings()
        self._driver = driver
        self._client = client
        self._session = session
        self._context = context or ScanContext()
        self._on_successful_scan = on_successful_scan
        self._on_overlay = on_overlay
        self._on_toast = on_toast

        self._policy = RateLimitPolicy(
            self._settings.rate_limit_default_delay_seconds,
            max_delay=self._settings.rate_limit_max_delay_seconds,
            sleep=retry_sleep,
            on_retry=self._on_rate_limit_retry,
        )
        self._resolver = ScheduleResolver(client, self._policy)

        self._processing = False
        self._mounted = True
        self._overlay = Overlay()
        self._resume_task: Optional[asyncio.Task] = None

        self.stats = CheckInStats()
        self.started_at = datetime.now(timezone.utc)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def context(self) -> ScanContext:
        return self._context

    @property
    def overlay(self) -> Overlay:
        return self._overlay

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    @property
    def scanner_state(self) -> ScannerState:
        return self._driver.state

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self, source: FrameSource) -> None:
        """
        Acquire the camera and begin scanning.

        Raises:
            AppException: CAMERA_UNAVAILABLE; the driver stays in ERROR
        """
        try:
            await self._driver.initialize(
                source,
                on_decode=self.on_decode_payload,
                on_error=self._on_camera_error,
            )
        except AppException as e:
            self._show(Overlay(message=MSG_CAMERA_FAILED, variant=OverlayVariant.ERROR))
            self._toast("error", e.message, "camera")
            raise

        logger.info(f"✅ Check-in kiosk ready ({self._context.label()})")

    async def teardown(self) -> None:
        """
        Unmount: stop scanning and release the camera.

        An in-flight check-in is not cancelled; its result is ignored.
        """
        self._mounted = False

        await self._cancel_resume()
        await self._driver.teardown()
        logger.info(f"🛑 Check-in kiosk closed ({self._context.label()})")

    async def wait_idle(self) -> None:
        """Wait until any pending resume has run."""
        while self._resume_task is not None and not self._resume_task.done():
            await asyncio.wait({self._resume_task})

    # =========================================================================
    # SCAN HANDLING
    # =========================================================================

    async def on_decode_payload(self, raw: str) -> Optional[CheckInResult]:
        """
        Handle one decoded payload.

        Args:
            raw: Payload string as decoded from the frame

        Returns:
            The outcome, or None if the payload was dropped
        """
        if not self._mounted:
            return None

        if self._processing:
            self.stats.dropped += 1
            logger.debug("Scan dropped: a check-in is already in progress")
            return None

        self._processing = True
        self.stats.scans += 1

        try:
            # a resume still re-acquiring the camera must finish before stop
            await self._cancel_resume()
            await self._driver.stop()
            self._toast("info", MSG_PROCESSING, "processing")
            return await self._process(raw)
        except Exception as e:
            logger.exception(f"Unexpected check-in error: {e}")
            self.stats.failed += 1
            self._show(Overlay(message=MSG_UNEXPECTED, variant=OverlayVariant.ERROR))
            return CheckInResult(success=False, message=MSG_UNEXPECTED)
        finally:
            self._schedule_resume()

    async def _process(self, raw: str) -> CheckInResult:
        token = self._session.get_token()
        if not token:
            logger.warning("Check-in skipped: no session token")
            self.stats.failed += 1
            message = "Login required."
            self._show(Overlay(message=message, variant=OverlayVariant.ERROR))
            return CheckInResult(success=False, message=message)

        qr_payload = (raw or "").strip()
        logger.info(f"QR scanned: {qr_payload!r} ({self._context.label()})")

        schedule_id = await self._resolver.resolve(self._context, token)
        request = CheckInRequest(qr_code=qr_payload, schedule_id=schedule_id)

        try:
            result = await self._policy.call(
                lambda: self._client.check_in_by_qr(request, token),
                "check-in",
            )
        except AppException as e:
            return self._handle_failure(e)

        if result.success:
            self.stats.succeeded += 1
            logger.info(f"✅ Check-in successful: {qr_payload!r}")
            self._show(Overlay(message=MSG_SUCCESS, variant=OverlayVariant.SUCCESS))
            await self._notify_success(result.data)
        else:
            self.stats.rejected += 1
            message = result.message or MSG_REJECTED
            logger.info(f"✗ Check-in rejected: {message}")
            self._show(Overlay(message=message, variant=OverlayVariant.ERROR))
            self._toast("error", result.message or "Check-in failed", "rejected")

        return result

    def _handle_failure(self, error: AppException) -> CheckInResult:
        if error.code == "RATE_LIMITED":
            self.stats.rejected += 1
            message = error.message
            toast = error.message
        elif error.code == "LOGIN_REQUIRED":
            self.stats.failed += 1
            message = error.message
            toast = error.message
        else:
            self.stats.failed += 1
            message = MSG_NETWORK
            toast = MSG_NETWORK_TOAST

        logger.error(f"Check-in error: {error.code} {error.details or error.message}")
        self._show(Overlay(message=message, variant=OverlayVariant.ERROR))
        self._toast("error", toast, "network" if message == MSG_NETWORK else error.code)
        return CheckInResult(success=False, message=message)

    # =========================================================================
    # RESUME
    # =========================================================================

    async def _cancel_resume(self) -> None:
        task, self._resume_task = self._resume_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def _schedule_resume(self) -> None:
        if self._resume_task is not None and not self._resume_task.done():
            self._resume_task.cancel()

        if not self._mounted:
            self._processing = False
            return

        self._resume_task = asyncio.create_task(self._resume_after_delay())

    async def _resume_after_delay(self) -> None:
        await asyncio.sleep(self._settings.result_display_seconds)

        self._show(Overlay())
        self._processing = False

        await asyncio.sleep(self._settings.restart_settle_seconds)

        # a newer check-in owns the camera now and will resume it itself
        if not self._mounted or self._processing:
            return

        try:
            await self._driver.start(self.on_decode_payload)
        except AppException as e:
            logger.error(f"Error restarting scanner: {e.code} {e.message}")
            self._show(Overlay(message=MSG_RESTART_FAILED, variant=OverlayVariant.ERROR))
            self._toast("error", MSG_RESTART_FAILED, "restart")

    # =========================================================================
    # FEEDBACK
    # =========================================================================

    def _show(self, overlay: Overlay) -> None:
        if not self._mounted:
            return

        self._overlay = overlay
        if self._on_overlay is not None:
            try:
                self._on_overlay(overlay)
            except Exception as e:
                logger.error(f"Overlay listener failed: {e}")

    def _toast(self, level: str, message: str, key: str) -> None:
        if not self._mounted or self._on_toast is None:
            return
        try:
            self._on_toast(level, message, key)
        except Exception as e:
            logger.error(f"Toast listener failed: {e}")

    async def _notify_success(self, data: Any) -> None:
        if not self._mounted or self._on_successful_scan is None:
            return
        try:
            result = self._on_successful_scan(data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Successful scan callback failed: {e}")

    def _on_rate_limit_retry(self, delay: float, description: str) -> None:
        message = f"Rate limited by server. Retrying in {delay:g}s"
        self._show(Overlay(message=message, variant=OverlayVariant.WARNING))
        self._toast("warning", message, "rate-limit")

    def _on_camera_error(self, error: AppException) -> None:
        logger.error(f"❌ Camera error: {error.details or error.message}")
        self._show(Overlay(message=MSG_CAMERA_FAILED, variant=OverlayVariant.ERROR))
        self._toast("error", MSG_CAMERA_FAILED, "camera")
