"""
==============================================================================
QR Scan Driver Module
==============================================================================

Owns the camera resource and the continuous decode loop, and turns frames
into scan payload strings for the check-in coordinator.

State Machine:
--------------
    UNINITIALIZED ──initialize──► SCANNING ──stop──► STOPPED
                                     ▲                  │
                                     └──────start───────┘

    any ──camera failure──► ERROR          (terminal until a new driver)
    any ──teardown────────► UNINITIALIZED  (terminal)

Decoding:
---------
- pyzbar restricted to QR_CODE and CODE128
- Only the centered scan box is decoded (fewer false positives, less CPU)
- Frames without a readable code are noise and never surface as errors

==============================================================================
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, List, Optional, Set

import cv2
import numpy as np
from pyzbar.pyzbar import ZBarSymbol, decode

from checkin_kiosk.config import Settings, get_settings
from checkin_kiosk.core import AppException, exceptions
from checkin_kiosk.scanner.sources import FrameSource


# Module logger
logger = logging.getLogger(__name__)


DecodeCallback = Callable[[str], Any]
ErrorCallback = Callable[[AppException], Any]


class ScannerState(str, Enum):
    """Lifecycle state of the scan driver."""
    UNINITIALIZED = "uninitialized"
    SCANNING = "scanning"
    STOPPED = "stopped"
    ERROR = "error"


class ScanRegion:
    """
    Centered box of the frame that is handed to the decoder.

    Example:
        >>> region = ScanRegion(280, 200)
        >>> region.crop(np.zeros((480, 640, 3), np.uint8)).shape
        (200, 280, 3)
    """

    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height

    def crop(self, frame: np.ndarray) -> np.ndarray:
        frame_h, frame_w = frame.shape[:2]
        w = min(self.width, frame_w)
        h = min(self.height, frame_h)
        x = (frame_w - w) // 2
        y = (frame_h - h) // 2
        return frame[y:y + h, x:x + w]


class QRDecoder:
    """pyzbar decoder for QR codes and Code 128 barcodes."""

    SYMBOLS = [ZBarSymbol.QRCODE, ZBarSymbol.CODE128]

    def decode(self, frame: np.ndarray) -> List[str]:
        """
        Decode all codes visible in a frame.

        Args:
            frame: OpenCV image (BGR or grayscale)

        Returns:
            Decoded payload strings, empty on noise
        """
        if frame is None or frame.size == 0:
            return []

        try:
            if frame.ndim == 3:
                frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
            barcodes = decode(frame, symbols=self.SYMBOLS)
        except Exception as e:
            logger.debug(f"Scan noise: {e}")
            return []

        payloads = []
        for barcode in barcodes:
            try:
                payloads.append(barcode.data.decode("utf-8"))
            except UnicodeDecodeError:
                logger.debug(f"Scan noise: undecodable {barcode.type} payload")
        return payloads


class QRScanDriver:
    """
    Camera lifecycle and continuous decode loop.

    start() and stop() are safe to call repeatedly; a stop() that arrives
    while another stop() is still tearing down is a no-op.

    Example:
        >>> driver = QRScanDriver()
        >>> await driver.initialize(OpenCVFrameSource(0), on_decode=handle)
        >>> await driver.stop()
        >>> await driver.start(handle)
        >>> await driver.teardown()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        decoder: Optional[QRDecoder] = None
    ) -> None:
        self._settings = settings or get_settings()
        self._decoder = decoder or QRDecoder()
        self._region = ScanRegion(
            self._settings.scan_box_width,
            self._settings.scan_box_height
        )
        self._source: Optional[FrameSource] = None
        self._state = ScannerState.UNINITIALIZED
        self._task: Optional[asyncio.Task] = None
        self._on_decode: Optional[DecodeCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._callbacks: Set[asyncio.Task] = set()
        self._stopping = False
        self._torn_down = False

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state == ScannerState.SCANNING

    @property
    def source(self) -> Optional[FrameSource]:
        return self._source

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(
        self,
        source: FrameSource,
        on_decode: Optional[DecodeCallback] = None,
        on_error: Optional[ErrorCallback] = None
    ) -> None:
        """
        Acquire the camera and, when a callback is given, start decoding.

        Args:
            source: Camera capability to bind to
            on_decode: Called with each decoded payload
            on_error: Called once if the camera fails mid-session

        Raises:
            AppException: CAMERA_UNAVAILABLE; the driver is left in ERROR
        """
        if self._torn_down:
            raise exceptions.scanner_not_ready(self._state.value)

        self._source = source
        self._on_error = on_error

        try:
            await asyncio.to_thread(source.open)
        except AppException as e:
            self._state = ScannerState.ERROR
            logger.error(f"❌ Camera unavailable: {e.details or e.message}")
            raise
        except Exception as e:
            self._state = ScannerState.ERROR
            logger.error(f"❌ Camera unavailable: {e}")
            raise exceptions.camera_unavailable(str(e)) from e

        self._state = ScannerState.STOPPED
        logger.info(f"✅ Scanner initialized ({source.name})")

        if on_decode is not None:
            await self.start(on_decode)

    async def start(self, on_decode: DecodeCallback) -> None:
        """
        Begin continuous decoding. No-op if already scanning.

        Raises:
            AppException: SCANNER_NOT_READY from ERROR/UNINITIALIZED,
                CAMERA_UNAVAILABLE if the camera cannot be re-acquired
        """
        if self._torn_down:
            logger.debug("Start ignored: scanner torn down")
            return

        if self._state == ScannerState.SCANNING:
            return

        if self._state != ScannerState.STOPPED or self._source is None:
            raise exceptions.scanner_not_ready(self._state.value)

        self._on_decode = on_decode

        if not self._source.is_open:
            opening = asyncio.ensure_future(asyncio.to_thread(self._source.open))
            try:
                await asyncio.shield(opening)
            except asyncio.CancelledError:
                # the open thread keeps running; release only once it is done
                await asyncio.gather(opening, return_exceptions=True)
                await asyncio.to_thread(self._source.release)
                logger.info("Scanner start cancelled, camera released")
                raise
            except AppException:
                self._state = ScannerState.ERROR
                raise
            except Exception as e:
                self._state = ScannerState.ERROR
                raise exceptions.camera_unavailable(str(e)) from e

        # teardown may have run while the camera was being re-acquired
        if self._torn_down:
            await asyncio.to_thread(self._source.release)
            return

        self._state = ScannerState.SCANNING
        self._task = asyncio.create_task(self._decode_loop())
        logger.info("▶️ Scanning started")

    async def stop(self) -> None:
        """Stop the decode loop and release the active camera stream."""
        if self._stopping:
            return

        self._stopping = True
        try:
            await self._cancel_loop()

            if self._source is not None and self._source.is_open:
                await asyncio.to_thread(self._source.release)

            if self._state == ScannerState.SCANNING:
                self._state = ScannerState.STOPPED
                logger.info("⏸️ Scanning stopped")
        except Exception as e:
            logger.error(f"Error stopping scanner: {e}")
        finally:
            self._stopping = False

    async def teardown(self) -> None:
        """Release everything. Runs even if scanning never started."""
        self._torn_down = True
        await self._cancel_loop()

        if self._source is not None:
            try:
                await asyncio.to_thread(self._source.release)
            except Exception as e:
                logger.error(f"Error releasing camera: {e}")

        self._state = ScannerState.UNINITIALIZED
        self._on_decode = None
        self._on_error = None
        logger.info("🛑 Scanner torn down")

    # =========================================================================
    # DECODE LOOP
    # =========================================================================

    async def _cancel_loop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _decode_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._settings.scan_interval_seconds

        while self._state == ScannerState.SCANNING:
            started = loop.time()

            try:
                payloads = await asyncio.to_thread(self._read_and_decode)
            except asyncio.CancelledError:
                raise
            except AppException as e:
                await self._fail(e)
                return
            except Exception as e:
                await self._fail(exceptions.camera_failure(str(e)))
                return

            for payload in payloads:
                self._dispatch(payload)
                if self._state != ScannerState.SCANNING:
                    break

            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    def _read_and_decode(self) -> List[str]:
        """Read one frame and decode its scan box (runs in a worker thread)."""
        frame = self._source.read()
        if frame is None:
            return []
        return self._decoder.decode(self._region.crop(frame))

    def _dispatch(self, payload: str) -> None:
        callback = self._on_decode
        if callback is None:
            return

        try:
            result = callback(payload)
        except Exception as e:
            logger.error(f"Decode callback error: {e}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callbacks.add(task)
            task.add_done_callback(self._callbacks.discard)

    async def _fail(self, error: AppException) -> None:
        self._state = ScannerState.ERROR
        self._task = None
        logger.error(f"❌ Camera failure: {error.details or error.message}")

        try:
            await asyncio.to_thread(self._source.release)
        except Exception as e:
            logger.error(f"Error releasing camera: {e}")

        if self._on_error is not None:
            try:
                result = self._on_error(error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Camera error callback failed: {e}")
