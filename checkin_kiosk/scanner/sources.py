"""
==============================================================================
Frame Sources Module
==============================================================================

Camera capability used by the scan driver.

Sources:
--------
- OpenCVFrameSource: Local camera via cv2.VideoCapture
- StreamFrameSource: Frames pushed by a browser over the WebSocket

Contract:
---------
- open():     acquire the device, raise CAMERA_UNAVAILABLE on failure
- read():     next frame, or None when no frame is ready yet;
              raise CAMERA_FAILURE when the device is lost
- release():  release the device; safe to call when not open

read() and release() are called from a worker thread by the scan driver.

==============================================================================
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import Optional

import cv2
import numpy as np

from checkin_kiosk.core import exceptions


# Module logger
logger = logging.getLogger(__name__)


class FrameSource:
    """Base class for anything that yields camera frames."""

    name = "source"

    def open(self) -> None:
        raise NotImplementedError

    def read(self) -> Optional[np.ndarray]:
        raise NotImplementedError

    def release(self) -> None:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        raise NotImplementedError


class OpenCVFrameSource(FrameSource):
    """
    Local camera read through OpenCV.

    Example:
        >>> source = OpenCVFrameSource(camera_index=0)
        >>> source.open()
        >>> frame = source.read()
        >>> source.release()
    """

    name = "camera"

    def __init__(self, camera_index: int = 0) -> None:
        self._camera_index = camera_index
        self._cap: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()

    def open(self) -> None:
        with self._lock:
            if self._cap is not None:
                return

            cap = cv2.VideoCapture(self._camera_index)
            if not cap.isOpened():
                cap.release()
                logger.error(f"Cannot open camera {self._camera_index}")
                raise exceptions.camera_unavailable(
                    f"camera {self._camera_index} could not be opened"
                )

            self._cap = cap
            logger.info(f"📷 Camera {self._camera_index} acquired")

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._cap is None:
                return None

            ret, frame = self._cap.read()
            if not ret:
                logger.error(f"Failed to read frame from camera {self._camera_index}")
                raise exceptions.camera_failure("frame read failed")

            return frame

    def release(self) -> None:
        with self._lock:
            if self._cap is None:
                return
            self._cap.release()
            self._cap = None
            logger.info(f"📷 Camera {self._camera_index} released")

    @property
    def is_open(self) -> bool:
        return self._cap is not None


class StreamFrameSource(FrameSource):
    """
    Frames captured by the operator's browser and pushed over the WebSocket.

    Only the newest frame is kept: a frame that was not read before the next
    one arrives is overwritten.
    """

    name = "stream"

    def __init__(self) -> None:
        self._frame: Optional[np.ndarray] = None
        self._open = False
        self._lock = threading.Lock()

    def open(self) -> None:
        with self._lock:
            self._open = True
        logger.info("📷 Browser frame stream acquired")

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            frame, self._frame = self._frame, None
            return frame

    def release(self) -> None:
        with self._lock:
            self._open = False
            self._frame = None
        logger.info("📷 Browser frame stream released")

    @property
    def is_open(self) -> bool:
        return self._open

    def push_frame(self, frame: np.ndarray) -> bool:
        """
        Store a decoded frame.

        Returns:
            False when the stream is not open and the frame was discarded
        """
        with self._lock:
            if not self._open:
                return False
            self._frame = frame
            return True

    def push_encoded(self, encoded: str) -> bool:
        """
        Decode a base64 JPEG/PNG (optionally a data URL) and store it.

        Returns:
            True if a frame was stored
        """
        if "," in encoded and encoded.startswith("data:"):
            encoded = encoded.split(",", 1)[1]

        try:
            img_data = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError) as e:
            logger.debug(f"Discarding undecodable frame: {e}")
            return False

        nparr = np.frombuffer(img_data, np.uint8)
        if nparr.size == 0:
            return False

        frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if frame is None:
            logger.debug("Discarding frame that is not an image")
            return False

        return self.push_frame(frame)
