"""
==============================================================================
Scanner Package - QR Detection
==============================================================================

Camera lifecycle and QR/barcode decoding with OpenCV and pyzbar.

Classes:
--------
- QRScanDriver: Camera lifecycle and continuous decode loop
- QRDecoder: pyzbar decoding restricted to QR_CODE and CODE128
- OpenCVFrameSource / StreamFrameSource: Camera capabilities

==============================================================================
"""

from .core import QRDecoder, QRScanDriver, ScannerState, ScanRegion
from .sources import FrameSource, OpenCVFrameSource, StreamFrameSource

__all__ = [
    "QRScanDriver",
    "QRDecoder",
    "ScannerState",
    "ScanRegion",
    "FrameSource",
    "OpenCVFrameSource",
    "StreamFrameSource",
]
