"""
==============================================================================
Utilities Package
==============================================================================

Utility classes for the kiosk.

Modules:
--------
- session_logger: Session summary log file generation
- notifications: Duplicate toast suppression

==============================================================================
"""

from .notifications import ToastThrottle
from .session_logger import CheckInSessionLogger

__all__ = [
    "ToastThrottle",
    "CheckInSessionLogger",
]
