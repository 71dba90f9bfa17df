"""
==============================================================================
Core Package
==============================================================================

Core utilities and infrastructure for the kiosk.

This package provides:
- Custom exception handling with consistent error responses
- Exception factory functions for camera, upstream and session errors
- Bearer token lookup for booking API calls

Modules:
--------
- exceptions: AppException class and error factory functions
- session: SessionStore for the operator's bearer token

Usage:
------
    from checkin_kiosk.core import AppException, SessionStore
    from checkin_kiosk.core import exceptions

    raise exceptions.login_required()

==============================================================================
"""

from .exceptions import (
    AppException,
    register_exception_handlers,
)
from .session import SessionStore

__all__ = [
    # Exceptions
    "AppException",
    "register_exception_handlers",
    # Session
    "SessionStore",
]
