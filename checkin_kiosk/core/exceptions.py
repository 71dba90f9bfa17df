"""
Kiosk Exception Handling

Single AppException class for all kiosk errors with FastAPI integration.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# Module logger
logger = logging.getLogger(__name__)


class AppException(Exception):
    """
    Unified exception for all kiosk error scenarios.

    Provides a consistent error format for the REST surface and a
    machine-readable ``code`` the check-in coordinator branches on.

    Usage:
        raise AppException("Login required.", "LOGIN_REQUIRED", 401)
        raise AppException("Too many requests", "RATE_LIMITED", 429, {"retry_after": 5})

    Error Codes:
        Camera:
            - CAMERA_UNAVAILABLE (503)
            - CAMERA_FAILURE (500)
            - SCANNER_NOT_READY (409)

        Upstream API:
            - LOGIN_REQUIRED (401)
            - RATE_LIMITED (429)
            - NETWORK_ERROR (502)
            - MALFORMED_RESPONSE (502)

        Kiosk Session:
            - SESSION_NOT_FOUND (404)
            - SESSION_ACTIVE (409)

        General:
            - INTERNAL_ERROR (500)
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize kiosk exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "RATE_LIMITED")
            status_code: HTTP status code (default: 400)
            details: Additional error context (optional)
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        error_dict = {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    FastAPI exception handler for AppException.

    Converts AppException to consistent JSON error response.
    """
    headers = None
    retry_after = exc.details.get("retry_after")
    if exc.code == "RATE_LIMITED" and retry_after is not None:
        headers = {"Retry-After": str(int(retry_after))}

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything unexpected and answer with the INTERNAL_ERROR envelope."""
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    error = internal_error()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================
# CONVENIENCE FACTORY FUNCTIONS
# ============================================

def camera_unavailable(reason: Optional[str] = None) -> AppException:
    """Create camera unavailable exception (no permission or no device)."""
    details = {"reason": reason} if reason else {}
    return AppException("Camera unavailable", "CAMERA_UNAVAILABLE", 503, details)


def camera_failure(reason: Optional[str] = None) -> AppException:
    """Create camera failure exception (device lost mid-session)."""
    details = {"reason": reason} if reason else {}
    return AppException("Camera failed.", "CAMERA_FAILURE", 500, details)


def scanner_not_ready(state: str) -> AppException:
    """Create scanner not ready exception."""
    return AppException(
        f"Scanner cannot start from state '{state}'",
        "SCANNER_NOT_READY",
        409,
        {"state": state}
    )


def login_required() -> AppException:
    """Create login required exception (no usable bearer token)."""
    return AppException("Login required.", "LOGIN_REQUIRED", 401)


def rate_limited(retry_after: Optional[float] = None) -> AppException:
    """Create rate limited exception carrying the server's retry delay."""
    details = {"retry_after": retry_after} if retry_after is not None else {}
    return AppException(
        "Too many requests. Please wait and scan again.",
        "RATE_LIMITED",
        429,
        details
    )


def network_error(reason: Optional[str] = None) -> AppException:
    """Create network error exception."""
    details = {"reason": reason} if reason else {}
    return AppException("Network Error", "NETWORK_ERROR", 502, details)


def malformed_response(reason: Optional[str] = None) -> AppException:
    """Create malformed upstream response exception."""
    details = {"reason": reason} if reason else {}
    return AppException(
        "Unexpected response from booking API",
        "MALFORMED_RESPONSE",
        502,
        details
    )


def session_not_found() -> AppException:
    """Create no active kiosk session exception."""
    return AppException("No active check-in session", "SESSION_NOT_FOUND", 404)


def session_active() -> AppException:
    """Create kiosk session already running exception."""
    return AppException(
        "A check-in session is already running",
        "SESSION_ACTIVE",
        409
    )


def internal_error(message: str = "Internal server error") -> AppException:
    """Create internal server error exception."""
    return AppException(message, "INTERNAL_ERROR", 500)
