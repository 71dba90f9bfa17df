"""
==============================================================================
Cinema API Client Module
==============================================================================

Async HTTP client for the three booking API calls the kiosk makes.

Endpoints:
----------
- GET  /bookings/{id}                                   (schedule fallback)
- GET  /schedules?date=...&program_id=...&paginate=false (schedule fallback)
- POST /bookings/checkin-by-qr                          (check-in)

Error Policy:
-------------
Every failure leaves this module as an AppException:

- 429               -> RATE_LIMITED (details.retry_after from Retry-After)
- 401               -> LOGIN_REQUIRED
- timeout/transport -> NETWORK_ERROR
- non-JSON body     -> MALFORMED_RESPONSE

The check-in endpoint answers application rejections with
``{"success": false, "message": ...}`` on a 4xx status; that body is a
result, not an error, and is returned as a CheckInResult.

==============================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from checkin_kiosk.config import Settings, get_settings
from checkin_kiosk.core import exceptions
from checkin_kiosk.schemas.checkin import (
    BookingRecord,
    CheckInRequest,
    CheckInResult,
    ScheduleRecord,
)


# Module logger
logger = logging.getLogger(__name__)


CHECKIN_PATH = "/bookings/checkin-by-qr"


class CinemaApiClient:
    """
    Thin async wrapper around the booking API.

    Attributes:
        _client: Shared httpx.AsyncClient rooted at ``{api_base_url}/api/v1``

    Example:
        >>> client = CinemaApiClient()
        >>> result = await client.check_in_by_qr(
        ...     CheckInRequest(qr_code="QR123", schedule_id=7), token="12|abc"
        ... )
        >>> await client.aclose()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Kiosk settings (global settings if None)
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self._settings = settings or get_settings()
        self._client = httpx.AsyncClient(
            base_url=self._settings.api_v1_url,
            timeout=self._settings.request_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        logger.debug(f"API client rooted at {self._settings.api_v1_url}")

    async def aclose(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    async def get_booking(self, booking_id: int, token: str) -> BookingRecord:
        """
        Fetch a booking.

        Args:
            booking_id: Booking primary key
            token: Bearer token

        Returns:
            BookingRecord with whatever schedule fields the API provided
        """
        response = await self._send("GET", f"/bookings/{booking_id}", token)
        self._raise_for_status(response)

        body = self._unwrap(self._json(response))
        if not isinstance(body, dict):
            raise exceptions.malformed_response("booking body is not an object")

        try:
            return BookingRecord.model_validate(body)
        except ValidationError as e:
            raise exceptions.malformed_response(str(e)) from e

    async def search_schedules(
        self,
        date: str,
        program_id: int,
        token: str
    ) -> List[ScheduleRecord]:
        """
        List schedules of a program on a date, unpaginated.

        Returns:
            Schedules in API order (possibly empty)
        """
        response = await self._send(
            "GET",
            "/schedules",
            token,
            params={"date": date, "program_id": program_id, "paginate": "false"},
        )
        self._raise_for_status(response)

        body = self._unwrap(self._json(response))
        if isinstance(body, dict):
            body = body.get("data")
        if not isinstance(body, list):
            return []

        schedules = []
        for item in body:
            try:
                schedules.append(ScheduleRecord.model_validate(item))
            except ValidationError:
                logger.debug(f"Skipping schedule without id: {item!r}")
        return schedules

    async def check_in_by_qr(self, request: CheckInRequest, token: str) -> CheckInResult:
        """
        Submit a scanned payload for check-in.

        Args:
            request: Payload and optional schedule id
            token: Bearer token

        Returns:
            CheckInResult (success or application-level rejection)
        """
        payload = request.to_payload()
        logger.info(f"Check-in request body: {payload}")

        response = await self._send("POST", CHECKIN_PATH, token, json=payload)
        body = self._json(response)

        if not isinstance(body, dict) or "success" not in body:
            raise exceptions.malformed_response(
                f"HTTP {response.status_code}: missing 'success' field"
            )

        try:
            result = CheckInResult.model_validate(body)
        except ValidationError as e:
            raise exceptions.malformed_response(str(e)) from e

        logger.info(
            f"Check-in response: success={result.success} message={result.message!r}"
        )
        return result

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        **kwargs: Any
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}

        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling {method} {path}")
            raise exceptions.network_error("request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Transport error calling {method} {path}: {e}")
            raise exceptions.network_error(str(e)) from e

        logger.debug(f"{method} {path} -> {response.status_code}")

        if response.status_code == 429:
            retry_after = self.parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(f"Rate limited on {method} {path} (retry_after={retry_after})")
            raise exceptions.rate_limited(retry_after)

        if response.status_code == 401:
            raise exceptions.login_required()

        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_error:
            raise exceptions.network_error(f"HTTP {response.status_code}")

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise exceptions.malformed_response(
                f"HTTP {response.status_code}: body is not JSON"
            ) from e

    @staticmethod
    def _unwrap(body: Any) -> Any:
        """Strip a ``{"data": ...}`` envelope if there is one."""
        if isinstance(body, dict) and body.get("data") is not None:
            return body["data"]
        return body

    @staticmethod
    def parse_retry_after(value: Optional[str]) -> Optional[float]:
        """
        Parse a Retry-After header.

        Args:
            value: Delta-seconds or an HTTP-date

        Returns:
            Delay in seconds (0 means retry now), or None if absent/unusable
        """
        if not value:
            return None

        value = value.strip()

        try:
            seconds = float(value)
        except ValueError:
            seconds = None

        if seconds is None:
            try:
                when = parsedate_to_datetime(value)
            except (TypeError, ValueError, IndexError):
                return None
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            # a date already in the past means the client may retry now
            seconds = max(0.0, (when - datetime.now(timezone.utc)).total_seconds())

        return seconds if seconds >= 0 else None
