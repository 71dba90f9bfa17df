"""
==============================================================================
Schedule Resolver Module
==============================================================================

Works out which schedule a check-in belongs to when the kiosk was opened
from a booking rather than a schedule.

Resolution Order (first hit wins):
----------------------------------
1. schedule_id from the scan context
2. GET /bookings/{booking_id} -> schedule_id, then schedule.id
3. GET /schedules?date=<booking.date>&program_id=<booking.program_id>
   -> id of the first schedule returned
4. None: the check-in is submitted without a schedule id

Step 3 takes the first match even when several schedules share the date
and program; the ambiguity is logged, not resolved.

==============================================================================
"""

from __future__ import annotations

import logging
from typing import Optional

from checkin_kiosk.core import AppException
from checkin_kiosk.schemas.checkin import ScanContext
from checkin_kiosk.services.api_client import CinemaApiClient
from checkin_kiosk.services.retry import RateLimitPolicy


# Module logger
logger = logging.getLogger(__name__)


class ScheduleResolver:
    """
    Resolves the schedule id for a check-in request.

    Example:
        >>> resolver = ScheduleResolver(client, policy)
        >>> await resolver.resolve(ScanContext(booking_id=55), token)
        9
    """

    def __init__(self, client: CinemaApiClient, policy: RateLimitPolicy) -> None:
        self._client = client
        self._policy = policy

    async def resolve(self, context: ScanContext, token: str) -> Optional[int]:
        """
        Resolve a schedule id.

        Lookup failures are logged and yield None; they never block the
        check-in itself.

        Args:
            context: Schedule/booking the kiosk was opened for
            token: Bearer token

        Returns:
            Schedule id, or None if it could not be determined
        """
        if context.schedule_id:
            return context.schedule_id

        if not context.booking_id:
            return None

        logger.info(f"No schedule id, looking it up from booking {context.booking_id}")

        try:
            return await self._from_booking(context.booking_id, token)
        except AppException as e:
            logger.error(
                f"Failed to fetch schedule from booking {context.booking_id}: "
                f"{e.code} {e.details or e.message}"
            )
            return None

    async def _from_booking(self, booking_id: int, token: str) -> Optional[int]:
        booking = await self._policy.call(
            lambda: self._client.get_booking(booking_id, token),
            f"booking {booking_id}",
        )

        schedule_id = booking.resolved_schedule_id
        if schedule_id:
            return schedule_id

        if not (booking.date and booking.program_id):
            logger.info(f"Booking {booking_id} carries no schedule, date or program")
            return None

        schedules = await self._policy.call(
            lambda: self._client.search_schedules(booking.date, booking.program_id, token),
            "schedule search",
        )

        if not schedules:
            logger.info(
                f"No schedule found for date={booking.date} program_id={booking.program_id}"
            )
            return None

        if len(schedules) > 1:
            logger.warning(
                f"{len(schedules)} schedules match date={booking.date} "
                f"program_id={booking.program_id}; using the first ({schedules[0].id})"
            )

        logger.info(f"Matched schedule_id {schedules[0].id} from booking date/program")
        return schedules[0].id
