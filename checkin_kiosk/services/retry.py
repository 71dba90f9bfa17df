"""
==============================================================================
Rate Limit Retry Module
==============================================================================

The one automatic retry the kiosk performs: when the booking API answers
429, wait for the server's Retry-After (or the configured default), capped
at a configured maximum, and run the same operation exactly once more. A
second 429 propagates.

==============================================================================
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from checkin_kiosk.core import AppException


# Module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryHook = Callable[[float, str], Any]


class RateLimitPolicy:
    """
    Single-retry policy for RATE_LIMITED errors.

    Example:
        >>> policy = RateLimitPolicy(default_delay=5.0, max_delay=30.0)
        >>> result = await policy.call(lambda: client.check_in_by_qr(req, token))
    """

    def __init__(
        self,
        default_delay: float,
        max_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_retry: Optional[RetryHook] = None
    ) -> None:
        """
        Args:
            default_delay: Seconds to wait when the 429 had no usable Retry-After
            max_delay: Upper bound on any wait (None for no bound)
            sleep: Awaitable sleep (injectable for tests)
            on_retry: Called with (delay, description) before waiting
        """
        self._default_delay = default_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._on_retry = on_retry

    def delay_for(self, error: AppException) -> float:
        retry_after = error.details.get("retry_after")
        delay = self._default_delay if retry_after is None else float(retry_after)
        if self._max_delay is not None:
            delay = min(delay, self._max_delay)
        return delay

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "request"
    ) -> T:
        """
        Run an operation, retrying once on RATE_LIMITED.

        Args:
            operation: Zero-argument factory producing a fresh awaitable
            description: Used in logs and the retry hook

        Raises:
            AppException: Whatever the operation raised; RATE_LIMITED only
                after the retry was also rate limited
        """
        try:
            return await operation()
        except AppException as e:
            if e.code != "RATE_LIMITED":
                raise
            delay = self.delay_for(e)

        logger.warning(f"⏳ Rate limited on {description}, retrying in {delay:g}s")

        if self._on_retry is not None:
            result = self._on_retry(delay, description)
            if inspect.isawaitable(result):
                await result

        await self._sleep(delay)
        return await operation()
