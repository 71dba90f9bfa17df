"""
==============================================================================
Toast Throttle Module
==============================================================================

Suppresses repeats of the same operator notification (for example a burst
of "Network error" toasts while the venue Wi-Fi is down). Each key may
fire once per window.

==============================================================================
"""

from __future__ import annotations

import time
from typing import Callable, Dict


class ToastThrottle:
    """
    Per-key rate limiter for toasts.

    Example:
        >>> throttle = ToastThrottle(window_seconds=5)
        >>> throttle.allow("network")
        True
        >>> throttle.allow("network")
        False
    """

    def __init__(
        self,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._window = window_seconds
        self._clock = clock
        self._last_shown: Dict[str, float] = {}

    def allow(self, key: str) -> bool:
        """Record and allow the toast unless the key fired within the window."""
        now = self._clock()
        last = self._last_shown.get(key)
        if last is not None and now - last < self._window:
            return False
        self._last_shown[key] = now
        return True

    def reset(self) -> None:
        self._last_shown.clear()
