"""
Per-caller rate limiting for the binding proxy.

A sliding window over the timestamps of each caller's accepted requests.
Rejected requests are not recorded, so a caller hammering the proxy is let
back in as soon as its oldest accepted request leaves the window.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Args:
        rpm: Accepted requests per caller per window (at least 1)
        window_seconds: Window length
        clock: Seconds source, injectable for tests
    """

    def __init__(self, rpm: int, window_seconds: float = 60, clock: Callable[[], float] = time.time):
        self.limit = max(1, int(rpm))
        self.window = window_seconds
        self._clock = clock
        self._accepted: Dict[str, Deque[float]] = {}
        self._mutex = threading.Lock()

    def check(self, caller: str) -> RateLimitResult:
        """Accept and record the request if ``caller`` is under the limit."""
        now = self._clock()
        with self._mutex:
            stamps = self._accepted.setdefault(caller, deque())
            # Entries exactly one window old have expired
            while stamps and now - stamps[0] >= self.window:
                stamps.popleft()
            if len(stamps) < self.limit:
                stamps.append(now)
                return RateLimitResult(True, self.limit - len(stamps))
            return RateLimitResult(False, 0, max(0.0, stamps[0] + self.window - now))

    def allow(self, caller: str) -> bool:
        return self.check(caller).allowed

    def reset(self, caller: Optional[str] = None) -> None:
        """Forget one caller's history, or everyone's."""
        with self._mutex:
            if caller is None:
                self._accepted.clear()
            else:
                self._accepted.pop(caller, None)
