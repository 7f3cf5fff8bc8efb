"""Per-IP sliding-window rate limiter.

Each caller IP owns a deque of request timestamps; entries older than the
window are pruned on every check. Results carry the standard
X-RateLimit-* header values.
"""

import time
from collections import defaultdict, deque
from dataclasses import dataclass


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: float

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_seconds)),
        }


class SlidingWindowLimiter:

    def __init__(self, limit: int, window_seconds: float = 60.0, clock=time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, deque[float]] = defaultdict(deque)

    def check(self, client_key: str) -> RateLimitResult:
        """Record a request for client_key unless it is over the limit."""
        now = self._clock()
        window = self._windows[client_key]

        while window and window[0] <= now - self.window_seconds:
            window.popleft()

        if len(window) >= self.limit:
            # Blocked until the oldest request leaves the window
            return RateLimitResult(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_seconds=round(window[0] + self.window_seconds - now, 1),
            )

        window.append(now)
        return RateLimitResult(
            allowed=True,
            limit=self.limit,
            remaining=self.limit - len(window),
            reset_seconds=round(window[0] + self.window_seconds - now, 1),
        )

    def reset(self, client_key: str | None = None) -> None:
        if client_key is None:
            self._windows.clear()
        else:
            self._windows.pop(client_key, None)
