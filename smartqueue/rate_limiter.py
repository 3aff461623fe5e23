"""
Rate Limiter - Non-blocking minimum-interval gate for replenishment fetches
"""
import time
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Enforces a minimum interval between operations without sleeping.

    Callers that hit the gate simply skip the operation; nothing queues up
    behind it, so a failing upstream cannot turn into a retry storm.

    Usage:
        limiter = RateLimiter(min_interval_s=5.0)

        if limiter.try_acquire():
            fetch_more_tracks()
    """

    def __init__(self, min_interval_s: float = 5.0, clock: Callable[[], float] = time.monotonic):
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be non-negative")

        self.min_interval = min_interval_s
        self._clock = clock
        self.last_call = None
        self.total_calls = 0
        self.total_rejections = 0

        logger.debug(f"Rate limiter initialized: min {self.min_interval:.1f}s between calls")

    def seconds_until_ready(self) -> float:
        if self.last_call is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - self.last_call))

    def ready(self) -> bool:
        return self.seconds_until_ready() <= 0.0

    def try_acquire(self) -> bool:
        """Record a call and return True if the interval has elapsed."""
        if not self.ready():
            self.total_rejections += 1
            return False
        self.last_call = self._clock()
        self.total_calls += 1
        return True

    def reset(self):
        self.last_call = None
        self.total_calls = 0
        self.total_rejections = 0

    def get_stats(self) -> dict:
        return {
            'total_calls': self.total_calls,
            'total_rejections': self.total_rejections,
            'seconds_until_ready': self.seconds_until_ready(),
        }
