import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

Interval = Union[timedelta, int, float]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _interval_ms(min_interval: Interval) -> float:
    if isinstance(min_interval, timedelta):
        ms = min_interval.total_seconds() * 1000
    else:
        ms = float(min_interval) * 1000
    if ms < 0:
        raise ValueError(f"min_interval must not be negative, got {min_interval!r}")
    return ms


class RateLimiter:
    """
    In-process rate limiter keyed by an arbitrary string.

    Remembers, per key, when an action was last accepted and accepts a new
    one only once ``min_interval`` has elapsed since then. ``None`` is a valid
    key and acts as a single shared limit. All keys share one lock, so
    every read-compare-write on the table is atomic.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        """
        Args:
            clock: Returns the current time in epoch milliseconds
        """
        self._clock = clock or _now_ms
        self._last_executions: Dict[Optional[str], int] = {}
        self._lock = threading.Lock()

    def try_accept(self, key: Optional[str], min_interval: Interval) -> bool:
        """
        Record an execution for ``key`` if the previous accepted one is at
        least ``min_interval`` old.

        Args:
            key: Limit identifier, or None for the shared limit
            min_interval: timedelta or number of seconds

        Returns:
            True if the action may run now
        """
        interval = _interval_ms(min_interval)
        with self._lock:
            now = self._clock()
            last_execution = self._last_executions.get(key)
            if last_execution is not None and now - last_execution < interval:
                return False
            self._last_executions[key] = now
            return True

    def rate_limited_call(self, key: Optional[str], min_interval: Interval, callback: Callable[[], None]) -> None:
        """Run ``callback`` only if the rate limit for ``key`` allows it"""
        if self.try_accept(key, min_interval):
            callback()
        else:
            logger.debug(f"Rate limit applied for key {key!r}")

    def rate_limited_call_reporting(
        self,
        key: Optional[str],
        min_interval: Interval,
        callback: Callable[[bool], None],
    ) -> None:
        """Always run ``callback``, passing whether the rate limit allowed the action"""
        callback(self.try_accept(key, min_interval))

    def last_accepted(self, key: Optional[str]) -> Optional[int]:
        """Epoch milliseconds of the last accepted execution for ``key``"""
        with self._lock:
            return self._last_executions.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_executions)
