import logging
import random
import time

logger = logging.getLogger(__name__)


class SimpleRateLimiter:
    """Waits until at least `min_interval_sec` has passed since the previous call."""

    def __init__(self, min_interval_sec: float, clock=time.monotonic, sleep=time.sleep) -> None:
        if min_interval_sec < 0:
            raise ValueError("min_interval_sec must be >= 0")
        self._min_interval = float(min_interval_sec)
        self._clock = clock
        self._sleep = sleep
        self._last_ts = None

    def wait(self) -> None:
        if self._last_ts is not None:
            sleep_for = self._min_interval - (self._clock() - self._last_ts)
            if sleep_for > 0:
                self._sleep(sleep_for)
        self._last_ts = self._clock()


def backoff_sleep(attempt: int, base: float = 0.5, cap: float = 8.0) -> None:
    t = min(cap, base * (2 ** attempt))
    t *= 0.7 + random.random() * 0.6
    logger.debug("Backing off %.2fs (attempt %d)", t, attempt + 1)
    time.sleep(t)
