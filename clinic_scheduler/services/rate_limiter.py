"""
Minimum-interval throttle for list queries.

Calendar views tend to fire the same appointment query several times in a
row. The throttle short-circuits calls that arrive within the configured
interval of the previous served call for the same key. The first call for
a key is always served.
"""

import time
from threading import Lock
from typing import Callable, Dict, Optional

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.logging import get_logger

logger = get_logger(__name__)


class MinIntervalThrottle:
    def __init__(
        self,
        min_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_interval_seconds is None:
            min_interval_seconds = settings.QUERY_MIN_INTERVAL_MS / 1000.0
        self.min_interval = max(0.0, float(min_interval_seconds))
        self.clock = clock
        self._last_served: Dict[str, float] = {}
        self._lock = Lock()

    def allow(self, key: str = "*") -> bool:
        """Record and allow the call, or refuse it if it came too soon."""
        if self.min_interval <= 0:
            return True

        now = self.clock()
        with self._lock:
            last = self._last_served.get(key)
            if last is not None and now - last < self.min_interval:
                logger.debug("query_throttled", key=key, since_last=round(now - last, 3))
                return False
            self._last_served[key] = now
            return True

    def reset(self, key: Optional[str] = None):
        with self._lock:
            if key is None:
                self._last_served.clear()
            else:
                self._last_served.pop(key, None)
