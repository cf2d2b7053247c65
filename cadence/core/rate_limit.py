from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from typing import Callable

from fastapi import Request

from cadence.core.errors import APIError
from cadence.core.settings import get_settings

logger = logging.getLogger(__name__)


class InMemoryRateLimiter:
    """Sliding-window counter keyed by an arbitrary string.

    Used for the auth endpoints and, per queue, for worker job starts.
    """

    def __init__(
        self,
        *,
        window_seconds: float,
        max_requests: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _evict(self, events: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while events and events[0] <= cutoff:
            events.popleft()

    def hit(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            events = self._events[key]
            self._evict(events, now)
            if len(events) >= self.max_requests:
                return False
            events.append(now)
            return True

    def retry_after(self, key: str) -> float:
        """Seconds until the next hit for ``key`` would be accepted."""
        now = self._clock()
        with self._lock:
            events = self._events[key]
            self._evict(events, now)
            if len(events) < self.max_requests:
                return 0.0
            return max(0.0, events[0] + self.window_seconds - now)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


settings = get_settings()
auth_limiter = InMemoryRateLimiter(
    window_seconds=settings.auth_rate_limit_window_seconds,
    max_requests=settings.auth_rate_limit_max_requests,
)


def enforce_auth_rate_limit(request: Request) -> None:
    client_ip = request.client.host if request.client else "unknown"
    key = f"{client_ip}:{request.url.path}"
    logger.debug("Rate limit check key=%s", key)
    if not auth_limiter.hit(key):
        logger.warning("Rate limit exceeded for key=%s", key)
        raise APIError(status_code=429, code="rate_limited", message="Too many authentication requests")
