"""
Rate Limiting
=============

In-memory fixed-window rate limiting for API routes.

Counters are keyed by (client identifier, route path) and live in process
memory, so limits only hold for a single-process deployment. This is an
abuse deterrent, not a correctness mechanism.
"""
import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from fastapi import Depends, Request

from .errors import RateLimitError

logger = logging.getLogger("reqflow-core.rate_limit")


@dataclass
class WindowCounter:
    """Request count for one key and the instant its window resets."""

    count: int
    reset_at: float


class RateLimiter:
    """
    Fixed-window request counter.

    Args:
        max_requests: Requests allowed per window
        window_ms: Window length in milliseconds
        clock: Monotonic time source in seconds (injectable for tests)
    """

    def __init__(self, max_requests: int = 100, window_ms: int = 60_000, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._window_s = window_ms / 1000.0
        self._clock = clock
        self._counters: dict[tuple[str, str], WindowCounter] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def check(self, client_id: str, route: str) -> tuple[bool, int]:
        """
        Count a request and decide whether it is admitted.

        Returns:
            (allowed, retry_after_seconds); retry_after is 0 when allowed
        """
        key = (client_id, route)
        now = self._clock()
        with self._lock:
            counter = self._counters.get(key)
            if counter is None or now > counter.reset_at:
                self._counters[key] = WindowCounter(count=1, reset_at=now + self._window_s)
                return True, 0
            if counter.count < self.max_requests:
                counter.count += 1
                return True, 0
            retry_after = max(1, math.ceil(counter.reset_at - now))
            return False, retry_after

    def admit(self, client_id: str, route: str) -> None:
        """
        Admit a request or raise.

        Raises:
            RateLimitError: If the client exhausted its window on this route
        """
        allowed, retry_after = self.check(client_id, route)
        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_id} on {route} (retry after {retry_after}s)")
            raise RateLimitError(retry_after)

    def sweep(self) -> int:
        """Drop counters whose window has already expired. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, counter in self._counters.items() if now > counter.reset_at]
            for key in expired:
                del self._counters[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit counter(s)")
        return len(expired)


async def run_sweeper(limiters: Iterable[RateLimiter], interval_s: float = 60.0) -> None:
    """Sweep expired counters periodically until cancelled."""
    limiters = list(limiters)
    while True:
        await asyncio.sleep(interval_s)
        for limiter in limiters:
            limiter.sweep()


def client_identifier(request: Request) -> str:
    """Identify the caller: first X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def rate_limit(family: str = "default"):
    """
    Route dependency enforcing the limiter registered under `family`
    on app.state.rate_limiters.
    """

    def dependency(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiters[family]
        limiter.admit(client_identifier(request), request.url.path)

    return Depends(dependency)
