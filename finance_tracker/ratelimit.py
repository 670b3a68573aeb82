"""Fixed-window request limits per client, exposed as FastAPI dependencies."""
import logging
import math
import threading
import time
from typing import NamedTuple

from fastapi import Request

from . import config
from .errors import RateLimitError

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 60


class Limit(NamedTuple):
    name: str
    max_requests: int
    window_seconds: int
    message: str


AUTH_LIMIT = Limit("auth", 5, 15 * 60, "Too many authentication attempts, please try again later")
API_LIMIT = Limit("api", 100, 60 * 60, "Too many requests, please try again later")
ANALYTICS_LIMIT = Limit("analytics", 50, 60 * 60, "Too many analytics requests, please try again later")


class RateLimiter:
    """Counters keyed by (limit name, client) that reset at each window boundary.

    State is in-process and advisory: a restart forgets every counter. Windows
    that have run out are swept at most once per ``sweep_interval`` seconds.
    """

    def __init__(self, enabled: bool = True, clock=time.time, sweep_interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        # (limit name, client) -> (window start, count, window length)
        self._windows: dict[tuple[str, str], tuple[float, int, int]] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def hit(self, limit: Limit, client: str) -> int:
        """Count one request; return 0 if allowed, else seconds until the window resets."""
        if not self.enabled:
            return 0
        now = self._clock()
        key = (limit.name, client)
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            start, count, _ = self._windows.get(key, (now, 0, limit.window_seconds))
            if now - start >= limit.window_seconds:
                start, count = now, 0
            count += 1
            self._windows[key] = (start, count, limit.window_seconds)
        if count > limit.max_requests:
            return max(1, math.ceil(start + limit.window_seconds - now))
        return 0

    def _sweep(self, now: float) -> None:
        expired = [key for key, (start, _, window) in self._windows.items() if now - start >= window]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self._sweep_interval

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


def client_identity(request: Request) -> str:
    """Address the limits are counted against.

    ``X-Forwarded-For`` is only read with TRUST_PROXY on, and then only the
    hop appended by our own proxy (the last one); anything before it is
    client-supplied.
    """
    if config.get_settings().trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[-1].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(limit: Limit):
    """Build a dependency enforcing ``limit`` with the app's shared limiter."""

    def dependency(request: Request) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        client = client_identity(request)
        retry_after = limiter.hit(limit, client)
        if retry_after:
            logger.warning("rate limit %s exceeded by %s", limit.name, client)
            raise RateLimitError(limit.message, retry_after=retry_after)

    return dependency
