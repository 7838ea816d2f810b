"""
Fixed-window rate limiting.

Contract:
    check(identifier, config) -> RateLimitResult(allowed, limit, remaining, reset)

On each call, if no window exists for `identifier` (or it has expired) a fresh
one is opened with count=0 and reset_at = now + window_seconds; the count is
then incremented. allowed = count <= max_requests,
remaining = max(0, max_requests - count).

Known limitation (fixed window, not sliding): a burst of max_requests at the
tail of one window followed by max_requests right after the reset is allowed.

`InMemoryRateLimiter` only coordinates callers inside one process. Multi-process
deployments should use the Supabase-backed implementation in
`repositories.rate_limit_repository`, which satisfies the same protocol.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds, rounded up

    def retry_after(self, now: Optional[float] = None) -> int:
        """Whole seconds until the window resets (never negative)."""
        current = time.time() if now is None else now
        return max(0, math.ceil(self.reset - current))


class RateLimitPresets:
    """Limits by operation class."""

    # Lead and interaction endpoints
    STANDARD = RateLimitConfig(max_requests=100, window_seconds=60)
    # Auth and other sensitive operations
    STRICT = RateLimitConfig(max_requests=10, window_seconds=60)
    # Import / export
    BULK = RateLimitConfig(max_requests=5, window_seconds=300)
    SEARCH = RateLimitConfig(max_requests=30, window_seconds=60)


class RateLimiter(Protocol):
    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        ...


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """
    Process-local fixed-window limiter.

    Owns its counter map and the sweep thread that evicts expired windows.
    Instances are independent, so tests can build isolated limiters.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            window = self._windows.get(identifier)
            if window is None or now > window.reset_at:
                window = _Window(count=0, reset_at=now + config.window_seconds)
                self._windows[identifier] = window

            window.count += 1
            count = window.count
            reset_at = window.reset_at

        return RateLimitResult(
            allowed=count <= config.max_requests,
            limit=config.max_requests,
            remaining=max(0, config.max_requests - count),
            reset=math.ceil(reset_at),
        )

    def sweep(self) -> int:
        """Evict expired windows; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, window in self._windows.items() if window.reset_at < now]
            for key in expired:
                del self._windows[key]
        if expired:
            logger.debug("Swept %d expired rate-limit windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def start(self) -> None:
        """Start the periodic sweep in a daemon thread (idempotent)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, name="rate-limit-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _run_sweeper(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            self.sweep()


def client_identifier(user_id: Optional[str] = None, ip_address: Optional[str] = None) -> str:
    """Principal id if authenticated, else IP address, else a shared bucket."""
    if user_id:
        return f"user:{user_id}"
    if ip_address:
        return f"ip:{ip_address}"
    return "anonymous"


_IP_HEADERS = (
    "x-real-ip",
    "x-forwarded-for",
    "cf-connecting-ip",  # Cloudflare
    "x-client-ip",
)


def ip_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    """First client IP found in the usual proxy headers, in order of preference."""
    for header in _IP_HEADERS:
        value = headers.get(header)
        if value:
            # x-forwarded-for may hold a chain; the first hop is the client.
            return value.split(",")[0].strip()
    return None


__all__ = [
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimitPresets",
    "RateLimiter",
    "InMemoryRateLimiter",
    "client_identifier",
    "ip_from_headers",
]
