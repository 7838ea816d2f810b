"""
Tests for `services/rate_limiter.py`.

Covers:
- Fixed-window counting: calls 1..M allowed, M+1.. rejected, remaining
  decreasing to 0 and staying there.
- Window reset after window_seconds.
- Independent identifiers and independent limiter instances.
- Sweep of expired windows and the start/stop lifecycle.
"""

from __future__ import annotations

import threading

from services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimitPresets,
    RateLimitResult,
    client_identifier,
    ip_from_headers,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_calls_within_limit_allowed_then_rejected() -> None:
    limiter = InMemoryRateLimiter(clock=FakeClock())
    config = RateLimitConfig(max_requests=5, window_seconds=60)

    results = [limiter.check("user:1", config) for _ in range(8)]

    assert [r.allowed for r in results] == [True] * 5 + [False] * 3
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0, 0, 0]
    assert all(r.limit == 5 for r in results)


def test_reset_is_window_end() -> None:
    clock = FakeClock(1000.5)
    limiter = InMemoryRateLimiter(clock=clock)

    result = limiter.check("user:1", RateLimitConfig(max_requests=1, window_seconds=60))

    assert result.reset == 1061
    clock.now = 1010.0
    assert limiter.check("user:1", RateLimitConfig(max_requests=1, window_seconds=60)).reset == 1061


def test_new_window_after_expiry() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    config = RateLimitConfig(max_requests=2, window_seconds=60)

    for _ in range(3):
        limiter.check("user:1", config)
    assert not limiter.check("user:1", config).allowed

    clock.now += 61
    result = limiter.check("user:1", config)

    assert result.allowed
    assert result.remaining == 1


def test_identifiers_are_independent() -> None:
    limiter = InMemoryRateLimiter(clock=FakeClock())
    config = RateLimitConfig(max_requests=1, window_seconds=60)

    assert limiter.check("user:1", config).allowed
    assert not limiter.check("user:1", config).allowed
    assert limiter.check("user:2", config).allowed


def test_instances_do_not_share_state() -> None:
    config = RateLimitConfig(max_requests=1, window_seconds=60)
    first = InMemoryRateLimiter(clock=FakeClock())
    second = InMemoryRateLimiter(clock=FakeClock())

    first.check("user:1", config)

    assert second.check("user:1", config).allowed


def test_concurrent_checks_count_every_call() -> None:
    limiter = InMemoryRateLimiter()
    config = RateLimitConfig(max_requests=50, window_seconds=60)
    allowed = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(10):
            result = limiter.check("user:1", config)
            with lock:
                allowed.append(result.allowed)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert allowed.count(True) == 50
    assert allowed.count(False) == 50


def test_sweep_evicts_only_expired_windows() -> None:
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)

    limiter.check("short", RateLimitConfig(max_requests=1, window_seconds=10))
    limiter.check("long", RateLimitConfig(max_requests=1, window_seconds=300))
    clock.now += 11

    assert limiter.sweep() == 1
    assert len(limiter) == 1


def test_start_stop_lifecycle() -> None:
    limiter = InMemoryRateLimiter(sweep_interval_seconds=0.01)

    limiter.start()
    limiter.start()  # idempotent
    limiter.stop()
    limiter.stop()


def test_retry_after() -> None:
    result = RateLimitResult(allowed=False, limit=5, remaining=0, reset=1060)

    assert result.retry_after(now=1000.2) == 60
    assert result.retry_after(now=2000) == 0


def test_presets() -> None:
    assert RateLimitPresets.STANDARD == RateLimitConfig(100, 60)
    assert RateLimitPresets.STRICT == RateLimitConfig(10, 60)
    assert RateLimitPresets.BULK == RateLimitConfig(5, 300)
    assert RateLimitPresets.SEARCH == RateLimitConfig(30, 60)


def test_client_identifier_precedence() -> None:
    assert client_identifier("abc", "1.2.3.4") == "user:abc"
    assert client_identifier(None, "1.2.3.4") == "ip:1.2.3.4"
    assert client_identifier() == "anonymous"


def test_ip_from_headers() -> None:
    assert ip_from_headers({"x-forwarded-for": "10.0.0.1, 10.0.0.2"}) == "10.0.0.1"
    assert ip_from_headers({"x-real-ip": "10.0.0.9", "x-forwarded-for": "10.0.0.1"}) == "10.0.0.9"
    assert ip_from_headers({"cf-connecting-ip": "10.0.0.3"}) == "10.0.0.3"
    assert ip_from_headers({}) is None
