"""
Supabase-backed rate limiter for multi-instance deployments.

Satisfies the same `RateLimiter` protocol as `InMemoryRateLimiter`, so call
sites do not change. The counter lives in Postgres and is advanced by one
atomic statement inside the `rate_limit_hit` function:

    create table rate_limits (
        identifier text primary key,
        count      integer     not null,
        reset_at   timestamptz not null
    );

    create function rate_limit_hit(p_identifier text, p_window_seconds integer)
    returns json language sql as $$
        insert into rate_limits as r (identifier, count, reset_at)
        values (p_identifier, 1, now() + make_interval(secs => p_window_seconds))
        on conflict (identifier) do update set
            count    = case when r.reset_at < now() then 1 else r.count + 1 end,
            reset_at = case when r.reset_at < now()
                            then now() + make_interval(secs => p_window_seconds)
                            else r.reset_at end
        returning json_build_object('count', count, 'reset_at', reset_at);
    $$;

Expired rows are overwritten on the next hit and can be purged with
`purge_expired()`.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from domain.time import parse_utc_datetime, to_iso_utc, utc_now
from repositories.client import RepositoryError, execute
from services.rate_limiter import RateLimitConfig, RateLimitResult

logger = logging.getLogger(__name__)

_RATE_LIMITS_TABLE: str = "rate_limits"
_HIT_FUNCTION: str = "rate_limit_hit"


class SupabaseRateLimiter:
    """Fixed-window limiter whose counters are shared by every server process."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        response = execute(
            self._client.rpc(
                _HIT_FUNCTION,
                {"p_identifier": identifier, "p_window_seconds": config.window_seconds},
            ),
            "record rate-limit hit",
        )
        row = _single_row(getattr(response, "data", None))
        count = int(row["count"])
        reset_at = parse_utc_datetime(row["reset_at"])

        return RateLimitResult(
            allowed=count <= config.max_requests,
            limit=config.max_requests,
            remaining=max(0, config.max_requests - count),
            reset=math.ceil(reset_at.timestamp()),
        )

    def purge_expired(self) -> None:
        execute(
            self._client.table(_RATE_LIMITS_TABLE).delete().lt("reset_at", to_iso_utc(utc_now())),
            "purge rate-limit windows",
        )

    # Lifecycle hooks so the app can treat both limiters alike.
    def start(self) -> None:
        logger.info("Using Supabase-backed rate limiter")
        try:
            self.purge_expired()
        except RepositoryError as exc:
            # Stale windows are overwritten on the next hit anyway.
            logger.warning("Could not purge expired rate-limit windows: %s", exc)

    def stop(self) -> None:
        pass


def _single_row(data: Any) -> Mapping[str, Any]:
    # A json-returning function comes back as an object; a set-returning one as a list.
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, Mapping) or "count" not in data or "reset_at" not in data:
        raise RepositoryError(f"Unexpected {_HIT_FUNCTION} response: {data!r}")
    return data


__all__ = ["SupabaseRateLimiter"]
