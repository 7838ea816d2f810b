"""
Request pipeline shared by every lead and interaction endpoint.

Stages run in a fixed order and the first failing stage ends the request:

    Authenticate -> RateLimit -> ParseBody -> handler

The handler (a LeadService method) continues with
Validate -> Sanitize -> ownership check -> Persist. A rate-limited request is
therefore rejected before anything touches the datastore, and a malformed
body is never seen by the service.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from domain.errors import AppError
from domain.principal import Principal
from services.auth_service import Authenticator
from services.rate_limiter import RateLimitConfig, RateLimiter, RateLimitResult, client_identifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[Principal, Any], T]
BodyParser = Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class RequestEnvelope:
    """Transport-neutral view of an incoming request."""

    token: Optional[str]
    ip_address: Optional[str] = None
    body: Any = None


def parse_json_body(raw: Any) -> Any:
    """Decode a JSON request body; malformed input is a validation error."""

    if raw is None or raw == b"" or raw == "":
        raise AppError.validation({"body": ["Request body is required"]}, "Invalid request body")
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise AppError.validation({"body": ["Malformed JSON"]}, "Invalid request body") from exc


def no_body(raw: Any) -> None:
    return None


class MutationPipeline:
    def __init__(self, authenticator: Authenticator, rate_limiter: RateLimiter) -> None:
        self._authenticator = authenticator
        self._rate_limiter = rate_limiter

    def authenticate(self, envelope: RequestEnvelope) -> Principal:
        return self._authenticator.authenticate(envelope.token)

    def enforce_rate_limit(
        self, principal: Principal, envelope: RequestEnvelope, config: RateLimitConfig
    ) -> RateLimitResult:
        identifier = client_identifier(principal.user_id, envelope.ip_address)
        result = self._rate_limiter.check(identifier, config)
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"identifier": identifier, "limit": result.limit, "reset": result.reset},
            )
            raise AppError.rate_limited(result.limit, result.remaining, result.reset)
        return result

    def admit(self, envelope: RequestEnvelope, config: RateLimitConfig) -> Principal:
        """Authenticate and rate-limit; used directly by streaming/multipart routes."""
        principal = self.authenticate(envelope)
        self.enforce_rate_limit(principal, envelope, config)
        return principal

    def run(
        self,
        envelope: RequestEnvelope,
        config: RateLimitConfig,
        handler: Handler[T],
        parse: BodyParser = parse_json_body,
    ) -> T:
        principal = self.admit(envelope, config)
        payload = parse(envelope.body)
        return handler(principal, payload)


__all__ = [
    "MutationPipeline",
    "RequestEnvelope",
    "parse_json_body",
    "no_body",
]
