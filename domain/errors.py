"""
Domain: error taxonomy.

Every failure the system reports to a caller is one of a closed set of kinds.
Each kind carries a fixed HTTP status and a stable wire code; the HTTP layer
converts an `AppError` into the wire shape exactly once:

    {"error": {"code": "...", "message": "...", "details": {...}}}

The same taxonomy is used on the client side to rebuild errors from responses
and to decide whether a failed request may be retried.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    AUTHENTICATION = "AUTH_ERROR"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMIT_EXCEEDED"
    DATABASE = "DB_ERROR"
    NETWORK = "NETWORK_ERROR"
    INTERNAL = "INTERNAL_ERROR"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.DATABASE: 500,
    ErrorKind.NETWORK: 503,
    ErrorKind.INTERNAL: 500,
}

# User-facing messages for kinds whose internal detail must never be exposed.
GENERIC_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorKind.DATABASE: "A database error occurred. Please try again.",
    ErrorKind.NETWORK: "Network request failed. Please check your connection and try again.",
    ErrorKind.INTERNAL: "An unexpected error occurred. Please try again.",
}


class AppError(Exception):
    """
    Single exception type for every classified failure.

    `details` is kind-specific data: field -> messages for validation errors,
    limit/remaining/reset for rate-limit errors, and None otherwise.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = dict(details) if details is not None else None
        # Status observed on the wire; differs from kind.status_code only when
        # the error was rebuilt from a response with an unexpected status.
        self.http_status: int = kind.status_code

    def __repr__(self) -> str:
        return f"AppError({self.kind.value}, {self.message!r})"

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    # Constructors, one per kind.

    @classmethod
    def validation(
        cls, errors: Mapping[str, list[str]], message: str = "Validation failed"
    ) -> "AppError":
        return cls(ErrorKind.VALIDATION, message, {k: list(v) for k, v in errors.items()})

    @classmethod
    def authentication(cls, message: str = "Authentication required") -> "AppError":
        return cls(ErrorKind.AUTHENTICATION, message)

    @classmethod
    def forbidden(cls, message: str = "Access forbidden") -> "AppError":
        return cls(ErrorKind.FORBIDDEN, message)

    @classmethod
    def not_found(cls, resource: str) -> "AppError":
        return cls(ErrorKind.NOT_FOUND, f"{resource} not found")

    @classmethod
    def conflict(cls, message: str = "Resource conflict") -> "AppError":
        return cls(ErrorKind.CONFLICT, message)

    @classmethod
    def rate_limited(cls, limit: int, remaining: int, reset: int) -> "AppError":
        return cls(
            ErrorKind.RATE_LIMITED,
            GENERIC_MESSAGES[ErrorKind.RATE_LIMITED],
            {"limit": limit, "remaining": remaining, "reset": reset},
        )

    @classmethod
    def database(cls, message: str = "Database operation failed") -> "AppError":
        return cls(ErrorKind.DATABASE, message)

    @classmethod
    def network(cls, message: str = "Network request failed") -> "AppError":
        return cls(ErrorKind.NETWORK, message)

    @classmethod
    def internal(cls) -> "AppError":
        return cls(ErrorKind.INTERNAL, GENERIC_MESSAGES[ErrorKind.INTERNAL])

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return {"error": body}

    @classmethod
    def from_wire(cls, status_code: int, body: Any) -> "AppError":
        """
        Rebuild an error from a non-2xx response.

        Unknown codes and malformed bodies collapse to a kind chosen from the
        status code so that retry classification still works.
        """

        error = body.get("error") if isinstance(body, Mapping) else None
        if not isinstance(error, Mapping):
            error = {}

        try:
            kind = ErrorKind(error.get("code"))
        except ValueError:
            kind = _kind_for_status(status_code)

        message = error.get("message") or GENERIC_MESSAGES.get(kind, "Request failed")
        details = error.get("details")
        instance = cls(kind, str(message), details if isinstance(details, Mapping) else None)
        instance.http_status = status_code
        return instance


def _kind_for_status(status_code: int) -> ErrorKind:
    for kind, status in _STATUS_CODES.items():
        if status == status_code and kind is not ErrorKind.DATABASE:
            return kind
    return ErrorKind.INTERNAL


def is_retryable(error: BaseException) -> bool:
    """
    An error is retryable iff it is a transport failure, carries an HTTP
    status >= 500, or is a rate-limit rejection.
    """

    if isinstance(error, AppError):
        if error.kind in (ErrorKind.NETWORK, ErrorKind.RATE_LIMITED):
            return True
        status = error.http_status
        return status >= 500 or status == 429
    return isinstance(error, (ConnectionError, TimeoutError))


__all__ = [
    "AppError",
    "ErrorKind",
    "GENERIC_MESSAGES",
    "is_retryable",
]
