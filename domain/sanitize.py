"""
Domain: input sanitization (pure, no I/O).

Applied after structural validation and before persistence, on every mutable
field of Lead and Interaction payloads.

Absence and emptiness collapse to one state: every sanitizer returns None
instead of an empty string. Output escaping is still the render layer's job;
the markup stripping in `sanitize_text` is defense in depth against stored XSS.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Mapping, Optional

# NUL, C0 controls and DEL. Tabs and newlines are dropped too; only the
# surrounding whitespace trim is applied after this.
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_PHONE_DISALLOWED = re.compile(r"[^0-9 \-+()]")
_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"""on\w+\s*=\s*["'][^"']*["']""", re.IGNORECASE)
_JAVASCRIPT_URI = re.compile(r"javascript:", re.IGNORECASE)


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """Drop control characters and trim; None if nothing is left."""

    if not value:
        return None
    cleaned = _CONTROL_CHARS.sub("", value).strip()
    return cleaned or None


def sanitize_email(value: Optional[str]) -> Optional[str]:
    cleaned = sanitize_string(value)
    return cleaned.lower() if cleaned else None


def sanitize_phone(value: Optional[str]) -> Optional[str]:
    """Keep digits, spaces, '-', '+' and parentheses only."""

    cleaned = sanitize_string(value)
    if not cleaned:
        return None
    return _PHONE_DISALLOWED.sub("", cleaned).strip() or None


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Sanitize free-form text (notes, descriptions)."""

    cleaned = sanitize_string(value)
    if not cleaned:
        return None

    # Removing one pattern can splice together another (e.g. "javajavascript:script:"),
    # so repeat until the text is stable.
    previous = None
    while previous != cleaned:
        previous = cleaned
        cleaned = _SCRIPT_BLOCK.sub("", cleaned)
        cleaned = _EVENT_HANDLER.sub("", cleaned)
        cleaned = _JAVASCRIPT_URI.sub("", cleaned)

    return sanitize_string(cleaned)


def _passthrough(value: Any) -> Any:
    return value


_LEAD_SANITIZERS: dict[str, Callable[[Any], Any]] = {
    "name": sanitize_string,
    "email": sanitize_email,
    "phone": sanitize_phone,
    "company": sanitize_string,
    "status": _passthrough,  # enum, checked by the validator
    "notes": sanitize_text,
}

_INTERACTION_SANITIZERS: dict[str, Callable[[Any], Any]] = {
    "lead_id": _passthrough,  # UUID, checked by the validator
    "type": _passthrough,
    "description": sanitize_text,
}


def _sanitize_present(payload: Mapping[str, Any], sanitizers: Mapping[str, Callable[[Any], Any]]) -> dict[str, Any]:
    # Only keys present in the payload are returned, so a partial update stays partial.
    return {key: sanitizers[key](value) for key, value in payload.items() if key in sanitizers}


def sanitize_lead_input(payload: Mapping[str, Any]) -> dict[str, Any]:
    return _sanitize_present(payload, _LEAD_SANITIZERS)


def sanitize_interaction_input(payload: Mapping[str, Any]) -> dict[str, Any]:
    return _sanitize_present(payload, _INTERACTION_SANITIZERS)


__all__ = [
    "sanitize_string",
    "sanitize_email",
    "sanitize_phone",
    "sanitize_text",
    "sanitize_lead_input",
    "sanitize_interaction_input",
]
