"""
Domain: payload validation driven by per-entity rule tables.

Each entity declares a table of field -> FieldRule. A single generic validator
evaluates a payload against the table and collects every failure instead of
stopping at the first one, so a payload with both a bad name and a bad email
reports both.

Two shapes per entity:
- full-create: required fields must be present;
- partial-update: every field optional, an empty payload is valid (a no-op).

Unknown keys are dropped. Ownership, ids and timestamps are server-assigned
and can never be smuggled in through a payload.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .interaction import InteractionType
from .lead import LeadStatus

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[0-9 \-+()]+$")


@dataclass(frozen=True, slots=True)
class FieldRule:
    """
    Declarative constraints for one string field.

    nullable: None (and "") are accepted and mean "clear this field".
    messages: overrides keyed by "required", "type", "min", "max",
              "pattern", "choices".
    """

    required: bool = False
    nullable: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[re.Pattern[str]] = None
    choices: Optional[tuple[str, ...]] = None
    messages: Mapping[str, str] = field(default_factory=dict)

    def message(self, key: str, default: str) -> str:
        return self.messages.get(key, default)


@dataclass(frozen=True, slots=True)
class ValidationResult:
    data: dict[str, Any]
    errors: dict[str, list[str]]

    @property
    def is_valid(self) -> bool:
        return not self.errors


LEAD_RULES: dict[str, FieldRule] = {
    "name": FieldRule(
        required=True,
        min_length=1,
        max_length=100,
        messages={
            "required": "Name is required",
            "min": "Name is required",
            "max": "Name must be less than 100 characters",
        },
    ),
    "email": FieldRule(
        nullable=True,
        pattern=EMAIL_PATTERN,
        messages={"pattern": "Invalid email"},
    ),
    "phone": FieldRule(
        nullable=True,
        pattern=PHONE_PATTERN,
        messages={"pattern": "Invalid phone number"},
    ),
    "company": FieldRule(
        nullable=True,
        max_length=100,
        messages={"max": "Company must be less than 100 characters"},
    ),
    "status": FieldRule(
        required=True,
        choices=tuple(s.value for s in LeadStatus),
        messages={
            "required": "Status is required",
            "choices": "Status must be one of: new, contacted, qualified, pending, lost, won",
        },
    ),
    "notes": FieldRule(
        nullable=True,
        max_length=1000,
        messages={"max": "Notes must be less than 1000 characters"},
    ),
}

INTERACTION_RULES: dict[str, FieldRule] = {
    "lead_id": FieldRule(
        required=True,
        pattern=UUID_PATTERN,
        messages={"required": "Invalid lead ID", "pattern": "Invalid lead ID"},
    ),
    "type": FieldRule(
        required=True,
        choices=tuple(t.value for t in InteractionType),
        messages={
            "required": "Type must be one of: call, email, meeting, note, other",
            "choices": "Type must be one of: call, email, meeting, note, other",
        },
    ),
    "description": FieldRule(
        required=True,
        min_length=1,
        max_length=1000,
        messages={
            "required": "Description is required",
            "min": "Description is required",
            "max": "Description must be less than 1000 characters",
        },
    ),
}


def _check_field(rule: FieldRule, value: Any) -> list[str]:
    if value is None or value == "":
        if rule.nullable:
            return []
        if value is None:
            return [rule.message("required", "Required")]

    if not isinstance(value, str):
        return [rule.message("type", "Expected string")]

    errors: list[str] = []
    if rule.min_length is not None and len(value) < rule.min_length:
        errors.append(rule.message("min", f"Must be at least {rule.min_length} characters"))
    if rule.max_length is not None and len(value) > rule.max_length:
        errors.append(rule.message("max", f"Must be at most {rule.max_length} characters"))
    if rule.pattern is not None and not rule.pattern.match(value):
        errors.append(rule.message("pattern", "Invalid format"))
    if rule.choices is not None and value not in rule.choices:
        errors.append(rule.message("choices", f"Must be one of: {', '.join(rule.choices)}"))
    return errors


def validate(payload: Any, rules: Mapping[str, FieldRule], partial: bool = False) -> ValidationResult:
    """
    Validate `payload` against `rules`.

    Returns the accepted fields (only keys present in the payload and known to
    the table) and a field -> messages map of every failure.
    """

    if not isinstance(payload, Mapping):
        return ValidationResult(data={}, errors={"body": ["Expected a JSON object"]})

    data: dict[str, Any] = {}
    errors: dict[str, list[str]] = {}

    for name, rule in rules.items():
        if name not in payload:
            if rule.required and not partial:
                errors[name] = [rule.message("required", "Required")]
            continue

        field_errors = _check_field(rule, payload[name])
        if field_errors:
            errors[name] = field_errors
        else:
            data[name] = payload[name]

    return ValidationResult(data=data, errors=errors)


def validate_lead(payload: Any, partial: bool = False) -> ValidationResult:
    return validate(payload, LEAD_RULES, partial=partial)


def validate_interaction(payload: Any) -> ValidationResult:
    return validate(payload, INTERACTION_RULES)


def is_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


__all__ = [
    "FieldRule",
    "ValidationResult",
    "LEAD_RULES",
    "INTERACTION_RULES",
    "validate",
    "validate_lead",
    "validate_interaction",
    "is_uuid",
]
