"""Declarative field rules evaluated independently into a field -> messages mapping.

Each field owns an ordered tuple of rules. A blank value only triggers the
rules marked implicit (required, accepted); every other rule is skipped for
that field. Rules never short-circuit across fields, so the result does not
depend on evaluation order.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import EmailStr, TypeAdapter, ValidationError

_email_adapter = TypeAdapter(EmailStr)

ACCEPTED_VALUES = frozenset({True, 1, "1", "yes", "on", "true"})


@dataclass(frozen=True)
class Rule:
    """One check: `passes(value, data)` must be True, otherwise `message` is reported."""

    name: str
    passes: Callable[[Any, Mapping[str, Any]], bool]
    message: str
    implicit: bool = False


FieldRules = tuple[str, tuple[Rule, ...]]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _attribute(field: str) -> str:
    return field.replace("_", " ")


def required() -> Rule:
    return Rule("required", lambda v, _: not _is_blank(v), "The {attribute} field is required.", implicit=True)


def max_length(limit: int) -> Rule:
    return Rule(
        "max",
        lambda v, _: len(str(v)) <= limit,
        f"The {{attribute}} may not be greater than {limit} characters.",
    )


def min_length(limit: int) -> Rule:
    return Rule(
        "min",
        lambda v, _: len(str(v)) >= limit,
        f"The {{attribute}} must be at least {limit} characters.",
    )


def _valid_email(value: Any) -> bool:
    """Plain addresses only: the "Name <addr>" form validates to a different string and fails."""
    candidate = str(value).strip()
    try:
        address = _email_adapter.validate_python(candidate)
    except ValidationError:
        return False
    return address.lower() == candidate.lower()


def email() -> Rule:
    return Rule("email", lambda v, _: _valid_email(v), "The {attribute} must be a valid email address.")


def unique(exists: Callable[[str], bool]) -> Rule:
    """Fails when `exists(value)` reports a stored record. Read-only check."""
    return Rule("unique", lambda v, _: not exists(str(v)), "The {attribute} has already been taken.")


def confirmed(field: str) -> Rule:
    """Value must equal data['<field>_confirmation']."""
    other = f"{field}_confirmation"
    return Rule(
        "confirmed",
        lambda v, data: v == data.get(other),
        "The {attribute} confirmation does not match.",
    )


def accepted() -> Rule:
    def passes(value: Any, _: Mapping[str, Any]) -> bool:
        if isinstance(value, str):
            value = value.strip().lower()
        return value in ACCEPTED_VALUES

    return Rule("accepted", passes, "The {attribute} must be accepted.", implicit=True)


def evaluate(data: Mapping[str, Any], rules: list[FieldRules]) -> dict[str, list[str]]:
    """Run every field's rules; return only fields with at least one violation."""
    errors: dict[str, list[str]] = {}
    for field_name, field_rules in rules:
        value = data.get(field_name)
        blank = _is_blank(value)
        messages = [
            rule.message.format(attribute=_attribute(field_name))
            for rule in field_rules
            if (rule.implicit or not blank) and not rule.passes(value, data)
        ]
        if messages:
            errors[field_name] = messages
    return errors
