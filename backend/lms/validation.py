"""Form validation rules and password strength scoring."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Pattern

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
SPECIAL_CHARS_RE = re.compile(r'[!@#$%^&*(),.?":{}|<>]')
PASSWORD_MIN_LENGTH = 8


@dataclass(frozen=True)
class ValidationRule:
    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[Pattern[str]] = None
    custom: Optional[Callable[[str], Optional[str]]] = None
    message: Optional[str] = None


def validate_field(value: Optional[str], rule: ValidationRule) -> Optional[str]:
    """Return the first error message for `value`, or None when valid.

    Only `required` applies to empty values; length, pattern and custom
    checks run on non-empty input.
    """
    value = value or ""
    if rule.required and not value.strip():
        return rule.message or "This field is required"
    if value and rule.min_length and len(value) < rule.min_length:
        return rule.message or f"Minimum {rule.min_length} characters required"
    if value and rule.max_length and len(value) > rule.max_length:
        return rule.message or f"Maximum {rule.max_length} characters allowed"
    if value and rule.pattern is not None and not rule.pattern.search(value):
        return rule.message or "Invalid format"
    if value and rule.custom is not None:
        return rule.custom(value)
    return None


def validate_form(values: Mapping[str, Optional[str]], rules: Mapping[str, ValidationRule]) -> dict[str, str]:
    errors: dict[str, str] = {}
    for name, rule in rules.items():
        error = validate_field(values.get(name) or "", rule)
        if error:
            errors[name] = error
    return errors


@dataclass(frozen=True)
class PasswordStrength:
    strength: str
    score: int
    feedback: list[str] = field(default_factory=list)


def password_strength(password: Optional[str]) -> PasswordStrength:
    """Score a password 0..5 (length, upper, lower, digit, special).

    >= 4 is "strong", 3 is "medium", anything lower is "weak". `feedback`
    lists the criteria that are still missing.
    """
    password = password or ""
    checks = (
        (len(password) >= PASSWORD_MIN_LENGTH, "At least 8 characters"),
        (bool(re.search(r"[A-Z]", password)), "One uppercase letter"),
        (bool(re.search(r"[a-z]", password)), "One lowercase letter"),
        (bool(re.search(r"\d", password)), "One number"),
        (bool(SPECIAL_CHARS_RE.search(password)), "One special character"),
    )
    score = sum(1 for ok, _ in checks if ok)
    feedback = [hint for ok, hint in checks if not ok]
    if score >= 4:
        strength = "strong"
    elif score >= 3:
        strength = "medium"
    else:
        strength = "weak"
    return PasswordStrength(strength=strength, score=score, feedback=feedback)


EMAIL_RULE = ValidationRule(required=True, pattern=EMAIL_RE, message="Please enter a valid email address")
PASSWORD_RULE = ValidationRule(required=True, min_length=PASSWORD_MIN_LENGTH)


__all__ = [
    "EMAIL_RE",
    "EMAIL_RULE",
    "HEX_COLOR_RE",
    "PASSWORD_RULE",
    "PasswordStrength",
    "ValidationRule",
    "password_strength",
    "validate_field",
    "validate_form",
]
