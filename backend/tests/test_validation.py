"""
Form rules and password strength scoring.
"""
from __future__ import annotations

import pytest

from backend.lms.validation import (
    EMAIL_RULE,
    HEX_COLOR_RE,
    PASSWORD_RULE,
    ValidationRule,
    password_strength,
    validate_field,
    validate_form,
)


@pytest.mark.parametrize(
    "password,strength,score",
    [
        ("", "weak", 0),
        ("abc", "weak", 1),
        ("abcdefgh", "weak", 2),
        ("Abcdefgh", "medium", 3),
        ("Abcdefg1", "strong", 4),
        ("Abcdef1!", "strong", 5),
    ],
)
def test_password_strength(password, strength, score):
    result = password_strength(password)
    assert (result.strength, result.score) == (strength, score)


def test_password_feedback_lists_missing_criteria():
    assert password_strength("abcdefgh").feedback == ["One uppercase letter", "One number", "One special character"]
    assert password_strength("Abcdef1!").feedback == []


def test_validate_field_order_of_checks():
    rule = ValidationRule(required=True, min_length=3, max_length=5)
    assert validate_field("  ", rule) == "This field is required"
    assert validate_field("ab", rule) == "Minimum 3 characters required"
    assert validate_field("abcdef", rule) == "Maximum 5 characters allowed"
    assert validate_field("abcd", rule) is None
    # Optional fields skip the other checks when empty.
    assert validate_field("", ValidationRule(min_length=3)) is None


def test_custom_and_pattern_rules():
    rule = ValidationRule(custom=lambda v: None if v.islower() else "lowercase only")
    assert validate_field("ABC", rule) == "lowercase only"
    assert validate_field("#12ab3F", ValidationRule(pattern=HEX_COLOR_RE)) is None
    assert validate_field("blue", ValidationRule(pattern=HEX_COLOR_RE)) == "Invalid format"


def test_validate_form_collects_errors_per_field():
    errors = validate_form({"email": "nope", "password": "short"}, {"email": EMAIL_RULE, "password": PASSWORD_RULE})
    assert errors == {
        "email": "Please enter a valid email address",
        "password": "Minimum 8 characters required",
    }
    assert validate_form({"email": "a@b.co", "password": "longenough"},
                         {"email": EMAIL_RULE, "password": PASSWORD_RULE}) == {}
