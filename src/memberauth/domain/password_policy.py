"""ABOUTME: Password complexity rules built as Django-style password validators
ABOUTME: Collects every violated rule and describes password strength for member-facing hints"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError

# Every validator passes an explicit message to ValidationError, otherwise Django
# tries to localise its default text and blows up without configured settings.


class MinimumLengthValidator:
    """
    Validate that the password is of a minimum length.
    """

    code = "password_too_short"

    def __init__(self, min_length: int = 12) -> None:
        self.min_length = min_length

    def validate(self, password: str, user: object | None = None) -> None:
        if len(password) < self.min_length:
            raise ValidationError(
                self.get_error_message(),
                code=self.code,
            )

    def get_error_message(self) -> str:
        return f"Password must be at least {self.min_length} characters long."

    def get_help_text(self) -> str:
        return f"Your password must contain at least {self.min_length} characters."


class CharacterClassValidator:
    """
    Validate that the password contains at least one character matching a pattern.
    """

    def __init__(self, pattern: str, description: str, code: str) -> None:
        self.pattern = re.compile(pattern)
        self.description = description
        self.code = code

    def validate(self, password: str, user: object | None = None) -> None:
        if not self.pattern.search(password):
            raise ValidationError(self.get_error_message(), code=self.code)

    def get_error_message(self) -> str:
        return f"Password must contain at least one {self.description}."

    def get_help_text(self) -> str:
        return f"Your password must contain at least one {self.description}."


def get_password_validators(min_length: int = 12) -> tuple[MinimumLengthValidator | CharacterClassValidator, ...]:
    return (
        MinimumLengthValidator(min_length=min_length),
        CharacterClassValidator(r"[a-z]", "lowercase letter", "password_no_lower"),
        CharacterClassValidator(r"[A-Z]", "uppercase letter", "password_no_upper"),
        CharacterClassValidator(r"\d", "number", "password_no_digit"),
        CharacterClassValidator(r"[^a-zA-Z0-9]", "special character", "password_no_symbol"),
    )


def validate_password_policy(password: str, min_length: int = 12) -> list[str]:
    """
    Check a candidate password against every rule.

    Returns the messages for all violated rules; an empty list means the password is acceptable.
    """
    # Django's validate_password runs every validator and gathers all the failures
    try:
        validate_password(password, password_validators=get_password_validators(min_length))
    except ValidationError as error:
        return list(error.messages)
    return []


def password_policy_help_texts(min_length: int = 12) -> list[str]:
    return [v.get_help_text() for v in get_password_validators(min_length)]


@dataclass(frozen=True)
class PasswordStrength:
    label: str
    rules_met: dict[str, bool]

    @property
    def is_acceptable(self) -> bool:
        return all(self.rules_met.values())


def _rules_met(
    password: str, validators: Iterable[MinimumLengthValidator | CharacterClassValidator]
) -> dict[str, bool]:
    met = {}
    for validator in validators:
        try:
            validator.validate(password)
        except ValidationError:
            met[validator.code] = False
        else:
            met[validator.code] = True
    return met


def describe_password_strength(password: str, min_length: int = 12) -> PasswordStrength:
    rules_met = _rules_met(password, get_password_validators(min_length))
    score = sum(rules_met.values())
    if score == 5:
        label = "Strong"
    elif score == 4:
        label = "Medium"
    elif score == 3:
        label = "Weak"
    else:
        label = "Very Weak"
    return PasswordStrength(label=label, rules_met=rules_met)
