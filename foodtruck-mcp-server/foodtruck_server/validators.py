"""Form validation that runs before any backend call."""

import re
from typing import Mapping, Optional

EMAIL_PATTERN = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"^\(\d{2}\) \d{5}-\d{4}$")

MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 3

ADDRESS_FIELDS = ("street", "number", "district", "city", "state", "postal_code")


class ValidationError(Exception):
    """Invalid user input, with one message per field."""

    def __init__(self, errors: Mapping[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__("; ".join(f"{field}: {message}" for field, message in self.errors.items()))


def format_phone(value: str) -> str:
    """Apply the ``(00) 00000-0000`` mask to whatever digits were typed."""
    digits = re.sub(r"\D", "", value)[:11]
    if len(digits) > 6:
        return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    if len(digits) > 2:
        return f"({digits[:2]}) {digits[2:]}"
    if digits:
        return f"({digits}"
    return ""


def _check_email(email: str, errors: dict[str, str]) -> None:
    if not email:
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.match(email):
        errors["email"] = "Invalid email"


def _check_name(name: str, errors: dict[str, str]) -> None:
    if not name or not name.strip():
        errors["name"] = "Name is required"
    elif len(name.strip()) < MIN_NAME_LENGTH:
        errors["name"] = f"Name must be at least {MIN_NAME_LENGTH} characters"


def _check_phone(phone: str, errors: dict[str, str]) -> None:
    if not phone:
        errors["phone"] = "Phone is required"
    elif not PHONE_PATTERN.match(phone):
        errors["phone"] = "Phone must look like (00) 00000-0000"


def validate_email(email: str) -> None:
    errors: dict[str, str] = {}
    _check_email(email, errors)
    if errors:
        raise ValidationError(errors)


def validate_sign_in(email: str, password: str) -> None:
    errors: dict[str, str] = {}
    _check_email(email, errors)
    if not password:
        errors["password"] = "Password is required"
    if errors:
        raise ValidationError(errors)


def validate_sign_up(
    email: str, password: str, confirm_password: str, name: str, phone: str
) -> None:
    """
    Check the registration form.

    Raises:
        ValidationError: With every failing field
    """
    errors: dict[str, str] = {}
    _check_name(name, errors)
    _check_email(email, errors)
    _check_phone(phone, errors)
    if not password:
        errors["password"] = "Password is required"
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if not confirm_password:
        errors["confirm_password"] = "Password confirmation is required"
    elif confirm_password != password:
        errors["confirm_password"] = "Passwords do not match"
    if errors:
        raise ValidationError(errors)


def validate_profile(name: str, phone: str) -> None:
    errors: dict[str, str] = {}
    _check_name(name, errors)
    _check_phone(phone, errors)
    if errors:
        raise ValidationError(errors)


def validate_address(fields: Mapping[str, Optional[str]]) -> None:
    """Every address field except the complement is required."""
    errors = {
        field: f"{field.replace('_', ' ').capitalize()} is required"
        for field in ADDRESS_FIELDS
        if not (fields.get(field) or "").strip()
    }
    if errors:
        raise ValidationError(errors)
