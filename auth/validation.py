"""Client-side fast checks run before any request is sent.

The server remains the authority; these forms mirror its rules so obvious
mistakes are reported per field without a round trip. Date rules read
"today" and the minimum age from the validation context so tests can pin
them.
"""

import re
from datetime import date
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel, EmailStr, ValidationInfo, field_validator

from auth.exceptions import InvalidInputError
from auth.types import ContactType

GENERAL_FIELD = "general"

PHONE_PATTERN = re.compile(r"^\+?[0-9]{10,15}$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BACKUP_CODE_PATTERN = re.compile(r"^(?:[A-Za-z0-9]{8,12}|[A-Za-z0-9]{4,6}-[A-Za-z0-9]{4,6})$")

WEAK_PASSWORDS = frozenset({
    "password", "123456", "123456789", "qwerty", "abc123", "password123",
    "admin", "letmein", "welcome", "monkey", "1234567890", "password1",
    "123123", "qwerty123", "dragon", "master", "hello", "login", "princess",
    "solo", "qwertyuiop", "starwars", "superman",
})

DEFAULT_MINIMUM_AGE = 15

ModelT = TypeVar("ModelT", bound=BaseModel)


def calculate_age(born: date, today: date) -> int:
    """Completed years between born and today."""
    years = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        years -= 1
    return years


def code_problem(code: str, length: int = 6) -> str | None:
    """Message describing why code is unacceptable, or None."""
    if len(code) != length:
        return f"Code must be {length} digits"
    if not code.isdigit():
        return "Code must contain only numbers"
    return None


def password_problem(password: str) -> str | None:
    if len(password) < 8:
        return "The password must be at least 8 characters."
    if len(password) > 128:
        return "Password must not exceed 128 characters"
    if not re.search(r"[A-Za-z]", password):
        return "The password must contain at least one letter."
    if not re.search(r"[0-9]", password):
        return "The password must contain at least one number."
    if password.lower() in WEAK_PASSWORDS:
        return "The password is too weak."
    return None


def _check_birth_date(value: date, info: ValidationInfo) -> date:
    context = info.context or {}
    today = context.get("today") or date.today()
    minimum_age = context.get("minimum_age", DEFAULT_MINIMUM_AGE)
    if value >= today:
        raise ValueError("Date of birth must be before today")
    if calculate_age(value, today) < minimum_age:
        raise ValueError(f"You must be at least {minimum_age} years old")
    return value


def _check_confirmation(value: str, info: ValidationInfo) -> str:
    if not value:
        raise ValueError("Password confirmation is required")
    password = info.data.get("password")
    if password is not None and value != password:
        raise ValueError("Passwords do not match")
    return value


def _check_password(value: str) -> str:
    problem = password_problem(value)
    if problem:
        raise ValueError(problem)
    return value


# =============================================================================
# FORMS
# =============================================================================


class LoginForm(BaseModel):
    login: str
    password: str

    @field_validator("login")
    @classmethod
    def login_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Email or username is required")
        return value

    @field_validator("password")
    @classmethod
    def password_required(cls, value: str) -> str:
        if not value:
            raise ValueError("Password is required")
        return value


class PhoneForm(BaseModel):
    phone: str

    @field_validator("phone")
    @classmethod
    def phone_format(cls, value: str) -> str:
        value = re.sub(r"[\s\-()]", "", value)
        if not value:
            raise ValueError("Phone number is required")
        if not PHONE_PATTERN.match(value):
            raise ValueError("Please enter a valid phone number")
        return value


class EmailForm(BaseModel):
    email: EmailStr


class RegisterStartForm(BaseModel):
    name: str
    date_of_birth: date
    # Declared before contact so the contact check can see it
    contact_type: ContactType
    contact: str

    @field_validator("name")
    @classmethod
    def name_length(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        if len(value) > 50:
            raise ValueError("Name must be less than 50 characters")
        return value

    check_birth_date = field_validator("date_of_birth")(_check_birth_date)

    @field_validator("contact")
    @classmethod
    def contact_matches_type(cls, value: str, info: ValidationInfo) -> str:
        contact_type = info.data.get("contact_type")
        if contact_type is ContactType.PHONE:
            value = re.sub(r"[\s\-()]", "", value)
            valid = bool(PHONE_PATTERN.match(value))
        else:
            value = value.strip()
            valid = bool(EMAIL_PATTERN.match(value))
        if not valid:
            raise ValueError("Please enter a valid email or phone number")
        return value


class RegisterCompleteForm(BaseModel):
    username: str
    password: str
    password_confirmation: str

    @field_validator("username")
    @classmethod
    def username_format(cls, value: str) -> str:
        if len(value) < 4:
            raise ValueError("Username must be at least 4 characters")
        if len(value) > 15:
            raise ValueError("Username must not exceed 15 characters")
        if not USERNAME_PATTERN.match(value):
            raise ValueError("Username can only contain letters, numbers, and underscores")
        return value

    check_password = field_validator("password")(_check_password)
    check_confirmation = field_validator("password_confirmation")(_check_confirmation)


class PasswordResetForm(BaseModel):
    password: str
    password_confirmation: str

    check_password = field_validator("password")(_check_password)
    check_confirmation = field_validator("password_confirmation")(_check_confirmation)


class ChangePasswordForm(BaseModel):
    current_password: str
    password: str
    password_confirmation: str

    @field_validator("current_password")
    @classmethod
    def current_required(cls, value: str) -> str:
        if not value:
            raise ValueError("Current password is required")
        return value

    check_password = field_validator("password")(_check_password)
    check_confirmation = field_validator("password_confirmation")(_check_confirmation)


class AgeVerificationForm(BaseModel):
    date_of_birth: date

    check_birth_date = field_validator("date_of_birth")(_check_birth_date)


# =============================================================================
# ERROR MAPPING
# =============================================================================


def field_errors(exc: pydantic.ValidationError) -> dict[str, list[str]]:
    """Group pydantic errors by field; model-level errors land in 'general'."""
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        path = ".".join(str(part) for part in error["loc"]) or GENERAL_FIELD
        message = error["msg"].removeprefix("Value error, ")
        errors.setdefault(path, []).append(message)
    return errors


def validate_form(model: type[ModelT], data: dict[str, Any], **context: Any) -> ModelT:
    """
    Validate data against a form model.

    Raises:
        InvalidInputError: With per-field messages.
    """
    try:
        return model.model_validate(data, context=context)
    except pydantic.ValidationError as e:
        raise InvalidInputError(field_errors(e)) from e


def require_code(code: str, length: int = 6, field: str = "code") -> str:
    """
    Raises:
        InvalidInputError: If code is not exactly length digits.
    """
    problem = code_problem(code, length)
    if problem:
        raise InvalidInputError({field: [problem]})
    return code


def require_two_factor_code(code: str, length: int = 6) -> str:
    """
    Accept either an authenticator code or a backup code.

    Raises:
        InvalidInputError: Under the two_factor_code field.
    """
    code = code.strip()
    if code.isdigit() and len(code) == length:
        return code
    if BACKUP_CODE_PATTERN.match(code):
        return code
    raise InvalidInputError({"two_factor_code": [f"Enter a {length}-digit code or a backup code"]})


def map_field_errors(errors: dict[str, list[str]], fields: set[str]) -> dict[str, list[str]]:
    """
    Attach server field errors to a form's known fields.

    Entries for fields the form does not show are collected under 'general'.
    """
    mapped: dict[str, list[str]] = {}
    for field, messages in errors.items():
        slot = field if field in fields else GENERAL_FIELD
        mapped.setdefault(slot, []).extend(messages)
    return mapped
