"""Tests for auth/validation.py - client-side fast checks."""

from datetime import date

import pytest

from auth.exceptions import InvalidInputError
from auth.types import ContactType
from auth.validation import (
    AgeVerificationForm,
    ChangePasswordForm,
    EmailForm,
    LoginForm,
    PasswordResetForm,
    PhoneForm,
    RegisterCompleteForm,
    RegisterStartForm,
    calculate_age,
    map_field_errors,
    require_code,
    require_two_factor_code,
    validate_form,
)


TODAY = date(2026, 1, 1)


def errors_of(model, data, **context):
    with pytest.raises(InvalidInputError) as exc_info:
        validate_form(model, data, **context)
    return exc_info.value.errors


# =============================================================================
# PRIMITIVES
# =============================================================================


class TestCalculateAge:

    def test_birthday_already_passed(self):
        assert calculate_age(date(2000, 1, 1), date(2026, 6, 1)) == 26

    def test_birthday_not_yet_reached(self):
        assert calculate_age(date(2000, 12, 31), date(2026, 6, 1)) == 25

    def test_on_birthday(self):
        assert calculate_age(date(2011, 1, 1), TODAY) == 15


class TestRequireCode:

    def test_accepts_six_digits(self):
        assert require_code("123456") == "123456"

    def test_wrong_length(self):
        with pytest.raises(InvalidInputError) as exc_info:
            require_code("12345")
        assert exc_info.value.errors == {"code": ["Code must be 6 digits"]}

    def test_non_digits(self):
        with pytest.raises(InvalidInputError) as exc_info:
            require_code("12a456", field="device_code")
        assert exc_info.value.errors == {"device_code": ["Code must contain only numbers"]}


class TestRequireTwoFactorCode:

    @pytest.mark.parametrize("code", ["000000", " 123456 ", "ABCD-1234", "a1b2c3d4e5"])
    def test_accepts_totp_or_backup_code(self, code):
        assert require_two_factor_code(code) == code.strip()

    @pytest.mark.parametrize("code", ["12345", "12-34", "", "abc"])
    def test_rejects_everything_else(self, code):
        with pytest.raises(InvalidInputError) as exc_info:
            require_two_factor_code(code)
        assert "two_factor_code" in exc_info.value.errors


# =============================================================================
# FORMS
# =============================================================================


class TestLoginForm:

    def test_valid(self):
        form = validate_form(LoginForm, {"login": " user@example.com ", "password": "correct"})
        assert form.login == "user@example.com"

    def test_both_fields_required(self):
        errors = errors_of(LoginForm, {"login": "  ", "password": ""})
        assert errors == {
            "login": ["Email or username is required"],
            "password": ["Password is required"],
        }


class TestPhoneForm:

    def test_strips_formatting(self):
        form = validate_form(PhoneForm, {"phone": "+1 (555) 123-4567"})
        assert form.phone == "+15551234567"

    @pytest.mark.parametrize("phone", ["555-1234", "+1234567890123456", "phone"])
    def test_rejects_invalid(self, phone):
        assert "phone" in errors_of(PhoneForm, {"phone": phone})


class TestEmailForm:

    def test_rejects_invalid_email(self):
        assert "email" in errors_of(EmailForm, {"email": "not-an-email"})


class TestRegisterStartForm:

    VALID = {
        "name": "Ada",
        "date_of_birth": "2000-05-05",
        "contact_type": "email",
        "contact": "ada@example.com",
    }

    def test_valid_email_contact(self):
        form = validate_form(RegisterStartForm, self.VALID, today=TODAY)
        assert form.contact_type is ContactType.EMAIL

    def test_phone_contact_is_normalised(self):
        data = {**self.VALID, "contact_type": "phone", "contact": "+1 555 123 4567"}
        form = validate_form(RegisterStartForm, data, today=TODAY)
        assert form.contact == "+15551234567"

    def test_contact_must_match_type(self):
        data = {**self.VALID, "contact_type": "phone", "contact": "ada@example.com"}
        errors = errors_of(RegisterStartForm, data, today=TODAY)
        assert errors == {"contact": ["Please enter a valid email or phone number"]}

    def test_too_young(self):
        data = {**self.VALID, "date_of_birth": "2015-01-01"}
        errors = errors_of(RegisterStartForm, data, today=TODAY)
        assert errors == {"date_of_birth": ["You must be at least 15 years old"]}

    def test_minimum_age_from_context(self):
        data = {**self.VALID, "date_of_birth": "2010-01-01"}
        errors = errors_of(RegisterStartForm, data, today=TODAY, minimum_age=18)
        assert errors == {"date_of_birth": ["You must be at least 18 years old"]}

    def test_birth_date_in_future(self):
        data = {**self.VALID, "date_of_birth": "2026-01-01"}
        errors = errors_of(RegisterStartForm, data, today=TODAY)
        assert errors == {"date_of_birth": ["Date of birth must be before today"]}

    def test_name_length(self):
        errors = errors_of(RegisterStartForm, {**self.VALID, "name": "x" * 51}, today=TODAY)
        assert errors == {"name": ["Name must be less than 50 characters"]}


class TestRegisterCompleteForm:

    def test_valid(self):
        validate_form(
            RegisterCompleteForm,
            {"username": "ada_l", "password": "s3cretpass", "password_confirmation": "s3cretpass"},
        )

    @pytest.mark.parametrize(
        "username, message",
        [
            ("ada", "Username must be at least 4 characters"),
            ("a" * 16, "Username must not exceed 15 characters"),
            ("ada lovelace", "Username can only contain letters, numbers, and underscores"),
        ],
    )
    def test_username_rules(self, username, message):
        errors = errors_of(
            RegisterCompleteForm,
            {"username": username, "password": "s3cretpass", "password_confirmation": "s3cretpass"},
        )
        assert errors == {"username": [message]}

    @pytest.mark.parametrize(
        "password, message",
        [
            ("short1", "The password must be at least 8 characters."),
            ("12345678", "The password must contain at least one letter."),
            ("abcdefgh", "The password must contain at least one number."),
            ("password123", "The password is too weak."),
        ],
    )
    def test_password_rules(self, password, message):
        errors = errors_of(
            RegisterCompleteForm,
            {"username": "ada_l", "password": password, "password_confirmation": password},
        )
        assert errors == {"password": [message]}

    def test_confirmation_mismatch(self):
        errors = errors_of(
            RegisterCompleteForm,
            {"username": "ada_l", "password": "s3cretpass", "password_confirmation": "s3cretpas"},
        )
        assert errors == {"password_confirmation": ["Passwords do not match"]}


class TestPasswordForms:

    def test_reset_requires_confirmation(self):
        errors = errors_of(
            PasswordResetForm, {"password": "s3cretpass", "password_confirmation": ""}
        )
        assert errors == {"password_confirmation": ["Password confirmation is required"]}

    def test_change_requires_current(self):
        errors = errors_of(
            ChangePasswordForm,
            {"current_password": "", "password": "n3wpassword", "password_confirmation": "n3wpassword"},
        )
        assert errors == {"current_password": ["Current password is required"]}


class TestAgeVerificationForm:

    def test_old_enough(self):
        form = validate_form(AgeVerificationForm, {"date_of_birth": "2011-01-01"}, today=TODAY)
        assert form.date_of_birth == date(2011, 1, 1)

    def test_one_day_short(self):
        errors = errors_of(AgeVerificationForm, {"date_of_birth": "2011-01-02"}, today=TODAY)
        assert "date_of_birth" in errors

    def test_missing_date(self):
        assert "date_of_birth" in errors_of(AgeVerificationForm, {}, today=TODAY)


# =============================================================================
# SERVER ERROR MAPPING
# =============================================================================


class TestMapFieldErrors:

    def test_known_fields_kept(self):
        mapped = map_field_errors({"code": ["Wrong code."]}, {"code"})
        assert mapped == {"code": ["Wrong code."]}

    def test_unknown_fields_go_to_general(self):
        mapped = map_field_errors(
            {"session_id": ["Expired."], "throttle": ["Later."], "code": ["Wrong."]},
            {"code"},
        )
        assert mapped == {"general": ["Expired.", "Later."], "code": ["Wrong."]}
