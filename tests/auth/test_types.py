"""Tests for auth/types.py - Pydantic models for the auth domain."""

from datetime import date

import pytest
from pydantic import ValidationError

from auth.types import (
    AuthResponse,
    Device,
    DeviceChallenge,
    DeviceChallengeState,
    FlowKind,
    User,
    VerificationSession,
)


class TestUser:
    """Tests for the resolved principal."""

    def test_rejects_missing_id(self):
        with pytest.raises(ValidationError):
            User(name="Ada")

    def test_ignores_unknown_fields(self):
        user = User.model_validate({"id": 1, "karma": 99})
        assert user.id == 1

    def test_age_verified_follows_birth_date(self):
        assert User(id=1).is_age_verified is False
        assert User(id=1, date_of_birth=date(2000, 1, 1)).is_age_verified is True

    def test_social_provider_aliases(self):
        """Server may name the identity provider several ways."""
        for key in ("auth_provider", "provider", "social_provider"):
            user = User.model_validate({"id": 1, key: "google"})
            assert user.is_social_account is True

    def test_password_account_is_not_social(self):
        assert User(id=1).is_social_account is False

    def test_parses_iso_timestamps(self):
        user = User.model_validate({"id": 1, "email_verified_at": "2025-03-01T10:00:00Z"})
        assert user.email_verified_at.year == 2025


class TestAuthResponse:

    def test_flags_default_false(self):
        response = AuthResponse()
        assert response.token is None
        assert not response.requires_2fa
        assert not response.requires_device_verification
        assert not response.requires_age_verification

    def test_nested_user(self):
        response = AuthResponse.model_validate({"token": "abc", "user": {"id": 7, "name": "Ada"}})
        assert response.user.name == "Ada"


class TestVerificationSession:

    def test_step_must_be_positive(self):
        with pytest.raises(ValidationError):
            VerificationSession(flow_kind=FlowKind.REGISTRATION, current_step=0)

    def test_json_round_trip_keeps_kind(self):
        session = VerificationSession(
            flow_kind=FlowKind.PHONE_LOGIN,
            session_id="s1",
            current_step=2,
            resend_available_at=1767225660,
        )
        restored = VerificationSession.model_validate(session.model_dump(mode="json"))
        assert restored == session
        assert restored.flow_kind is FlowKind.PHONE_LOGIN

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValidationError):
            VerificationSession.model_validate({"flow_kind": "magic_link"})


class TestDevice:

    def test_name_and_activity_aliases(self):
        device = Device.model_validate(
            {"id": 3, "name": "Laptop", "last_activity": "2025-03-01T10:00:00Z"}
        )
        assert device.device_name == "Laptop"
        assert device.last_used_at is not None

    def test_challenge_defaults_to_unknown(self):
        challenge = DeviceChallenge(fingerprint="fp")
        assert challenge.state is DeviceChallengeState.UNKNOWN
