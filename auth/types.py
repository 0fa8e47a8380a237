"""Pydantic models for the auth domain."""

from datetime import date, datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, Field


class User(BaseModel):
    """The resolved principal returned by GET /auth/me."""

    id: int | str
    name: str | None = None
    username: str | None = None
    email: str | None = None
    phone: str | None = None
    email_verified_at: datetime | None = None
    phone_verified_at: datetime | None = None
    date_of_birth: date | None = None
    two_factor_enabled: bool = False
    auth_provider: str | None = Field(
        default=None,
        validation_alias=AliasChoices("auth_provider", "provider", "social_provider"),
        description="Social identity provider the account was created with",
    )
    avatar: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"extra": "ignore", "populate_by_name": True}

    @property
    def is_age_verified(self) -> bool:
        """A recorded birth date means the age gate has been passed."""
        return self.date_of_birth is not None

    @property
    def is_social_account(self) -> bool:
        return bool(self.auth_provider)


class AuthResponse(BaseModel):
    """
    Response of any primary or step-up authentication call.

    Exactly what the server grants: a token, or flags naming the next
    challenge. Flags are read, never inferred.
    """

    token: str | None = None
    user: User | None = None
    message: str | None = None
    requires_2fa: bool = False
    requires_device_verification: bool = False
    requires_age_verification: bool = False
    fingerprint: str | None = None
    user_id: int | str | None = None
    resend_available_at: int | None = None

    model_config = {"extra": "ignore"}


class FlowKind(Enum):
    """Server-tracked multi-step flows."""

    REGISTRATION = "registration"
    PHONE_LOGIN = "phone_login"
    PASSWORD_RESET = "password_reset"


class ContactType(Enum):
    EMAIL = "email"
    PHONE = "phone"


class VerificationSession(BaseModel):
    """
    Progress marker of an in-progress multi-step flow.

    Persisted between steps so a restart resumes at current_step.
    """

    flow_kind: FlowKind
    session_id: str | None = Field(
        default=None,
        description="Server-issued id; password reset is keyed by contact instead",
    )
    current_step: int = Field(default=1, ge=1)
    contact: str | None = None
    resend_available_at: int | None = None
    code_expires_at: int | None = None
    code: str | None = Field(
        default=None,
        description="Verified code, held in memory only while a later step needs it",
    )


class DeviceType(Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class DeviceInfo(BaseModel):
    """Descriptive metadata the client reports for the current device."""

    fingerprint: str
    name: str
    type: DeviceType
    os: str
    browser: str


class Device(BaseModel):
    """A device record as listed by the server."""

    id: int | str
    device_name: str | None = Field(
        default=None, validation_alias=AliasChoices("device_name", "name")
    )
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    ip_address: str | None = None
    location: str | None = None
    fingerprint: str | None = None
    is_current: bool = False
    is_trusted: bool = False
    last_used_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("last_used_at", "last_activity")
    )
    created_at: datetime | None = None

    model_config = {"extra": "ignore", "populate_by_name": True}


class DeviceChallengeState(Enum):
    """Per-login device verification progress."""

    UNKNOWN = "unknown"
    CODE_SENT = "code_sent"
    VERIFIED = "verified"


class DeviceChallenge(BaseModel):
    """Device verification challenge for the current login attempt."""

    fingerprint: str
    user_id: int | str | None = None
    state: DeviceChallengeState = DeviceChallengeState.UNKNOWN
    resend_available_at: int | None = None


class TwoFactorSetup(BaseModel):
    """Secret material returned when enabling TOTP."""

    secret: str
    qr_code_url: str
    backup_codes: list[str] = Field(default_factory=list)
