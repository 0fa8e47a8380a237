"""Authentication client modules.

Only leaf modules are re-exported here; import the client pieces from their
own modules (auth.client, auth.step_up, ...), which depend on clients/.
"""

from auth.exceptions import (
    AuthError,
    ApiError,
    ApiErrorKind,
    FieldValidationError,
    RateLimitedError,
    SessionInvalidError,
    CsrfMismatchError,
    DeviceVerificationRequiredError,
    RequestRejectedError,
    ServerError,
    NetworkError,
    InvalidInputError,
    ResendCooldownError,
    NoActiveSessionError,
    FlowMismatchError,
    ConfirmationRequiredError,
    IllegalTransitionError,
    StaleResponseError,
)
from auth.types import (
    User,
    AuthResponse,
    FlowKind,
    ContactType,
    VerificationSession,
    Device,
    DeviceInfo,
    DeviceChallenge,
    TwoFactorSetup,
)
from auth.config import ClientConfig
