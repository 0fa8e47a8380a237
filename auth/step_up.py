"""
Step-up authentication orchestrator.

Drives a login attempt from primary credentials through whichever further
challenges the server demands:

    ANONYMOUS -> PRIMARY_PENDING -> [TWO_FACTOR_PENDING]
              -> [DEVICE_VERIFICATION_PENDING] -> [AGE_VERIFICATION_PENDING]
              -> AUTHENTICATED

The state is one enum value checked against a transition table, so two
challenges can never be pending at once. 2FA is resolved before device
verification; age verification comes last, once a token exists and the
user has been fetched.
"""

import logging
import threading
from datetime import date
from enum import Enum
from typing import Any, Mapping

from auth.code_entry import CodeEntry
from auth.config import ClientConfig
from auth.device import DeviceTrustManager
from auth.exceptions import (
    ApiError,
    DeviceVerificationRequiredError,
    FieldValidationError,
    IllegalTransitionError,
    NoActiveSessionError,
    RequestRejectedError,
    StaleResponseError,
)
from auth.session import SessionContext
from auth.types import AuthResponse, User, VerificationSession
from auth.validation import (
    AgeVerificationForm,
    LoginForm,
    require_two_factor_code,
    validate_form,
)
from auth.verification import PhoneLoginFlow, RegistrationFlow
from clients.api_client import ApiClient
from core.event_bus import EventBus
from core.events import (
    AuthStateChanged,
    DeviceVerificationRequired,
    NavigationRequested,
    Notification,
    Routes,
)
from utils.timezone import Clock, system_clock, today_utc

logger = logging.getLogger(__name__)


class AuthState(Enum):
    ANONYMOUS = "anonymous"
    PRIMARY_PENDING = "primary_pending"
    TWO_FACTOR_PENDING = "two_factor_pending"
    DEVICE_VERIFICATION_PENDING = "device_verification_pending"
    AGE_VERIFICATION_PENDING = "age_verification_pending"
    AUTHENTICATED = "authenticated"


TRANSITIONS: dict[AuthState, frozenset[AuthState]] = {
    # Restored sessions skip the primary step
    AuthState.ANONYMOUS: frozenset({
        AuthState.PRIMARY_PENDING,
        AuthState.DEVICE_VERIFICATION_PENDING,
        AuthState.AGE_VERIFICATION_PENDING,
        AuthState.AUTHENTICATED,
    }),
    AuthState.PRIMARY_PENDING: frozenset({
        AuthState.ANONYMOUS,
        AuthState.TWO_FACTOR_PENDING,
        AuthState.DEVICE_VERIFICATION_PENDING,
        AuthState.AGE_VERIFICATION_PENDING,
        AuthState.AUTHENTICATED,
    }),
    AuthState.TWO_FACTOR_PENDING: frozenset({
        AuthState.ANONYMOUS,
        AuthState.DEVICE_VERIFICATION_PENDING,
        AuthState.AGE_VERIFICATION_PENDING,
        AuthState.AUTHENTICATED,
    }),
    AuthState.DEVICE_VERIFICATION_PENDING: frozenset({
        AuthState.ANONYMOUS,
        AuthState.AGE_VERIFICATION_PENDING,
        AuthState.AUTHENTICATED,
    }),
    AuthState.AGE_VERIFICATION_PENDING: frozenset({
        AuthState.ANONYMOUS,
        AuthState.AUTHENTICATED,
    }),
    AuthState.AUTHENTICATED: frozenset({
        AuthState.ANONYMOUS,
    }),
}


class PrimaryMethod(Enum):
    """How the current attempt proved the first factor."""

    PASSWORD = "password"
    PHONE = "phone"
    REGISTRATION = "registration"
    SOCIAL = "social"


class StepUpOrchestrator:
    """
    Login state machine.

    Usage:
        orchestrator = StepUpOrchestrator(api, session, devices, phone, registration, bus, config)
        state = orchestrator.login("user@example.com", "correct")
        if state is AuthState.TWO_FACTOR_PENDING:
            state = orchestrator.submit_two_factor("123456")

    Each attempt is tagged with a generation; a response that lands after
    the attempt was superseded (back to login, a new attempt, a forced
    reset) raises StaleResponseError instead of being applied.
    """

    def __init__(
        self,
        api: ApiClient,
        session: SessionContext,
        devices: DeviceTrustManager,
        phone_login: PhoneLoginFlow,
        registration: RegistrationFlow,
        event_bus: EventBus,
        config: ClientConfig,
        clock: Clock = system_clock,
    ):
        self._api = api
        self._session = session
        self._devices = devices
        self._phone_login = phone_login
        self._registration = registration
        self._bus = event_bus
        self._config = config
        self._clock = clock

        self._state = AuthState.ANONYMOUS
        self._lock = threading.Lock()
        self._generation = 0
        self._method: PrimaryMethod | None = None
        self._credentials: dict[str, str] | None = None
        self._deferred_device: dict[str, Any] | None = None

        self._bus.subscribe("SessionInvalidated", self._on_session_lost)
        self._bus.subscribe("ReloadRequested", self._on_session_lost)
        self._bus.subscribe("SessionEnded", self._on_session_lost)
        self._bus.subscribe("DeviceVerificationRequired", self._on_device_verification_required)

    # =========================================================================
    # Observable state
    # =========================================================================

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def primary_verified(self) -> bool:
        return self._state not in (AuthState.ANONYMOUS, AuthState.PRIMARY_PENDING)

    @property
    def requires_2fa(self) -> bool:
        return self._state is AuthState.TWO_FACTOR_PENDING

    @property
    def requires_device_verification(self) -> bool:
        return self._state is AuthState.DEVICE_VERIFICATION_PENDING

    @property
    def requires_age_verification(self) -> bool:
        return self._state is AuthState.AGE_VERIFICATION_PENDING

    @property
    def phone_login(self) -> PhoneLoginFlow:
        return self._phone_login

    @property
    def registration(self) -> RegistrationFlow:
        return self._registration

    @property
    def devices(self) -> DeviceTrustManager:
        return self._devices

    # =========================================================================
    # Code entry
    # =========================================================================

    def phone_code_entry(self) -> CodeEntry[AuthState]:
        """Digit buffer for the SMS code; auto-submits to verify_phone_code."""
        return CodeEntry(self.verify_phone_code, length=self._config.code_length)

    def two_factor_code_entry(self) -> CodeEntry[AuthState]:
        """
        Digit buffer for an authenticator code; auto-submits to submit_two_factor.

        Backup codes are not all digits and go to submit_two_factor directly.
        """
        return CodeEntry(self.submit_two_factor, length=self._config.code_length)

    def device_code_entry(self) -> CodeEntry[AuthState]:
        """Digit buffer for the device code; auto-submits to verify_device."""
        return CodeEntry(self.verify_device, length=self._config.code_length)

    def restore_session(self) -> AuthState:
        """
        Resume a stored session at process start.

        A restored social account without a birth date still owes the age
        check; a new-device signal arrives as DeviceVerificationRequired.
        """
        if self._state is not AuthState.ANONYMOUS:
            return self._state
        user = self._session.bootstrap()
        if user is None:
            return self._state
        if not user.is_age_verified and user.is_social_account:
            self._transition(AuthState.AGE_VERIFICATION_PENDING)
            self._bus.publish(NavigationRequested(route=Routes.AGE_VERIFICATION))
            return self._state
        self._transition(AuthState.AUTHENTICATED)
        return self._state

    # =========================================================================
    # Primary factor
    # =========================================================================

    def login(self, login: str, password: str) -> AuthState:
        """
        Email/username and password login.

        Any failure returns the machine to ANONYMOUS and re-raises.
        """
        form = validate_form(LoginForm, {"login": login, "password": password})
        generation = self._begin_primary(PrimaryMethod.PASSWORD)
        self._credentials = {"login": form.login, "password": form.password}

        try:
            response = self._post_auth("/auth/login", dict(self._credentials))
        except ApiError:
            self._abandon_primary(generation)
            raise
        self._ensure_current(generation)
        return self._apply(response, generation)

    def start_phone_login(self, phone: str) -> VerificationSession:
        """Send an SMS code; the code step is then verify_phone_code."""
        generation = self._begin_primary(PrimaryMethod.PHONE)
        try:
            session = self._phone_login.send_code(phone)
        except Exception:
            self._abandon_primary(generation)
            raise
        self._ensure_current(generation)
        return session

    def verify_phone_code(self, code: str) -> AuthState:
        """A rejected code keeps the attempt open for another try or a resend."""
        self._require_state(AuthState.PRIMARY_PENDING)
        generation = self._generation
        try:
            response = self._phone_login.verify_code(code)
        except DeviceVerificationRequiredError as e:
            response = _response_from_device_error(e)
        self._ensure_current(generation)
        return self._apply(response, generation)

    def complete_registration(
        self,
        username: str,
        password: str,
        password_confirmation: str,
        email: str | None = None,
    ) -> AuthState:
        """Final registration step; the flow's earlier steps run on self.registration."""
        generation = self._begin_primary(PrimaryMethod.REGISTRATION)
        try:
            response = self._registration.complete(username, password, password_confirmation, email)
        except Exception:
            self._abandon_primary(generation)
            raise
        self._ensure_current(generation)
        return self._apply(response, generation)

    # =========================================================================
    # Social login
    # =========================================================================

    def social_login_url(self, provider: str) -> str:
        """Where to send the user to start an OAuth login with provider."""
        return self._api.url(f"/auth/social/{provider}")

    def handle_social_callback(self, params: Mapping[str, str]) -> AuthState:
        """
        Finish a social login from the parameters the provider redirect carried.

        Failures are surfaced as a notification plus navigation to login and
        leave the machine ANONYMOUS.
        """
        error = params.get("error")
        if error:
            provider = params.get("provider", "google").capitalize()
            message = (
                f"{provider} authentication failed. Please try again."
                if error == "social_auth_failed"
                else "Social authentication failed"
            )
            return self._fail_social(message)

        generation = self._begin_primary(PrimaryMethod.SOCIAL)
        fingerprint = params.get("fingerprint")

        if _flag(params.get("requires_device_verification")) and fingerprint:
            self._bus.publish(Notification.success("Authentication successful! Please verify your device."))
            self._enter_device_verification(fingerprint, params.get("user_id"), None)
            return self._state

        token = params.get("token")
        if not token:
            return self._fail_social("No authentication token received")

        response = AuthResponse(
            token=token,
            requires_age_verification=_flag(params.get("requires_age_verification")),
        )
        return self._apply(response, generation)

    def fetch_social_callback(self, provider: str, code: str, state: str | None = None) -> AuthState:
        """Exchange an OAuth authorization code through the API."""
        generation = self._begin_primary(PrimaryMethod.SOCIAL)
        params = {"code": code}
        if state:
            params["state"] = state
        try:
            data = self._api.get(f"/auth/social/{provider}/callback", params=params)
            response = AuthResponse.model_validate(data)
        except DeviceVerificationRequiredError as e:
            response = _response_from_device_error(e)
        except ApiError:
            self._abandon_primary(generation)
            raise
        self._ensure_current(generation)
        return self._apply(response, generation)

    def _fail_social(self, message: str) -> AuthState:
        self._reset()
        self._bus.publish(Notification.error(message))
        self._bus.publish(NavigationRequested(route=Routes.LOGIN))
        return self._state

    # =========================================================================
    # Step-up challenges
    # =========================================================================

    def submit_two_factor(self, code: str) -> AuthState:
        """
        Answer the 2FA challenge with an authenticator or backup code.

        The primary proof is re-sent with two_factor_code. A rejected code
        raises and leaves the machine in TWO_FACTOR_PENDING.
        """
        self._require_state(AuthState.TWO_FACTOR_PENDING)
        code = require_two_factor_code(code, self._config.code_length)
        generation = self._generation

        try:
            if self._method is PrimaryMethod.PHONE:
                session = self._phone_login.session
                if session is None or session.code is None:
                    raise NoActiveSessionError("Phone login code is no longer held")
                response = self._phone_login.verify_code(session.code, two_factor_code=code)
            else:
                if self._credentials is None:
                    raise NoActiveSessionError("No credentials held for the two-factor step")
                response = self._post_auth(
                    "/auth/login", {**self._credentials, "two_factor_code": code}
                )
        except FieldValidationError:
            logger.info("Two-factor code rejected")
            raise
        except DeviceVerificationRequiredError as e:
            response = _response_from_device_error(e)

        self._ensure_current(generation)
        return self._apply(response, generation)

    def verify_device(self, code: str) -> AuthState:
        """Answer the device challenge; success carries the session token."""
        self._require_state(AuthState.DEVICE_VERIFICATION_PENDING)
        generation = self._generation
        response = self._devices.verify_device_code(code)
        self._ensure_current(generation)
        if not response.token:
            raise RequestRejectedError(response.message or "Device verification did not return a session", 200)
        self._bus.publish(Notification.success("Device verified successfully!"))
        return self._authenticate(response, generation)

    def resend_device_code(self) -> int:
        """
        Ask for another device code; returns the next resend epoch.

        An expired challenge sends the user back to login.
        """
        self._require_state(AuthState.DEVICE_VERIFICATION_PENDING)
        try:
            return self._devices.request_device_code()
        except FieldValidationError as e:
            if "session" in e.errors:
                self._reset()
                self._bus.publish(NavigationRequested(route=Routes.LOGIN))
            raise

    def complete_age_verification(self, date_of_birth: date | str) -> AuthState:
        """
        Record the birth date of a social account.

        The minimum age is checked locally first; the server has the final say.
        """
        self._require_state(AuthState.AGE_VERIFICATION_PENDING)
        form = validate_form(
            AgeVerificationForm,
            {"date_of_birth": date_of_birth},
            today=today_utc(self._clock),
            minimum_age=self._config.minimum_age_years,
        )
        generation = self._generation
        data = self._api.post(
            "/auth/social/complete-age-verification",
            {"date_of_birth": form.date_of_birth.isoformat()},
        )
        self._ensure_current(generation)

        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            user = User.model_validate(data["user"])
        else:
            user = self._session.user.model_copy(update={"date_of_birth": form.date_of_birth})
        self._session.update_user(user)
        return self._finish(user)

    def back_to_login(self) -> None:
        """
        Abandon the current attempt.

        Codes and timers of the abandoned step are cleared. A token issued
        before an unfinished age check is given up with a logout.
        """
        if self._state is AuthState.AUTHENTICATED:
            raise IllegalTransitionError(self._state, AuthState.ANONYMOUS)

        if self._method is PrimaryMethod.PHONE:
            self._phone_login.restart()
        if self._state is AuthState.AGE_VERIFICATION_PENDING and self._session.has_token:
            # SessionEnded resets this machine
            self._session.logout(confirm=lambda _prompt: True)
            return

        self._reset()
        self._bus.publish(NavigationRequested(route=Routes.LOGIN))

    # =========================================================================
    # Response handling
    # =========================================================================

    def _apply(self, response: AuthResponse, generation: int) -> AuthState:
        """Move to whatever the server's response demands next."""
        if response.requires_2fa:
            if response.requires_device_verification:
                # 2FA first; the device challenge waits its turn
                self._deferred_device = {
                    "fingerprint": response.fingerprint,
                    "user_id": response.user_id,
                    "resend_available_at": response.resend_available_at,
                }
            if self._state is not AuthState.TWO_FACTOR_PENDING:
                self._transition(AuthState.TWO_FACTOR_PENDING)
                self._bus.publish(NavigationRequested(route=Routes.TWO_FACTOR))
            return self._state

        if response.requires_device_verification or self._deferred_device:
            deferred = self._deferred_device or {}
            self._enter_device_verification(
                response.fingerprint or deferred.get("fingerprint"),
                response.user_id if response.user_id is not None else deferred.get("user_id"),
                response.resend_available_at or deferred.get("resend_available_at"),
            )
            return self._state

        if response.token:
            return self._authenticate(response, generation)

        self._abandon_primary(generation)
        raise RequestRejectedError(response.message or "Unexpected authentication response", 200)

    def _enter_device_verification(
        self,
        fingerprint: str | None,
        user_id: int | str | None,
        resend_available_at: int | None,
    ) -> None:
        self._transition(AuthState.DEVICE_VERIFICATION_PENDING)
        self._deferred_device = None
        self._session.begin_device_challenge()
        challenge = self._devices.begin_challenge(fingerprint, user_id, resend_available_at)
        self._bus.publish(
            NavigationRequested(
                route=Routes.DEVICE_VERIFICATION,
                params={"fingerprint": challenge.fingerprint, "user_id": challenge.user_id},
            )
        )

    def _authenticate(self, response: AuthResponse, generation: int) -> AuthState:
        """Store the token, fetch the user, then check the age gate."""
        self._session.end_device_challenge()
        try:
            user = self._session.login(response.token)
        except ApiError:
            if generation == self._generation:
                self._reset()
            raise
        self._ensure_current(generation)

        self._credentials = None
        self._deferred_device = None
        self._devices.clear_challenge()
        if self._method is PrimaryMethod.PHONE:
            self._phone_login.restart()

        if not user.is_age_verified and (user.is_social_account or response.requires_age_verification):
            self._transition(AuthState.AGE_VERIFICATION_PENDING)
            self._bus.publish(NavigationRequested(route=Routes.AGE_VERIFICATION))
            return self._state

        return self._finish(user)

    def _finish(self, user: User) -> AuthState:
        self._transition(AuthState.AUTHENTICATED)
        self._method = None
        self._devices.register_device()
        self._bus.publish(NavigationRequested(route=Routes.TIMELINE))
        name = user.name or user.username
        self._bus.publish(Notification.success(f"Welcome back, {name}!" if name else "Welcome back!"))
        logger.info(f"User {user.id} authenticated")
        return self._state

    def _post_auth(self, path: str, body: dict) -> AuthResponse:
        """POST an auth step; a new-device refusal is folded into the response."""
        try:
            data = self._api.post(path, body)
        except DeviceVerificationRequiredError as e:
            return _response_from_device_error(e)
        return AuthResponse.model_validate(data)

    # =========================================================================
    # State machine
    # =========================================================================

    def _transition(self, target: AuthState) -> None:
        with self._lock:
            current = self._state
            if target not in TRANSITIONS[current]:
                raise IllegalTransitionError(current, target)
            self._state = target
        logger.info(f"Auth state {current.value} -> {target.value}")
        self._bus.publish(AuthStateChanged(previous=current, current=target))

    def _require_state(self, expected: AuthState) -> None:
        if self._state is not expected:
            raise IllegalTransitionError(self._state, expected)

    def _begin_primary(self, method: PrimaryMethod) -> int:
        """Start a new attempt, superseding any unfinished one."""
        if self._state is AuthState.AUTHENTICATED:
            raise IllegalTransitionError(self._state, AuthState.PRIMARY_PENDING)
        if self._state is not AuthState.ANONYMOUS:
            self._reset()
        self._transition(AuthState.PRIMARY_PENDING)
        with self._lock:
            self._generation += 1
            self._method = method
            return self._generation

    def _abandon_primary(self, generation: int) -> None:
        if generation == self._generation and self._state is AuthState.PRIMARY_PENDING:
            self._reset()

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise StaleResponseError("Response belongs to a superseded login attempt")

    def _reset(self) -> None:
        """Back to ANONYMOUS, dropping everything the attempt held."""
        with self._lock:
            self._generation += 1
            self._method = None
            self._credentials = None
            self._deferred_device = None
        self._devices.clear_challenge()
        self._session.end_device_challenge()
        if self._state is not AuthState.ANONYMOUS:
            self._transition(AuthState.ANONYMOUS)

    def _on_session_lost(self, event: Any) -> None:
        if self._state is not AuthState.ANONYMOUS or self._method is not None:
            logger.info(f"Login state reset after {event.__class__.__name__}")
            self._reset()

    def _on_device_verification_required(self, event: DeviceVerificationRequired) -> None:
        if self._state is AuthState.DEVICE_VERIFICATION_PENDING:
            return
        if self._state in (AuthState.AUTHENTICATED, AuthState.AGE_VERIFICATION_PENDING):
            self._reset()
        if self._state is AuthState.TWO_FACTOR_PENDING:
            self._deferred_device = {
                "fingerprint": event.fingerprint,
                "user_id": event.user_id,
                "resend_available_at": event.resend_available_at,
            }
            return
        self._enter_device_verification(event.fingerprint, event.user_id, event.resend_available_at)


def _response_from_device_error(error: DeviceVerificationRequiredError) -> AuthResponse:
    return AuthResponse(
        message=error.message,
        requires_device_verification=True,
        fingerprint=error.fingerprint,
        user_id=error.user_id,
        resend_available_at=error.resend_available_at,
    )


def _flag(value: str | None) -> bool:
    return value is not None and str(value).lower() in ("1", "true", "yes")
