"""
Multi-step verification flows.

Registration, phone login and password reset are each a short sequence of
remote steps keyed by a server-issued session (password reset is keyed by
the email address instead). Progress is persisted after every step so a
restart resumes where the user left off, and resend cooldowns always count
down to the server's absolute resend_available_at.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

import pydantic

from auth.code_entry import CodeEntry
from auth.config import ClientConfig
from auth.countdown import ResendCountdown
from auth.exceptions import (
    FieldValidationError,
    FlowMismatchError,
    NoActiveSessionError,
    RateLimitedError,
)
from auth.types import AuthResponse, ContactType, FlowKind, VerificationSession
from auth.validation import (
    EmailForm,
    PasswordResetForm,
    PhoneForm,
    RegisterCompleteForm,
    RegisterStartForm,
    map_field_errors,
    require_code,
    validate_form,
)
from clients.api_client import ApiClient
from clients.durable_store import DurableStore
from utils.timezone import Clock, system_clock, to_epoch, today_utc

logger = logging.getLogger(__name__)


class VerificationSessionStore:
    """
    Persists one VerificationSession per flow kind.

    A session id belongs to exactly one flow kind: saving an id already bound
    to another kind, or loading a record stored under the wrong kind, raises
    FlowMismatchError.

    Verified codes are never written out; they live only on the flow's
    in-memory session.
    """

    KEY_PREFIX = "verification"

    def __init__(self, store: DurableStore):
        self._store = store

    def key(self, kind: FlowKind) -> str:
        return f"{self.KEY_PREFIX}:{kind.value}"

    def load(self, kind: FlowKind) -> VerificationSession | None:
        try:
            data = self._store.get_json(self.key(kind))
        except ValueError as e:
            logger.warning(f"Discarding unreadable {kind.value} verification record: {e}")
            self._store.delete(self.key(kind))
            return None
        if data is None:
            return None

        try:
            session = VerificationSession.model_validate(data)
        except pydantic.ValidationError as e:
            logger.warning(f"Discarding invalid {kind.value} verification record: {e}")
            self._store.delete(self.key(kind))
            return None

        if session.flow_kind is not kind:
            raise FlowMismatchError(
                f"Record under {self.key(kind)} belongs to {session.flow_kind.value}"
            )
        return session

    def save(self, session: VerificationSession) -> None:
        if session.session_id is not None:
            for other in FlowKind:
                if other is session.flow_kind:
                    continue
                existing = self._store.get_json(self.key(other))
                if isinstance(existing, dict) and existing.get("session_id") == session.session_id:
                    raise FlowMismatchError(
                        f"Session {session.session_id} is bound to {other.value}, "
                        f"not {session.flow_kind.value}"
                    )
        self._store.set_json(
            self.key(session.flow_kind), session.model_dump(mode="json", exclude={"code"})
        )

    def discard(self, kind: FlowKind) -> None:
        self._store.delete(self.key(kind))


class VerificationFlow(ABC):
    """
    Base class for a persisted multi-step flow.

    Subclasses set kind, CODE_STEP (the step at which a code has been sent)
    and call _begin/_advance as the server confirms each step.
    """

    kind: FlowKind
    CODE_STEP = 2

    def __init__(
        self,
        api: ApiClient,
        store: VerificationSessionStore,
        config: ClientConfig,
        clock: Clock = system_clock,
    ):
        self._api = api
        self._store = store
        self._config = config
        self._clock = clock
        self._session: VerificationSession | None = None
        self.countdown = ResendCountdown(clock)

    @property
    def session(self) -> VerificationSession | None:
        return self._session

    @property
    def current_step(self) -> int:
        return self._session.current_step if self._session else 1

    def resume(self) -> VerificationSession | None:
        """Reload persisted progress; returns None when nothing was in progress."""
        self._session = self._store.load(self.kind)
        if self._session is None:
            self.countdown.reset()
            return None
        self.countdown.start(self._session.resend_available_at)
        logger.info(f"Resumed {self.kind.value} flow at step {self._session.current_step}")
        return self._session

    def back(self) -> int:
        """
        Step back once, clearing codes and timers of the abandoned steps.

        Returns the new current step.
        """
        session = self._require_session()
        target = max(1, session.current_step - 1)
        changes: dict[str, Any] = {"current_step": target, "code": None}
        if target < self.CODE_STEP:
            changes.update(session_id=None, resend_available_at=None, code_expires_at=None)
            self.countdown.reset()
        self._save(session.model_copy(update=changes))
        return target

    def restart(self) -> None:
        """Abandon the flow entirely."""
        self._store.discard(self.kind)
        self._session = None
        self.countdown.reset()

    def code_entry(self) -> CodeEntry:
        """Digit buffer that auto-submits to this flow's verify_code."""
        return CodeEntry(self.verify_code, length=self._config.code_length)

    @abstractmethod
    def verify_code(self, code: str) -> Any:
        """Submit the code for the current step."""

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    def _require_session(self) -> VerificationSession:
        if self._session is None:
            raise NoActiveSessionError(f"No {self.kind.value} flow in progress")
        return self._session

    def _save(self, session: VerificationSession) -> None:
        self._store.save(session)
        self._session = session

    def _begin(self, data: dict, **fields: Any) -> VerificationSession:
        """Record a freshly issued session at the code step."""
        session = VerificationSession(
            flow_kind=self.kind,
            current_step=self.CODE_STEP,
            code_expires_at=to_epoch(data.get("code_expires_at")),
            **fields,
        )
        self._save(session)
        self._apply_resend_hint(data)
        return self._session

    def _advance(self, step: int, **changes: Any) -> None:
        session = self._require_session()
        self._save(session.model_copy(update={"current_step": step, **changes}))

    def _apply_resend_hint(self, data: dict) -> int:
        hint = to_epoch(data.get("resend_available_at"))
        if hint is not None:
            self.countdown.start(hint)
        else:
            self.countdown.start_default(self._config.default_resend_cooldown_seconds)
        self._advance(self.current_step, resend_available_at=self.countdown.available_at)
        return self.countdown.available_at

    def _call(self, path: str, body: dict, fields: set[str]) -> dict:
        """POST a step; 422 field errors are mapped onto fields."""
        try:
            return self._api.post(path, body)
        except FieldValidationError as e:
            e.errors = map_field_errors(e.errors, fields)
            raise

    def _resend(self, path: str, body: dict) -> int:
        """
        Re-issue the code, refused locally while the cooldown runs.

        Returns the new resend_available_at epoch.

        Raises:
            ResendCooldownError: Before any request, if still cooling down.
            RateLimitedError: With the countdown refreshed from its hints.
        """
        self._require_session()
        self.countdown.ensure_can_resend()
        try:
            data = self._api.post(path, body)
        except RateLimitedError as e:
            self.countdown.start_from_error(e, self._config.default_resend_cooldown_seconds)
            self._advance(self.current_step, resend_available_at=self.countdown.available_at)
            raise
        available_at = self._apply_resend_hint(data)
        if data.get("code_expires_at") is not None:
            self._advance(self.current_step, code_expires_at=to_epoch(data["code_expires_at"]))
        logger.info(f"{self.kind.value} code resent; next resend at {available_at}")
        return available_at


class RegistrationFlow(VerificationFlow):
    """
    Three-step signup by email or phone.

    Usage:
        flow = RegistrationFlow(api, VerificationSessionStore(store), config)
        flow.start("Ada", "2000-01-01", "ada@example.com", ContactType.EMAIL)
        flow.verify_code("123456")
        response = flow.complete("ada_l", "s3cretpass", "s3cretpass")
    """

    kind = FlowKind.REGISTRATION

    START_FIELDS = {"name", "date_of_birth", "contact", "contact_type"}
    CODE_FIELDS = {"code"}
    COMPLETE_FIELDS = {"username", "password", "password_confirmation", "email"}

    def start(
        self,
        name: str,
        date_of_birth: date | str,
        contact: str,
        contact_type: ContactType = ContactType.EMAIL,
    ) -> VerificationSession:
        form = validate_form(
            RegisterStartForm,
            {
                "name": name,
                "date_of_birth": date_of_birth,
                "contact": contact,
                "contact_type": contact_type,
            },
            today=today_utc(self._clock),
            minimum_age=self._config.minimum_age_years,
        )
        data = self._call(
            "/auth/register/step1",
            {
                "name": form.name,
                "date_of_birth": form.date_of_birth.isoformat(),
                "contact": form.contact,
                "contact_type": form.contact_type.value,
            },
            self.START_FIELDS,
        )
        session = self._begin(data, session_id=str(data["session_id"]), contact=form.contact)
        logger.info(f"Registration started; code sent via {form.contact_type.value}")
        return session

    def verify_code(self, code: str) -> dict:
        session = self._require_session()
        require_code(code, self._config.code_length)
        data = self._call(
            "/auth/register/step2",
            {"session_id": session.session_id, "code": code},
            self.CODE_FIELDS,
        )
        self._advance(3)
        return data

    def resend_code(self) -> int:
        session = self._require_session()
        return self._resend("/auth/register/resend-code", {"session_id": session.session_id})

    def complete(
        self,
        username: str,
        password: str,
        password_confirmation: str,
        email: str | None = None,
    ) -> AuthResponse:
        """
        Final step; the returned AuthResponse carries the new token.

        The token is not stored here: whoever drives the flow hands it to
        the session context.
        """
        session = self._require_session()
        form = validate_form(
            RegisterCompleteForm,
            {
                "username": username,
                "password": password,
                "password_confirmation": password_confirmation,
            },
        )
        body = {
            "session_id": session.session_id,
            "username": form.username,
            "password": form.password,
            "password_confirmation": form.password_confirmation,
        }
        if email:
            body["email"] = validate_form(EmailForm, {"email": email}).email

        data = self._call("/auth/register/step3", body, self.COMPLETE_FIELDS)
        self.restart()
        return AuthResponse.model_validate(data)


class PhoneLoginFlow(VerificationFlow):
    """Passwordless login by SMS code."""

    kind = FlowKind.PHONE_LOGIN

    def code_entry(self) -> CodeEntry:
        """
        Refused: a verified SMS code has to reach the login state machine.

        Use StepUpOrchestrator.phone_code_entry() instead.
        """
        raise FlowMismatchError("Phone login codes are entered through the login orchestrator")

    def send_code(self, phone: str) -> VerificationSession:
        form = validate_form(PhoneForm, {"phone": phone})
        data = self._call("/auth/phone/login/send-code", {"phone": form.phone}, {"phone"})
        return self._begin(data, session_id=str(data["session_id"]), contact=form.phone)

    def verify_code(self, code: str, two_factor_code: str | None = None) -> AuthResponse:
        """
        Verify the SMS code.

        The session is kept while the server asks for a further factor so
        the same code can be re-posted with two_factor_code.
        """
        session = self._require_session()
        require_code(code, self._config.code_length)
        body = {"session_id": session.session_id, "code": code}
        if two_factor_code:
            body["two_factor_code"] = two_factor_code

        data = self._call("/auth/phone/login/verify-code", body, {"code", "two_factor_code"})
        response = AuthResponse.model_validate(data)
        if response.token and not response.requires_2fa:
            self.restart()
        else:
            self._advance(self.CODE_STEP, code=code)
        return response

    def resend_code(self) -> int:
        session = self._require_session()
        return self._resend("/auth/phone/login/resend-code", {"session_id": session.session_id})


class PasswordResetFlow(VerificationFlow):
    """Forgot-password: request a code by email, verify it, set a new password."""

    kind = FlowKind.PASSWORD_RESET

    def resume(self) -> VerificationSession | None:
        """A verified code does not survive a restart, so resume at the code step."""
        session = super().resume()
        if session is not None and session.current_step > self.CODE_STEP:
            self._save(session.model_copy(update={"current_step": self.CODE_STEP}))
        return self._session

    def request(self, email: str) -> VerificationSession:
        form = validate_form(EmailForm, {"email": email})
        data = self._call("/auth/password/forgot", {"email": form.email}, {"email"})
        return self._begin(data, contact=form.email)

    def verify_code(self, code: str) -> dict:
        session = self._require_session()
        require_code(code, self._config.code_length)
        data = self._call(
            "/auth/password/verify-code",
            {"email": session.contact, "code": code},
            {"code"},
        )
        self._advance(3, code=code)
        return data

    def resend(self) -> int:
        session = self._require_session()
        return self._resend("/auth/password/resend", {"email": session.contact})

    def reset(self, password: str, password_confirmation: str) -> dict:
        session = self._require_session()
        if session.code is None:
            raise NoActiveSessionError("Verify the reset code before choosing a password")
        form = validate_form(
            PasswordResetForm,
            {"password": password, "password_confirmation": password_confirmation},
        )
        data = self._call(
            "/auth/password/reset",
            {
                "email": session.contact,
                "code": session.code,
                "password": form.password,
                "password_confirmation": form.password_confirmation,
            },
            {"password", "password_confirmation"},
        )
        self.restart()
        logger.info("Password reset completed")
        return data
