"""Account security actions for the signed-in user."""

import logging

from auth.config import ClientConfig
from auth.countdown import ResendCountdown
from auth.exceptions import RateLimitedError
from auth.session import SessionContext
from auth.types import User
from auth.validation import ChangePasswordForm, EmailForm, require_code, validate_form
from clients.api_client import ApiClient
from utils.timezone import Clock, now_utc, system_clock

logger = logging.getLogger(__name__)


class AccountSecurity:
    """Password change, email verification and the security event log."""

    def __init__(
        self,
        api: ApiClient,
        session: SessionContext,
        config: ClientConfig,
        clock: Clock = system_clock,
    ):
        self._api = api
        self._session = session
        self._config = config
        self.email_countdown = ResendCountdown(clock)

    def change_password(self, current_password: str, password: str, password_confirmation: str) -> dict:
        form = validate_form(
            ChangePasswordForm,
            {
                "current_password": current_password,
                "password": password,
                "password_confirmation": password_confirmation,
            },
        )
        data = self._api.post("/auth/password/change", form.model_dump())
        logger.info("Password changed")
        return data

    def verify_email(self, email: str, code: str) -> dict:
        form = validate_form(EmailForm, {"email": email})
        require_code(code, self._config.code_length)
        data = self._api.post("/auth/email/verify", {"email": form.email, "code": code})
        self.email_countdown.reset()

        if isinstance(data.get("user"), dict):
            self._session.update_user(User.model_validate(data["user"]))
        elif self._session.user is not None:
            self._session.update_user(
                self._session.user.model_copy(update={"email_verified_at": now_utc()})
            )
        return data

    def resend_email_verification(self, email: str) -> int:
        """
        Send a new email verification code; returns the next resend epoch.

        Raises:
            ResendCooldownError: Before any request, while cooling down.
        """
        form = validate_form(EmailForm, {"email": email})
        self.email_countdown.ensure_can_resend()
        try:
            data = self._api.post("/auth/email/resend", {"email": form.email})
        except RateLimitedError as e:
            self.email_countdown.start_from_error(e, self._config.default_resend_cooldown_seconds)
            raise

        hint = data.get("resend_available_at")
        if hint:
            self.email_countdown.start(int(hint))
        else:
            self.email_countdown.start_default(self._config.default_resend_cooldown_seconds)
        return self.email_countdown.available_at

    def email_status(self) -> dict:
        return self._api.get("/auth/email/status")

    def security_events(self) -> list[dict]:
        data = self._api.get("/auth/security/events")
        if isinstance(data, dict):
            return list(data.get("events") or data.get("data") or [])
        return list(data)
