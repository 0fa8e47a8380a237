"""TOTP two-factor enrolment for the signed-in user."""

import logging

from auth.exceptions import InvalidInputError
from auth.session import SessionContext
from auth.types import TwoFactorSetup
from auth.validation import require_code
from clients.api_client import ApiClient

logger = logging.getLogger(__name__)


class TwoFactorManager:
    """
    Enable, confirm and disable 2FA.

    Enabling is two-phase: enable() returns the secret to enrol in an
    authenticator app, confirm() proves the app works and returns the
    single-use backup codes. The session's user is kept in sync.
    """

    def __init__(self, api: ApiClient, session: SessionContext, code_length: int = 6):
        self._api = api
        self._session = session
        self._code_length = code_length

    @property
    def enabled(self) -> bool:
        user = self._session.user
        return bool(user and user.two_factor_enabled)

    def enable(self, password: str) -> TwoFactorSetup:
        _require_password(password)
        data = self._api.post("/auth/2fa/enable", {"password": password})
        return TwoFactorSetup.model_validate(data)

    def confirm(self, code: str) -> list[str]:
        """Verify the first authenticator code; returns the backup codes."""
        require_code(code, self._code_length)
        data = self._api.post("/auth/2fa/verify", {"code": code})
        self._set_enabled(True)
        logger.info("Two-factor authentication enabled")
        return list(data.get("backup_codes") or [])

    def disable(self, password: str) -> None:
        _require_password(password)
        self._api.post("/auth/2fa/disable", {"password": password})
        self._set_enabled(False)
        logger.info("Two-factor authentication disabled")

    def _set_enabled(self, enabled: bool) -> None:
        user = self._session.user
        if user is not None:
            self._session.update_user(user.model_copy(update={"two_factor_enabled": enabled}))


def _require_password(password: str) -> None:
    if not password:
        raise InvalidInputError({"password": ["Password is required"]})
