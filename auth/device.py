"""
Device identity and trust.

The fingerprint is a heuristic identity for "this client on this machine":
stable across restarts, different across machines with high probability,
and never treated as a security boundary by itself. The server decides
whether a fingerprint is trusted; this module reports it, runs the
per-login device challenge and exposes the settings-side device actions.
"""

import hashlib
import locale
import logging
import platform
import re
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime

import pydantic
import requests

from auth.config import ClientConfig
from auth.countdown import ResendCountdown
from auth.exceptions import (
    ApiError,
    FieldValidationError,
    InvalidInputError,
    NoActiveSessionError,
    RateLimitedError,
)
from auth.types import (
    AuthResponse,
    Device,
    DeviceChallenge,
    DeviceChallengeState,
    DeviceInfo,
    DeviceType,
)
from auth.validation import require_code
from clients.api_client import ApiClient
from clients.durable_store import DurableStore
from utils.timezone import Clock, system_clock

logger = logging.getLogger(__name__)


_PLATFORM_TOKENS = {
    "Windows": "Windows NT",
    "Darwin": "Macintosh; Mac OS X",
    "Linux": "X11; Linux",
}


@dataclass(frozen=True, kw_only=True)
class DeviceSignals:
    """Stable signals the fingerprint is derived from."""

    user_agent: str
    language: str
    screen: str
    timezone_offset: int
    render_entropy: str

    @classmethod
    def from_environment(cls) -> "DeviceSignals":
        """Signals for the running process and the machine it runs on."""
        system = platform.system()
        platform_token = _PLATFORM_TOKENS.get(system, system)
        user_agent = (
            f"Mozilla/5.0 ({platform_token} {platform.release()}; {platform.machine()}) "
            f"python-requests/{requests.__version__}"
        )

        language = (locale.getlocale()[0] or "en_US").replace("_", "-")

        size = shutil.get_terminal_size()
        screen = f"{size.columns}x{size.lines}"

        # Minutes west of UTC, matching the browser convention
        offset = datetime.now().astimezone().utcoffset()
        timezone_offset = -int(offset.total_seconds() // 60) if offset is not None else 0

        render_entropy = "|".join(
            [
                platform.node(),
                f"{uuid.getnode():012x}",
                platform.python_implementation(),
            ]
        )
        return cls(
            user_agent=user_agent,
            language=language,
            screen=screen,
            timezone_offset=timezone_offset,
            render_entropy=render_entropy,
        )


def compute_fingerprint(signals: DeviceSignals) -> str:
    """Deterministic 32-hex-char fingerprint of signals."""
    material = "|".join(
        [
            signals.user_agent,
            signals.language,
            signals.screen,
            str(signals.timezone_offset),
            signals.render_entropy,
        ]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]


def _device_name(user_agent: str) -> str:
    if "iPhone" in user_agent:
        return "iPhone"
    if "iPad" in user_agent:
        return "iPad"
    if "Android" in user_agent:
        return "Android Device"
    if "Mac" in user_agent:
        return "Mac"
    if "Windows" in user_agent:
        return "Windows PC"
    if "Linux" in user_agent:
        return "Linux PC"
    return "Unknown Device"


def _device_type(user_agent: str) -> DeviceType:
    if re.search(r"iPad|Tablet", user_agent):
        return DeviceType.TABLET
    if re.search(r"Mobile|Android|iPhone", user_agent):
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def _operating_system(user_agent: str) -> str:
    # Android and iOS agents also mention Linux / Mac OS X
    if "Android" in user_agent:
        return "Android"
    if re.search(r"iPhone|iPad|iOS", user_agent):
        return "iOS"
    if "Windows" in user_agent:
        return "Windows"
    if "Mac" in user_agent:
        return "macOS"
    if "Linux" in user_agent:
        return "Linux"
    return "Unknown"


def _browser(user_agent: str) -> str:
    # Edge agents also mention Chrome; Chrome agents also mention Safari
    if re.search(r"Edg(e|A|iOS)?/", user_agent):
        return "Edge"
    if "Firefox" in user_agent:
        return "Firefox"
    if "Chrome" in user_agent:
        return "Chrome"
    if "Safari" in user_agent:
        return "Safari"
    if "python-requests" in user_agent:
        return "python-requests"
    return "Unknown"


def describe_device(user_agent: str, fingerprint: str) -> DeviceInfo:
    """Display metadata reported to the server for a user agent."""
    return DeviceInfo(
        fingerprint=fingerprint,
        name=_device_name(user_agent),
        type=_device_type(user_agent),
        os=_operating_system(user_agent),
        browser=_browser(user_agent),
    )


class DeviceTrustManager:
    """
    Fingerprint cache, device challenge and device management.

    Challenge progress (UNKNOWN -> CODE_SENT -> VERIFIED) is persisted so a
    restart mid-challenge resumes with the same fingerprint and cooldown.
    Trusting a device permanently is a separate, password-confirmed action.
    """

    FINGERPRINT_KEY = "device:fingerprint"
    CHALLENGE_KEY = "device:challenge"

    def __init__(
        self,
        api: ApiClient,
        store: DurableStore,
        config: ClientConfig,
        signals: DeviceSignals | None = None,
        clock: Clock = system_clock,
    ):
        self._api = api
        self._store = store
        self._config = config
        self._signals = signals
        self._challenge: DeviceChallenge | None = None
        self.countdown = ResendCountdown(clock)

    @property
    def signals(self) -> DeviceSignals:
        if self._signals is None:
            self._signals = DeviceSignals.from_environment()
        return self._signals

    def fingerprint(self) -> str:
        """Cached fingerprint, computed on first use."""
        cached = self._store.get(self.FINGERPRINT_KEY)
        if cached:
            return cached
        fingerprint = compute_fingerprint(self.signals)
        self._store.set(self.FINGERPRINT_KEY, fingerprint)
        return fingerprint

    def device_info(self) -> DeviceInfo:
        return describe_device(self.signals.user_agent, self.fingerprint())

    def register_device(self) -> bool:
        """
        Report this device's metadata to the server.

        Best-effort: failure is logged and never blocks login.
        """
        info = self.device_info()
        try:
            self._api.post("/devices/advanced/register", info.model_dump(mode="json"), retry=True)
        except ApiError as e:
            logger.warning(f"Device registration failed: {e}")
            return False
        logger.info(f"Registered device {info.name} ({info.browser} on {info.os})")
        return True

    # =========================================================================
    # Device challenge
    # =========================================================================

    @property
    def challenge(self) -> DeviceChallenge | None:
        return self._challenge

    def begin_challenge(
        self,
        fingerprint: str | None = None,
        user_id: int | str | None = None,
        resend_available_at: int | None = None,
    ) -> DeviceChallenge:
        """
        Enter the challenge after the server flagged this device as new.

        The server sends the first code itself, so the challenge starts in
        CODE_SENT.
        """
        challenge = DeviceChallenge(
            fingerprint=fingerprint or self.fingerprint(),
            user_id=user_id,
            state=DeviceChallengeState.CODE_SENT,
            resend_available_at=resend_available_at,
        )
        self.countdown.start(resend_available_at)
        self._save_challenge(challenge)
        logger.info("Device verification challenge started")
        return challenge

    def load_challenge(self) -> DeviceChallenge | None:
        try:
            data = self._store.get_json(self.CHALLENGE_KEY)
            self._challenge = DeviceChallenge.model_validate(data) if data else None
        except (ValueError, pydantic.ValidationError) as e:
            logger.warning(f"Discarding unreadable device challenge: {e}")
            self.clear_challenge()
            return None
        self.countdown.start(self._challenge.resend_available_at if self._challenge else None)
        return self._challenge

    def clear_challenge(self) -> None:
        self._store.delete(self.CHALLENGE_KEY)
        self._challenge = None
        self.countdown.reset()

    def request_device_code(self, fingerprint: str | None = None) -> int:
        """
        Ask the server to send a new device code.

        Returns the resend_available_at epoch.

        Raises:
            ResendCooldownError: Before any request, while cooling down.
            RateLimitedError: With the cooldown refreshed from its hints.
            FieldValidationError: A 'session' error means the challenge
                expired; the challenge is cleared before re-raising.
        """
        challenge = self._challenge
        if challenge is None or (fingerprint and fingerprint != challenge.fingerprint):
            challenge = self.begin_challenge(fingerprint)

        self.countdown.ensure_can_resend()

        payload: dict = {"fingerprint": challenge.fingerprint}
        if challenge.user_id is not None:
            payload["user_id"] = challenge.user_id

        try:
            data = self._api.post("/auth/resend-device-code", payload)
        except RateLimitedError as e:
            self.countdown.start_from_error(e, self._config.default_resend_cooldown_seconds)
            self._save_challenge(challenge.model_copy(update={"resend_available_at": self.countdown.available_at}))
            raise
        except FieldValidationError as e:
            if "session" in e.errors:
                logger.info("Device challenge expired on the server")
                self.clear_challenge()
            raise

        hint = data.get("resend_available_at")
        if hint:
            self.countdown.start(int(hint))
        else:
            self.countdown.start_default(self._config.default_resend_cooldown_seconds)
        self._save_challenge(
            challenge.model_copy(
                update={
                    "state": DeviceChallengeState.CODE_SENT,
                    "resend_available_at": self.countdown.available_at,
                }
            )
        )
        return self.countdown.available_at

    def verify_device_code(self, code: str, fingerprint: str | None = None) -> AuthResponse:
        """
        Submit the device code; a success response carries the session token.

        Raises:
            NoActiveSessionError: If no challenge is active and no fingerprint given.
            InvalidInputError: If code is malformed.
        """
        require_code(code, self._config.code_length)
        challenge = self._challenge
        if fingerprint is None:
            if challenge is None:
                raise NoActiveSessionError("No device verification in progress")
            fingerprint = challenge.fingerprint

        try:
            data = self._api.post("/auth/verify-device", {"code": code, "fingerprint": fingerprint})
        except RateLimitedError as e:
            self.countdown.start_from_error(e, self._config.default_resend_cooldown_seconds)
            raise

        if challenge is not None:
            self._save_challenge(challenge.model_copy(update={"state": DeviceChallengeState.VERIFIED}))
        return AuthResponse.model_validate(data)

    def _save_challenge(self, challenge: DeviceChallenge) -> None:
        self._store.set_json(self.CHALLENGE_KEY, challenge.model_dump(mode="json"))
        self._challenge = challenge

    # =========================================================================
    # Device management
    # =========================================================================

    def list_devices(self) -> list[Device]:
        data = self._api.get("/devices/list")
        if isinstance(data, dict):
            data = data.get("devices") or data.get("data") or []
        return [Device.model_validate(item) for item in data]

    def trust_device(self, device_id: int | str, password: str) -> dict:
        """Mark a device permanently trusted; requires the account password."""
        _require_password(password)
        return self._api.post(f"/devices/{device_id}/trust", {"password": password})

    def revoke_device(self, device_id: int | str) -> dict:
        return self._api.delete(f"/devices/{device_id}/revoke", retry=True)

    def revoke_all_devices(self, password: str) -> dict:
        """
        Revoke every other device.

        The current fingerprint is sent so the issuing device keeps its
        session.
        """
        _require_password(password)
        return self._api.post(
            "/devices/revoke-all",
            {"password": password, "fingerprint": self.fingerprint()},
        )

    def security_check(self) -> dict:
        return self._api.get("/devices/security-check")

    def device_activity(self, device_id: int | str) -> dict | list:
        return self._api.get(f"/devices/{device_id}/activity")


def _require_password(password: str) -> None:
    if not password:
        raise InvalidInputError({"password": ["Password is required"]})
