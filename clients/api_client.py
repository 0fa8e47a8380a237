"""
API gateway client for the remote social API.

Every outbound request goes through here: bearer token and anti-forgery
token are attached, and every non-2xx answer is translated into exactly one
typed ApiError subclass. Side effects the presentation layer cares about
(toasts, forced logout, reload) are published as events, never performed.
"""

import logging
from typing import Any
from urllib.parse import unquote

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from auth.config import ClientConfig
from auth.exceptions import (
    ApiError,
    CsrfMismatchError,
    DeviceVerificationRequiredError,
    FieldValidationError,
    NetworkError,
    RateLimitedError,
    RequestRejectedError,
    ServerError,
    SessionInvalidError,
)
from auth.token_store import TokenStore
from core.event_bus import EventBus
from core.events import Notification, ReloadRequested, SessionInvalidated
from utils.timezone import to_epoch

logger = logging.getLogger(__name__)


def _optional_int(value: Any) -> int | None:
    """Coerce a timing hint to int; absent or malformed hints become None."""
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _optional_epoch(value: Any) -> int | None:
    """Absolute timing hint (epoch or ISO 8601); malformed hints become None."""
    try:
        return to_epoch(value)
    except (TypeError, ValueError):
        return None


class ApiClient:
    """
    JSON-over-HTTP client with typed error translation.

    Usage:
        api = ApiClient(config, token_store, event_bus)
        data = api.post("/auth/login", {"login": "a@b.c", "password": "pw"})
    """

    STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
    CSRF_COOKIE = "XSRF-TOKEN"
    CSRF_HEADER = "X-XSRF-TOKEN"

    def __init__(
        self,
        config: ClientConfig,
        token_store: TokenStore,
        event_bus: EventBus,
        session: requests.Session | None = None,
    ):
        self._config = config
        self._tokens = token_store
        self._bus = event_bus
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    @property
    def cookies(self) -> requests.cookies.RequestsCookieJar:
        """Cookie jar shared with the token store's cookie mirror."""
        return self._session.cookies

    def url(self, path: str) -> str:
        """Absolute URL for an API path."""
        return f"{self._config.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    # -------------------------------------------------------------------------
    # Verbs
    # -------------------------------------------------------------------------

    def get(self, path: str, params: dict | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: dict | None = None, *, retry: bool = False) -> Any:
        return self.request("POST", path, json=json, retry=retry)

    def put(self, path: str, json: dict | None = None, *, retry: bool = False) -> Any:
        return self.request("PUT", path, json=json, retry=retry)

    def delete(self, path: str, *, retry: bool = False) -> Any:
        return self.request("DELETE", path, retry=retry)

    def request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
        *,
        retry: bool = False,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the API base URL
            json: Request body
            params: Query parameters
            retry: Retry transport failures with exponential backoff.
                Only for non-auth mutations; login and code verification
                must never be replayed.

        Returns:
            Decoded JSON body ({} when the body is empty).

        Raises:
            ApiError: One subclass per failure kind.
        """
        method = method.upper()

        if not retry:
            return self._send(method, path, json, params)

        attempts = self._config.mutation_retry_attempts
        base_delay = self._config.mutation_retry_base_delay_seconds
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=base_delay,
                min=base_delay,
                max=base_delay * 2 ** attempts,
            ),
            retry=retry_if_exception_type(NetworkError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._send, method, path, json, params)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _send(self, method: str, path: str, json: dict | None, params: dict | None) -> Any:
        headers = {}

        token = self._tokens.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if method in self.STATE_CHANGING_METHODS:
            csrf_token = self._fetch_csrf_token()
            if csrf_token:
                headers[self.CSRF_HEADER] = csrf_token

        try:
            response = self._session.request(
                method,
                self.url(path),
                json=json,
                params=params,
                headers=headers,
                timeout=self._config.request_timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            error = NetworkError()
            self._bus.publish(Notification.error(error.message))
            raise error from e

        if response.ok:
            data = self._decode(response)
            if method != "GET" and isinstance(data, dict) and data.get("message"):
                self._bus.publish(Notification.success(data["message"]))
            return data

        error = self._translate_error(response)
        logger.info(f"{method} {path} -> {response.status_code} ({error.kind.value})")
        self._handle_error(error)
        raise error

    def _fetch_csrf_token(self) -> str | None:
        """
        Run the anti-forgery handshake and read the token cookie.

        Failure is non-fatal: the request proceeds without the header and
        the server decides.
        """
        url = f"{self._config.api_origin}{self._config.csrf_handshake_path}"
        try:
            self._session.get(url, timeout=self._config.request_timeout_seconds)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to get CSRF token: {e}")
            return None

        value = None
        for cookie in self._session.cookies:
            if cookie.name == self.CSRF_COOKIE:
                value = cookie.value
        return unquote(value) if value else None

    def _drop_csrf_cookie(self) -> None:
        self._session.cookies.set(self.CSRF_COOKIE, None)

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            logger.warning(f"Non-JSON response body from {response.url}")
            return {}

    def _translate_error(self, response: requests.Response) -> ApiError:
        """Map a non-2xx response onto its ApiError subclass."""
        status = response.status_code
        data = self._decode(response)
        if not isinstance(data, dict):
            data = {}

        message = data.get("error") or data.get("message") or "An error occurred"
        errors = data.get("errors") if isinstance(data.get("errors"), dict) else None

        if data.get("requires_device_verification"):
            return DeviceVerificationRequiredError(
                message,
                status=status,
                fingerprint=data.get("fingerprint"),
                user_id=data.get("user_id"),
                resend_available_at=_optional_epoch(data.get("resend_available_at")),
            )
        if status == 401:
            return SessionInvalidError()
        if status == 419:
            return CsrfMismatchError()
        if status == 422:
            return FieldValidationError(message, errors=errors)
        if status == 429:
            return RateLimitedError(
                message,
                retry_after=_optional_epoch(data.get("retry_after")),
                resend_available_at=_optional_epoch(data.get("resend_available_at")),
                remaining_seconds=_optional_int(data.get("remaining_seconds")),
                retry_after_header=_optional_int(response.headers.get("Retry-After")),
                errors=errors,
            )
        if status >= 500:
            return ServerError(status=status)
        return RequestRejectedError(message, status)

    def _handle_error(self, error: ApiError) -> None:
        """Publish the events a failure of this kind implies."""
        match error:
            case SessionInvalidError():
                self._bus.publish(Notification.error(error.message))
                self._bus.publish(SessionInvalidated(reason=error.message))
            case CsrfMismatchError():
                self._drop_csrf_cookie()
                self._bus.publish(Notification.error(error.message))
                self._bus.publish(ReloadRequested(reason=error.message))
            case FieldValidationError():
                messages = [m for field_messages in error.errors.values() for m in field_messages]
                for message in messages or [error.message]:
                    self._bus.publish(Notification.error(message))
            case RateLimitedError():
                self._bus.publish(Notification.error("Too many requests. Please try again later."))
            case ServerError():
                self._bus.publish(Notification.error(error.message))
            case DeviceVerificationRequiredError():
                pass
            case _:
                self._bus.publish(Notification.error(error.message))
