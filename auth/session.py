"""Session context: the authenticated user and the token's lifecycle.

SessionContext is the only writer of the session token. Other components
read it through the API client and signal problems as events; a 401
anywhere arrives here as SessionInvalidated and the token is cleared
before the failing call's exception reaches its caller.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Callable

from auth.config import ClientConfig
from auth.exceptions import (
    ApiError,
    ConfirmationRequiredError,
    DeviceVerificationRequiredError,
    SessionInvalidError,
    StaleResponseError,
)
from auth.token_store import TokenStore
from auth.types import User
from clients.api_client import ApiClient
from core.event_bus import EventBus
from core.events import (
    DeviceVerificationRequired,
    NavigationRequested,
    Routes,
    SessionEnded,
    SessionInvalidated,
)

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]

LOGOUT_PROMPT = "Are you sure you want to logout?"
LOGOUT_ALL_PROMPT = "Are you sure you want to logout from all devices? You will need to sign in again."


class SessionContext:
    """
    Owns the current user and the session token.

    Usage:
        session = SessionContext(api, token_store, bus, config)
        session.bootstrap()
        session.start()   # background refresh and poll
        ...
        session.logout()
        session.stop()

    Every teardown bumps a generation counter; a user fetch started before
    the teardown is discarded when it lands.
    """

    def __init__(
        self,
        api: ApiClient,
        token_store: TokenStore,
        event_bus: EventBus,
        config: ClientConfig,
        confirm: Confirm | None = None,
    ):
        self._api = api
        self._tokens = token_store
        self._bus = event_bus
        self._config = config
        self._confirm = confirm

        self._user: User | None = None
        self._lock = threading.Lock()
        self._inflight: Future | None = None
        self._generation = 0
        self._challenge_active = False

        self._stopped = threading.Event()
        self._threads: list[threading.Thread] = []

        self._bus.subscribe("SessionInvalidated", self._on_session_invalidated)

    @property
    def user(self) -> User | None:
        return self._user

    @property
    def has_token(self) -> bool:
        return self._tokens.is_authenticated()

    @property
    def is_authenticated(self) -> bool:
        """A token is held and the user behind it has been fetched."""
        return self._user is not None and self.has_token

    @property
    def fetch_in_flight(self) -> bool:
        with self._lock:
            return self._inflight is not None

    # =========================================================================
    # Device challenge suppression
    # =========================================================================

    @property
    def device_challenge_active(self) -> bool:
        return self._challenge_active

    def begin_device_challenge(self) -> None:
        """Pause bootstrap, refresh and poll while the device challenge runs."""
        self._challenge_active = True

    def end_device_challenge(self) -> None:
        self._challenge_active = False

    # =========================================================================
    # User fetch
    # =========================================================================

    def fetch_user(self) -> User:
        """
        Fetch the current user, single-flight.

        Concurrent callers share one request: the first caller performs it
        and the rest wait on the same future, receiving the same user or
        the same exception.

        Raises:
            ApiError: From GET /auth/me.
            StaleResponseError: If the session was torn down meanwhile.
        """
        with self._lock:
            future = self._inflight
            owner = future is None
            if owner:
                future = Future()
                self._inflight = future
                generation = self._generation

        if not owner:
            logger.debug("Joining in-flight user fetch")
            return future.result()

        try:
            data = self._api.get("/auth/me")
            if isinstance(data, dict) and isinstance(data.get("user"), dict):
                data = data["user"]
            user = User.model_validate(data)
            with self._lock:
                if generation != self._generation:
                    raise StaleResponseError("User fetch landed after the session was torn down")
                self._user = user
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(user)
            return user
        finally:
            with self._lock:
                if self._inflight is future:
                    self._inflight = None

    def bootstrap(self) -> User | None:
        """
        Restore the session on start.

        With a token present, fetch the user once. A 401 leaves the client
        anonymous; a new-device signal hands over to the device challenge.
        """
        if self._challenge_active:
            logger.debug("Bootstrap skipped during device challenge")
            return None
        if not self.has_token:
            return None

        try:
            user = self.fetch_user()
        except SessionInvalidError:
            self._teardown()
            return None
        except DeviceVerificationRequiredError as e:
            logger.info("Stored session requires device verification")
            self._bus.publish(
                DeviceVerificationRequired(
                    fingerprint=e.fingerprint,
                    user_id=e.user_id,
                    resend_available_at=e.resend_available_at,
                )
            )
            self._bus.publish(
                NavigationRequested(
                    route=Routes.DEVICE_VERIFICATION,
                    params={"fingerprint": e.fingerprint, "user_id": e.user_id},
                )
            )
            return None
        except StaleResponseError:
            return None

        logger.info(f"Session restored for user {user.id}")
        return user

    def login(self, token: str | None = None) -> User:
        """Persist token (when given), then fetch the user behind it."""
        if token:
            self._tokens.set_token(token)
        return self.fetch_user()

    def update_user(self, user: User) -> None:
        self._user = user

    # =========================================================================
    # Logout
    # =========================================================================

    def logout(self, confirm: Confirm | None = None) -> bool:
        """
        End this session.

        Returns False if the confirmation callback declined. Local state is
        cleared even when the network call fails; calling again with no
        token is harmless.

        Raises:
            ConfirmationRequiredError: If no confirm callback was passed here
                or to the constructor.
        """
        return self._end_session("/auth/logout", LOGOUT_PROMPT, confirm, everywhere=False)

    def logout_all(self, confirm: Confirm | None = None) -> bool:
        """End every session of this account, this one included."""
        return self._end_session("/auth/logout-all", LOGOUT_ALL_PROMPT, confirm, everywhere=True)

    def _end_session(self, path: str, prompt: str, confirm: Confirm | None, everywhere: bool) -> bool:
        confirm = confirm or self._confirm
        if confirm is None:
            raise ConfirmationRequiredError(f"No confirmation callback to ask: {prompt}")
        if not confirm(prompt):
            return False

        if self.has_token:
            try:
                self._api.post(path)
            except ApiError as e:
                logger.warning(f"Logout request failed, clearing local session anyway: {e}")

        self._teardown()
        self._bus.publish(SessionEnded(everywhere=everywhere))
        self._bus.publish(NavigationRequested(route=Routes.LOGIN))
        logger.info("Logged out" + (" everywhere" if everywhere else ""))
        return True

    def _teardown(self) -> None:
        with self._lock:
            self._generation += 1
            self._user = None
        self._tokens.clear()
        self._challenge_active = False

    def _on_session_invalidated(self, event: SessionInvalidated) -> None:
        logger.info(f"Session invalidated by server: {event.reason}")
        self._teardown()
        self._bus.publish(NavigationRequested(route=Routes.LOGIN))

    # =========================================================================
    # Background refresh and poll
    # =========================================================================

    def refresh_user(self) -> User | None:
        """Re-fetch the user while authenticated; failures are logged only."""
        if self._challenge_active or not self.is_authenticated:
            return None
        try:
            return self.fetch_user()
        except Exception as e:
            logger.warning(f"Background user refresh failed: {e}")
            return None

    def poll_once(self) -> User | None:
        """
        Pick up a token written by another process.

        Fetches only when a token exists, no user is loaded and no fetch is
        already running.
        """
        if self._challenge_active or self._user is not None or self.fetch_in_flight:
            return None
        if not self.has_token:
            return None
        try:
            return self.fetch_user()
        except Exception as e:
            logger.debug(f"Poll fetch failed: {e}")
            return None

    def start(self) -> None:
        """Start the refresh and poll tickers on daemon threads."""
        if self._threads:
            return
        self._stopped.clear()
        tickers = [
            ("session-refresh", self._config.user_refresh_interval_seconds, self.refresh_user),
            ("session-poll", self._config.user_poll_interval_seconds, self.poll_once),
        ]
        for name, interval, tick in tickers:
            thread = threading.Thread(target=self._run_ticker, args=(interval, tick), name=name, daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Session background tickers started")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stopped.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def _run_ticker(self, interval: float, tick: Callable[[], object]) -> None:
        while not self._stopped.wait(interval):
            tick()
