"""
Composition root.

AuthClient builds one of everything and wires them to a shared event bus,
token store and HTTP session. Applications hold a single AuthClient and
subscribe to its bus for notifications and navigation requests.
"""

import logging

import requests

from auth.account import AccountSecurity
from auth.config import ClientConfig
from auth.device import DeviceSignals, DeviceTrustManager
from auth.session import Confirm, SessionContext
from auth.step_up import AuthState, StepUpOrchestrator
from auth.token_store import TokenStore
from auth.two_factor import TwoFactorManager
from auth.types import DeviceChallengeState
from auth.verification import (
    PasswordResetFlow,
    PhoneLoginFlow,
    RegistrationFlow,
    VerificationSessionStore,
)
from clients.api_client import ApiClient
from clients.durable_store import DurableStore, MemoryStore
from clients.valkey_client import ValkeyClient
from core.event_bus import EventBus
from core.events import DeviceVerificationRequired
from utils.timezone import Clock, system_clock

logger = logging.getLogger(__name__)


class AuthClient:
    """
    The assembled authentication client.

    Usage:
        client = AuthClient.create(confirm=dialog.ask_yes_no)
        client.bus.subscribe("NavigationRequested", router.handle)
        client.start()
        client.orchestrator.login("user@example.com", "secret123")
    """

    def __init__(
        self,
        config: ClientConfig,
        store: DurableStore,
        event_bus: EventBus | None = None,
        http_session: requests.Session | None = None,
        clock: Clock = system_clock,
        confirm: Confirm | None = None,
        signals: DeviceSignals | None = None,
    ):
        self.config = config
        self.store = store
        self.bus = event_bus or EventBus()

        http = http_session or requests.Session()
        self.tokens = TokenStore(store, http.cookies)
        self.api = ApiClient(config, self.tokens, self.bus, session=http)

        # SessionContext subscribes first so the token is gone before anyone
        # else reacts to SessionInvalidated
        self.session = SessionContext(self.api, self.tokens, self.bus, config, confirm)
        self.devices = DeviceTrustManager(self.api, store, config, signals, clock)

        verification_store = VerificationSessionStore(store)
        self.registration = RegistrationFlow(self.api, verification_store, config, clock)
        self.phone_login = PhoneLoginFlow(self.api, verification_store, config, clock)
        self.password_reset = PasswordResetFlow(self.api, verification_store, config, clock)

        self.orchestrator = StepUpOrchestrator(
            self.api,
            self.session,
            self.devices,
            self.phone_login,
            self.registration,
            self.bus,
            config,
            clock,
        )
        self.two_factor = TwoFactorManager(self.api, self.session, config.code_length)
        self.account = AccountSecurity(self.api, self.session, config, clock)

    @classmethod
    def create(cls, config: ClientConfig | None = None, **kwargs) -> "AuthClient":
        """Build from config (environment when omitted); Valkey-backed when state_url is set."""
        config = config or ClientConfig.from_env()
        if config.state_url:
            store = ValkeyClient(config.state_url, namespace=config.state_namespace)
        else:
            store = MemoryStore(namespace=config.state_namespace)
        return cls(config, store, **kwargs)

    def start(self, background: bool = True) -> AuthState:
        """
        Restore persisted state, then the session.

        An unfinished device challenge takes precedence over restoring the
        session, exactly as if the server had just asked for it.
        """
        for flow in (self.registration, self.phone_login, self.password_reset):
            flow.resume()

        challenge = self.devices.load_challenge()
        if challenge is not None and challenge.state is not DeviceChallengeState.VERIFIED:
            self.bus.publish(
                DeviceVerificationRequired(
                    fingerprint=challenge.fingerprint,
                    user_id=challenge.user_id,
                    resend_available_at=challenge.resend_available_at,
                )
            )
        else:
            self.orchestrator.restore_session()

        if background:
            self.session.start()
        logger.info(f"Auth client started in state {self.orchestrator.state.value}")
        return self.orchestrator.state

    def close(self) -> None:
        self.session.stop()
        if isinstance(self.store, ValkeyClient):
            self.store.close()
