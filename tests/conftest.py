"""Shared test fixtures for the auth client test suite."""

import pytest
import requests
import responses

from auth.config import ClientConfig
from auth.device import DeviceSignals
from auth.token_store import TokenStore
from clients.api_client import ApiClient
from clients.durable_store import MemoryStore
from core.event_bus import EventBus


# =============================================================================
# CONSTANTS
# =============================================================================

API_ORIGIN = "http://api.test"
API_BASE = f"{API_ORIGIN}/api"
CSRF_URL = f"{API_ORIGIN}/sanctum/csrf-cookie"

# 2026-01-01T00:00:00Z
START_EPOCH = 1767225600.0


def api_url(path: str) -> str:
    return f"{API_BASE}/{path.lstrip('/')}"


# =============================================================================
# CLOCK AND EVENTS
# =============================================================================


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = START_EPOCH):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """Records every event published on a bus, by class name."""

    EVENT_TYPES = (
        "Notification",
        "NavigationRequested",
        "SessionInvalidated",
        "SessionEnded",
        "ReloadRequested",
        "AuthStateChanged",
        "DeviceVerificationRequired",
    )

    def __init__(self, bus: EventBus):
        self.events = []
        for event_type in self.EVENT_TYPES:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type: str) -> list:
        return [e for e in self.events if e.__class__.__name__ == event_type]

    def routes(self) -> list[str]:
        return [e.route for e in self.of("NavigationRequested")]

    def messages(self, level: str | None = None) -> list[str]:
        return [
            e.message for e in self.of("Notification")
            if level is None or e.level.value == level
        ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)


# =============================================================================
# CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def config() -> ClientConfig:
    """Config pointed at the mocked API with instant retries."""
    return ClientConfig(
        api_base_url=API_BASE,
        mutation_retry_base_delay_seconds=0,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def http() -> requests.Session:
    return requests.Session()


@pytest.fixture
def tokens(store, http) -> TokenStore:
    return TokenStore(store, http.cookies)


@pytest.fixture
def api(config, tokens, bus, http) -> ApiClient:
    return ApiClient(config, tokens, bus, session=http)


@pytest.fixture
def signals() -> DeviceSignals:
    return DeviceSignals(
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        language="en-US",
        screen="1920x1080",
        timezone_offset=0,
        render_entropy="test-host|0242ac120002|CPython",
    )


@pytest.fixture
def mocked():
    """
    Active responses mock with the CSRF handshake already registered.

    Tests add their own endpoints with mocked.add(...). Not every test
    triggers the handshake, so unfired registrations are allowed.
    """
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(
            responses.GET,
            CSRF_URL,
            status=204,
            headers={"Set-Cookie": "XSRF-TOKEN=csrf%3Dtoken; Path=/"},
        )
        yield rsps


def api_calls(rsps, path: str, method: str | None = None) -> list:
    """Calls made to an API path (query string ignored)."""
    url = api_url(path)
    return [
        call for call in rsps.calls
        if call.request.url.split("?")[0] == url
        and (method is None or call.request.method == method)
    ]
