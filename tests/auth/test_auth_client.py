"""End-to-end tests for AuthClient wiring."""

import json

import fakeredis
import pytest
import requests
import responses

from auth.client import AuthClient
from auth.config import ClientConfig
from auth.exceptions import ConfirmationRequiredError
from auth.step_up import AuthState
from clients.durable_store import MemoryStore
from clients.valkey_client import ValkeyClient
from core.event_bus import EventBus
from core.events import Routes
from conftest import START_EPOCH, EventRecorder, api_calls, api_url


NOW = int(START_EPOCH)

USER = {"id": 1, "name": "Ada", "date_of_birth": "2000-05-05"}


def build(config, store, clock, signals, bus=None):
    return AuthClient(
        config,
        store,
        event_bus=bus or EventBus(),
        http_session=requests.Session(),
        clock=clock,
        confirm=lambda prompt: True,
        signals=signals,
    )


@pytest.fixture
def client(config, store, clock, signals):
    auth_client = build(config, store, clock, signals)
    yield auth_client
    auth_client.close()


@pytest.fixture
def server(mocked):
    mocked.add(responses.GET, api_url("/auth/me"), json={"user": USER})
    mocked.add(responses.POST, api_url("/devices/advanced/register"), json={})
    return mocked


class TestCreate:

    def test_in_memory_without_state_url(self):
        client = AuthClient.create(ClientConfig())
        assert isinstance(client.store, MemoryStore)

    def test_logout_refused_without_confirmation_callback(self):
        client = AuthClient.create(ClientConfig())

        with pytest.raises(ConfirmationRequiredError):
            client.session.logout()

    def test_valkey_with_state_url(self, monkeypatch):
        server = fakeredis.FakeServer()
        monkeypatch.setattr(
            "redis.from_url",
            lambda url, **kwargs: fakeredis.FakeRedis(server=server, **kwargs),
        )

        client = AuthClient.create(ClientConfig(state_url="redis://localhost:6379/0"))

        assert isinstance(client.store, ValkeyClient)
        client.close()


class TestStart:

    def test_restores_stored_session(self, client, server):
        client.tokens.set_token("abc")

        assert client.start(background=False) is AuthState.AUTHENTICATED
        assert client.session.user.name == "Ada"

    def test_anonymous_without_token(self, client, server):
        assert client.start(background=False) is AuthState.ANONYMOUS

    def test_resumes_persisted_flows(self, config, store, clock, signals, client, server):
        server.add(
            responses.POST,
            api_url("/auth/phone/login/send-code"),
            json={"session_id": "s1", "resend_available_at": NOW + 60},
        )
        client.orchestrator.start_phone_login("+15551234567")

        restarted = build(config, store, clock, signals)
        restarted.start(background=False)

        assert restarted.phone_login.session.session_id == "s1"
        assert restarted.phone_login.countdown.remaining() == 60

    def test_unfinished_device_challenge_takes_precedence(self, config, store, clock, signals, client, server):
        server.add(
            responses.POST,
            api_url("/auth/login"),
            status=403,
            json={"requires_device_verification": True, "fingerprint": "fp-1", "user_id": 1},
        )
        client.orchestrator.login("user@example.com", "correct")

        bus = EventBus()
        recorder = EventRecorder(bus)
        restarted = build(config, store, clock, signals, bus)

        assert restarted.start(background=False) is AuthState.DEVICE_VERIFICATION_PENDING
        assert Routes.DEVICE_VERIFICATION in recorder.routes()
        assert api_calls(server, "/auth/me") == []


class TestSharedState:

    def test_token_shared_between_clients_on_one_store(self, config, store, clock, signals, client, server):
        server.add(responses.POST, api_url("/auth/login"), json={"token": "abc"})
        client.orchestrator.login("user@example.com", "correct")

        other = build(config, store, clock, signals)

        assert other.session.poll_once().id == 1
        assert other.session.is_authenticated is True

    def test_logout_everywhere_via_shared_store(self, config, store, clock, signals, client, server):
        server.add(responses.POST, api_url("/auth/login"), json={"token": "abc"})
        server.add(responses.POST, api_url("/auth/logout"), json={})
        client.orchestrator.login("user@example.com", "correct")
        other = build(config, store, clock, signals)

        client.session.logout()

        assert other.session.has_token is False


class TestRevokeAllDevices:

    def test_current_device_stays_authenticated(self, client, server):
        server.add(responses.POST, api_url("/auth/login"), json={"token": "abc"})
        server.add(responses.POST, api_url("/devices/revoke-all"), json={"message": "Other devices revoked"})
        client.orchestrator.login("user@example.com", "correct")

        client.devices.revoke_all_devices("s3cretpass")

        body = json.loads(api_calls(server, "/devices/revoke-all")[0].request.body)
        assert body["fingerprint"] == client.devices.fingerprint()
        assert client.orchestrator.state is AuthState.AUTHENTICATED
        assert client.session.is_authenticated is True
