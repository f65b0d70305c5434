"""Shared fixtures: settings, fake upstream clients and ASGI test clients."""

import pytest
from httpx import ASGITransport, AsyncClient

from tests.helpers import TEST_BASE_URL, FakeCompletionClient, FakeTwilioService
from voice_bridge.config import Settings
from voice_bridge.errors import UpstreamError
from voice_bridge.main import create_app
from voice_bridge.sessions import InMemorySessionStore, TokenSessionBackend


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        twilio_account_sid="ACtest",
        twilio_auth_token="test-token",
        twilio_phone_number="+15005550006",
        public_server_url=TEST_BASE_URL,
    )


@pytest.fixture
def completion() -> FakeCompletionClient:
    return FakeCompletionClient(["Hi there"])


@pytest.fixture
def twilio() -> FakeTwilioService:
    return FakeTwilioService()


@pytest.fixture
def store(settings) -> InMemorySessionStore:
    return InMemorySessionStore(settings.default_voice)


@pytest.fixture
def token_backend(settings) -> TokenSessionBackend:
    return TokenSessionBackend(settings.default_voice, settings.max_history_pairs)


@pytest.fixture
def memory_app(settings, store, completion, twilio):
    return create_app(
        settings,
        session_backend=store,
        completion_client=completion,
        twilio_service=twilio,
    )


@pytest.fixture
def token_app(settings, token_backend, completion, twilio):
    return create_app(
        settings,
        session_backend=token_backend,
        completion_client=completion,
        twilio_service=twilio,
    )


@pytest.fixture
async def client(memory_app):
    """Async test client against the in-memory session app."""
    transport = ASGITransport(app=memory_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def token_client(token_app):
    """Async test client against the stateless (token) session app."""
    transport = ASGITransport(app=token_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def failing_completion() -> FakeCompletionClient:
    return FakeCompletionClient(error=UpstreamError("Completion API error: 503 unavailable", status_code=503))
