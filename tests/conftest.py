"""Shared fixtures for the gemrelay test suite."""

import json

import httpx
import pytest

import gemrelay.services as services_mod
import gemrelay.store.factory as factory_mod
from gemrelay.config.settings import get_settings
from gemrelay.main import app
from tests.fakes import FakeProvider, MemoryStore, make_credentials


@pytest.fixture
def chat_request_body() -> dict:
    """Standard chat completions request body."""
    return {
        "model": "gemini-2.0-flash",
        "messages": [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "Hello, how are you?"},
        ],
    }


@pytest.fixture
def store_file(tmp_path):
    """Create a temp JSON store document and return its path."""
    data = {
        "credentials": [
            {"credential_id": "cred-a", "api_key": "AIza-aaaa-1111"},
            {"credential_id": "cred-b", "api_key": "AIza-bbbb-2222", "is_active": False},
            {"credential_id": "cred-c", "api_key": "AIza-cccc-3333", "is_valid": False},
        ],
        "access_keys": [
            {"key_id": "access-1", "secret": "sk-caller-one"},
            {"key_id": "access-2", "secret": "sk-caller-two", "is_active": False},
        ],
        "settings": {
            "streaming_config": json.dumps({"enabled": False, "fake_stream_enabled": True}),
            "disguise_enabled": "false",
        },
        "call_logs": [],
    }
    path = tmp_path / "store.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(POOL_CACHE_TTL="10", STORE_BACKEND="json")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def relay_store():
    """In-memory store with three upstream credentials and one caller key."""
    return MemoryStore(
        credentials=make_credentials(3),
        access_keys={"sk-test-caller": "access-1"},
    )


@pytest.fixture
def relay_provider():
    """Scripted upstream; every key answers "Hello!" unless a test rescripts it."""
    return FakeProvider({f"AIza-key-{i}": "Hello!" for i in range(1, 4)})


@pytest.fixture
def relay_services(monkeypatch, override_settings, relay_store, relay_provider):
    """Service graph wired to the in-memory store and scripted provider."""
    override_settings(ADMIN_API_KEY="admin-secret", FAKE_STREAM_DELAY_MS="0", RATE_LIMIT_RPM="30")
    monkeypatch.delenv("AWS_LAMBDA_FUNCTION_NAME", raising=False)
    monkeypatch.setattr(factory_mod, "_store", relay_store)

    services = services_mod.build_services(relay_store, relay_provider)
    # Identity shuffle keeps key order deterministic
    services.dispatcher._shuffle = lambda candidates: None
    monkeypatch.setattr(services_mod, "_services", services)
    return services


@pytest.fixture
async def app_client(relay_services):
    """httpx AsyncClient wired to the FastAPI app over ASGI."""
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


