"""Tests for gemrelay/services.py: service graph lifecycle."""

import pytest

import gemrelay.services as services_mod
import gemrelay.store.factory as factory_mod
from gemrelay.providers.gemini import GeminiProvider
from tests.fakes import MemoryStore


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    monkeypatch.setattr(services_mod, "_services", None)
    monkeypatch.setattr(factory_mod, "_store", MemoryStore())
    yield
    monkeypatch.setattr(services_mod, "_services", None)


class TestServices:

    def test_singleton(self, override_settings):
        override_settings()
        services = services_mod.get_services()
        assert services is services_mod.get_services()
        assert isinstance(services.provider, GeminiProvider)
        assert services.store is factory_mod._store

    def test_settings_flow_into_graph(self, override_settings):
        override_settings(POOL_CACHE_TTL="42", RATE_LIMIT_RPM="7")
        services = services_mod.get_services()
        assert services.pool.cache_ttl == 42
        assert services.limiter.limit == 7

    async def test_close_drains_background_and_resets(self, override_settings):
        override_settings()
        services = services_mod.get_services()
        await services.background.start()
        ran = []

        async def job():
            ran.append(True)

        services.background.submit(job)
        await services_mod.close_services()

        assert ran == [True]
        assert services_mod._services is None

    async def test_close_without_services_is_noop(self):
        await services_mod.close_services()
