"""Process-wide service graph, built once and injected into request handlers."""

import os
from dataclasses import dataclass

from gemrelay.config.settings import get_settings
from gemrelay.credentials.pool import CredentialPool
from gemrelay.logging.audit import AttemptLog
from gemrelay.providers.base import UpstreamProvider
from gemrelay.providers.gemini import GeminiProvider
from gemrelay.proxy.background import BackgroundRunner
from gemrelay.proxy.dispatcher import Dispatcher
from gemrelay.security.ratelimit import SlidingWindowLimiter
from gemrelay.store.base import Store
from gemrelay.store.factory import get_store


@dataclass
class Services:
    store: Store
    pool: CredentialPool
    provider: UpstreamProvider
    background: BackgroundRunner
    dispatcher: Dispatcher
    limiter: SlidingWindowLimiter


_services: Services | None = None


def streaming_supported() -> bool:
    """API Gateway + Mangum cannot hold an SSE response open."""
    return not os.environ.get("AWS_LAMBDA_FUNCTION_NAME")


def build_services(store: Store, provider: UpstreamProvider) -> Services:
    settings = get_settings()
    pool = CredentialPool(store, cache_ttl=settings.pool_cache_ttl)
    background = BackgroundRunner(max_queue_size=settings.background_queue_size)
    dispatcher = Dispatcher(
        pool=pool,
        settings_store=store,
        provider=provider,
        attempt_log=AttemptLog(store),
        background=background,
        settings=settings,
        streaming_supported=streaming_supported(),
    )
    return Services(
        store=store,
        pool=pool,
        provider=provider,
        background=background,
        dispatcher=dispatcher,
        limiter=SlidingWindowLimiter(settings.rate_limit_rpm),
    )


def get_services() -> Services:
    """Get the services singleton (FastAPI dependency)."""
    global _services
    if _services is None:
        _services = build_services(get_store(), GeminiProvider())
    return _services


async def close_services() -> None:
    """Drain background jobs and close upstream connections on shutdown."""
    global _services
    if _services is None:
        return
    await _services.background.close()
    await _services.provider.close()
    await _services.store.close()
    _services = None
