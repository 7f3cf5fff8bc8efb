"""Dispatch engine: key rotation and failover for one chat completion request.

Pipeline: runtime settings -> eligible credentials -> shuffle -> for each
candidate: record usage, build upstream request, run delivery strategy ->
first success wins; retryable failures move on; terminal failures stop.
"""

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass

from gemrelay.config.runtime import load_runtime_settings
from gemrelay.config.settings import Settings
from gemrelay.credentials.pool import CredentialPool, PoolUnavailable
from gemrelay.logging.audit import AttemptLog, RequestTimer
from gemrelay.providers.base import UpstreamProvider
from gemrelay.proxy.background import BackgroundRunner
from gemrelay.proxy.classify import attempt_status, exhaustion_error, is_invalid_key, is_retryable
from gemrelay.proxy.converter import to_upstream
from gemrelay.proxy.errors import GatewayError, NoAvailableCredentials, UpstreamError, UpstreamTerminal
from gemrelay.proxy.strategies import (
    DeliveryMode,
    DispatchResult,
    ResponseStrategy,
    build_strategies,
    select_mode,
)
from gemrelay.store.base import SettingsStore
from gemrelay.store.models import AttemptRecord

logger = logging.getLogger("gemrelay.dispatcher")


@dataclass
class CallerContext:
    access_key_id: str
    ip_address: str


class Dispatcher:
    """Tries eligible credentials one at a time until a strategy succeeds.

    Every collaborator is injected; the same instance serves all transports.
    `streaming_supported` is False for transports that cannot hold an SSE
    response open (e.g. Lambda behind API Gateway), which forces buffered
    delivery.
    """

    def __init__(
        self,
        pool: CredentialPool,
        settings_store: SettingsStore,
        provider: UpstreamProvider,
        attempt_log: AttemptLog,
        background: BackgroundRunner,
        settings: Settings,
        strategies: dict[DeliveryMode, ResponseStrategy] | None = None,
        streaming_supported: bool = True,
        shuffle: Callable[[list], None] = random.shuffle,
    ):
        self._pool = pool
        self._settings_store = settings_store
        self._provider = provider
        self._attempt_log = attempt_log
        self._background = background
        self._settings = settings
        self._strategies = strategies or build_strategies(settings)
        self.streaming_supported = streaming_supported
        self._shuffle = shuffle

    async def dispatch(self, body: dict, caller: CallerContext) -> DispatchResult:
        model = body.get("model") or self._settings.default_model
        wants_stream = bool(body.get("stream", False))

        runtime = await load_runtime_settings(self._settings_store, self._settings)
        mode = select_mode(wants_stream, runtime.streaming, self.streaming_supported)
        strategy = self._strategies[mode]

        try:
            candidates = await self._pool.list_eligible()
        except PoolUnavailable as e:
            logger.error("Credential store unavailable: %s", e)
            raise GatewayError("Credential store unavailable", status_code=503)
        if not candidates:
            raise NoAvailableCredentials()

        self._shuffle(candidates)
        logger.info(
            "Dispatching request",
            extra={"audit_data": {"model": model, "mode": mode.value, "candidates": len(candidates)}},
        )

        last_error: UpstreamError | None = None
        for tried, credential in enumerate(candidates, start=1):
            self._background.submit(self._pool.record_usage, credential.credential_id)
            # Rebuilt per attempt so each try gets a fresh disguise token
            request = to_upstream(
                body,
                disguise_enabled=runtime.disguise_enabled,
                default_max_tokens=self._settings.default_max_tokens,
                default_temperature=self._settings.default_temperature,
            )

            with RequestTimer() as timer:
                try:
                    result = await strategy.execute(self._provider, credential.api_key, model, request)
                except UpstreamError as e:
                    error = e
                except Exception as e:
                    logger.exception("Unexpected failure with credential %s", credential.credential_id)
                    error = UpstreamError(str(e) or type(e).__name__)
                else:
                    error = None

            if error is None:
                self._emit(caller, credential.credential_id, model, 200, timer.elapsed_ms, wants_stream)
                return result

            last_error = error
            self._emit(
                caller, credential.credential_id, model,
                attempt_status(error.message), timer.elapsed_ms, wants_stream, error.message,
            )

            if not is_retryable(error):
                logger.warning(
                    "Non-retryable upstream error, stopping failover",
                    extra={"audit_data": {"credential_id": credential.credential_id, "status": error.status_code}},
                )
                raise UpstreamTerminal(error.message, status_code=error.status_code)

            if is_invalid_key(error.message):
                self._background.submit(self._pool.invalidate, credential.credential_id, error.message)

            logger.info(
                "Credential failed, trying next",
                extra={"audit_data": {
                    "credential_id": credential.credential_id,
                    "attempt": tried,
                    "of": len(candidates),
                }},
            )

        raise exhaustion_error(last_error, len(candidates))

    def _emit(self, caller, credential_id, model, status_code, duration_ms, is_stream, error_message=None):
        record = AttemptRecord(
            ip_address=caller.ip_address,
            access_key_id=caller.access_key_id,
            credential_id=credential_id,
            model=model,
            status_code=status_code,
            duration_ms=duration_ms,
            is_stream=is_stream,
            error_message=error_message,
        )
        self._background.submit(self._attempt_log.append, record)
