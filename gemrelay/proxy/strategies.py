"""Response delivery strategies: real streaming, fake streaming, buffered.

A strategy either returns a DispatchResult (the attempt succeeded and the
response is committed to the caller) or raises (the attempt failed and the
dispatcher may try another credential). Streaming strategies only commit
once they hold content to send, so failures before that point fail over.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum

from gemrelay.config.settings import Settings
from gemrelay.providers.base import UpstreamProvider
from gemrelay.proxy.chunker import split_text
from gemrelay.proxy.converter import (
    SSE_DONE,
    build_completion,
    finish_chunk,
    sse_event,
    stream_chunk,
)
from gemrelay.proxy.errors import UpstreamError
from gemrelay.store.models import StreamingConfig

logger = logging.getLogger("gemrelay.strategies")

EMPTY_RESPONSE_MESSAGE = "Empty response from Gemini API"

_END = object()


class DeliveryMode(str, Enum):
    BUFFERED = "buffered"
    REAL_STREAM = "real_stream"
    FAKE_STREAM = "fake_stream"


@dataclass
class DispatchResult:
    mode: DeliveryMode
    body: dict | None = None  # buffered: the completion object
    events: AsyncIterator[str] | None = None  # streaming: SSE frames

    @property
    def streaming(self) -> bool:
        return self.events is not None


def select_mode(
    wants_stream: bool, config: StreamingConfig, streaming_supported: bool = True
) -> DeliveryMode:
    """Pick a delivery mode.

    Real streaming wins when both flags are set; with neither set a
    streaming request is silently served buffered. Transports that cannot
    stream always get buffered responses.
    """
    if not wants_stream or not streaming_supported:
        return DeliveryMode.BUFFERED
    if config.real_enabled:
        return DeliveryMode.REAL_STREAM
    if config.fake_enabled:
        return DeliveryMode.FAKE_STREAM
    return DeliveryMode.BUFFERED


class ResponseStrategy(ABC):
    mode: DeliveryMode

    @abstractmethod
    async def execute(
        self, provider: UpstreamProvider, api_key: str, model: str, request: dict
    ) -> DispatchResult:
        ...


class BufferedStrategy(ResponseStrategy):
    mode = DeliveryMode.BUFFERED

    async def execute(self, provider, api_key, model, request) -> DispatchResult:
        text = await provider.generate(api_key, model, request)
        if not text or not text.strip():
            raise UpstreamError(EMPTY_RESPONSE_MESSAGE, status_code=502)
        return DispatchResult(mode=self.mode, body=build_completion(text, model))


class FakeStreamStrategy(ResponseStrategy):
    """One buffered upstream call, replayed to the caller as paced SSE chunks."""

    mode = DeliveryMode.FAKE_STREAM

    def __init__(self, max_chunks: int = 8, min_chunk_chars: int = 20, delay: float = 0.05):
        self.max_chunks = max_chunks
        self.min_chunk_chars = min_chunk_chars
        self.delay = delay

    async def execute(self, provider, api_key, model, request) -> DispatchResult:
        text = await provider.generate(api_key, model, request)
        if not text or not text.strip():
            # Nothing has been sent yet, so an empty answer is a failed attempt
            raise UpstreamError(EMPTY_RESPONSE_MESSAGE, status_code=502)

        pieces = split_text(text, self.max_chunks, self.min_chunk_chars)
        return DispatchResult(mode=self.mode, events=self._events(pieces, model))

    async def _events(self, pieces: list[str], model: str) -> AsyncIterator[str]:
        for index, piece in enumerate(pieces):
            if index:
                await asyncio.sleep(self.delay)
            yield sse_event(stream_chunk(piece, model))
        yield sse_event(finish_chunk(model))
        yield SSE_DONE


class RealStreamStrategy(ResponseStrategy):
    """Forwards upstream fragments as they arrive, bounded by a wall-clock deadline.

    The attempt commits on the first fragment. A stream that completes with
    no content gets the fallback text instead, and hitting the deadline ends
    the stream normally rather than as an error.
    """

    mode = DeliveryMode.REAL_STREAM

    def __init__(self, deadline: float = 25.0, fallback_text: str = ""):
        self.deadline = deadline
        self.fallback_text = fallback_text

    async def execute(self, provider, api_key, model, request) -> DispatchResult:
        deadline_at = time.monotonic() + self.deadline
        fragments = provider.generate_stream(api_key, model, request)

        try:
            first = await self._next(fragments, deadline_at)
        except BaseException:
            await fragments.aclose()
            raise

        return DispatchResult(
            mode=self.mode,
            events=self._events(fragments, first, model, deadline_at),
        )

    @staticmethod
    async def _next(fragments: AsyncIterator[str], deadline_at: float):
        """Next fragment, or _END when upstream finished or the deadline passed."""
        remaining = deadline_at - time.monotonic()
        if remaining <= 0:
            logger.info("Stream deadline reached, finalizing early")
            return _END
        try:
            return await asyncio.wait_for(anext(fragments), timeout=remaining)
        except StopAsyncIteration:
            return _END
        except asyncio.TimeoutError:
            logger.info("Stream deadline reached, finalizing early")
            return _END

    async def _events(self, fragments, first, model: str, deadline_at: float) -> AsyncIterator[str]:
        try:
            if first is _END:
                yield sse_event(stream_chunk(self.fallback_text, model))
            else:
                yield sse_event(stream_chunk(first, model))
                while True:
                    try:
                        text = await self._next(fragments, deadline_at)
                    except UpstreamError as e:
                        # Already committed: report in-band, then close normally
                        logger.warning("Upstream stream failed mid-response: %s", e.message)
                        yield sse_event(stream_chunk(f"\n\n[Error: {e.message}]", model))
                        break
                    except Exception:
                        logger.exception("Stream interrupted by an unexpected error")
                        yield sse_event(stream_chunk("\n\n[Error: Stream interrupted]", model))
                        break
                    if text is _END:
                        break
                    yield sse_event(stream_chunk(text, model))

            yield sse_event(finish_chunk(model))
            yield SSE_DONE
        finally:
            await fragments.aclose()


def build_strategies(settings: Settings) -> dict[DeliveryMode, ResponseStrategy]:
    return {
        DeliveryMode.BUFFERED: BufferedStrategy(),
        DeliveryMode.FAKE_STREAM: FakeStreamStrategy(
            max_chunks=settings.fake_stream_max_chunks,
            min_chunk_chars=settings.fake_stream_min_chunk_chars,
            delay=settings.fake_stream_delay,
        ),
        DeliveryMode.REAL_STREAM: RealStreamStrategy(
            deadline=settings.stream_deadline_seconds,
            fallback_text=settings.stream_fallback_text,
        ),
    }
