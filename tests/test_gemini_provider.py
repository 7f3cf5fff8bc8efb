"""Tests for gemrelay/providers/gemini.py: Gemini REST provider over a mock transport."""

import json

import httpx
import pytest

from gemrelay.providers.gemini import GeminiProvider
from gemrelay.proxy.errors import UpstreamError

BASE_URL = "https://gemini.test/v1beta"
REQUEST = {"contents": [{"role": "user", "parts": [{"text": "hi"}]}]}


def candidate(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def provider_with(handler) -> GeminiProvider:
    provider = GeminiProvider(base_url=BASE_URL)
    provider._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return provider


def sse_body(*payloads: dict) -> bytes:
    return "".join(f"data: {json.dumps(p)}\r\n\r\n" for p in payloads).encode()


class TestGenerate:

    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=candidate("Hello"))

        provider = provider_with(handler)
        text = await provider.generate("AIza-1", "gemini-pro", REQUEST)

        assert text == "Hello"
        assert seen["url"] == f"{BASE_URL}/models/gemini-pro:generateContent"
        assert seen["key"] == "AIza-1"
        assert seen["body"] == REQUEST

    async def test_invalid_key_error_keeps_reason(self):
        error_body = {"error": {
            "code": 400,
            "message": "API key not valid. Please pass a valid API key.",
            "status": "INVALID_ARGUMENT",
            "details": [{"reason": "API_KEY_INVALID"}],
        }}
        provider = provider_with(lambda request: httpx.Response(400, json=error_body))

        with pytest.raises(UpstreamError) as exc_info:
            await provider.generate("AIza-1", "gemini-pro", REQUEST)

        assert exc_info.value.status_code == 400
        assert "API_KEY_INVALID" in exc_info.value.message
        assert exc_info.value.message.startswith("[400 Bad Request]")

    async def test_not_found_mentions_reason_phrase(self):
        provider = provider_with(lambda request: httpx.Response(404, json={"error": {"message": "no model"}}))
        with pytest.raises(UpstreamError) as exc_info:
            await provider.generate("AIza-1", "gemini-nope", REQUEST)
        assert "Not Found" in exc_info.value.message

    async def test_non_json_error_body(self):
        provider = provider_with(lambda request: httpx.Response(500, text="upstream crashed"))
        with pytest.raises(UpstreamError) as exc_info:
            await provider.generate("AIza-1", "gemini-pro", REQUEST)
        assert "upstream crashed" in exc_info.value.message

    async def test_blocked_prompt(self):
        body = {"promptFeedback": {"blockReason": "SAFETY"}}
        provider = provider_with(lambda request: httpx.Response(200, json=body))
        with pytest.raises(UpstreamError) as exc_info:
            await provider.generate("AIza-1", "gemini-pro", REQUEST)
        assert "SAFETY" in exc_info.value.message

    async def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await provider_with(handler).generate("AIza-1", "gemini-pro", REQUEST)
        assert exc_info.value.status_code == 502

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await provider_with(handler).generate("AIza-1", "gemini-pro", REQUEST)
        assert exc_info.value.status_code == 504


class TestGenerateStream:

    async def test_yields_fragments(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = request.url
            return httpx.Response(
                200,
                content=sse_body(candidate("Hel"), candidate("lo")),
                headers={"content-type": "text/event-stream"},
            )

        provider = provider_with(handler)
        fragments = [f async for f in provider.generate_stream("AIza-1", "gemini-pro", REQUEST)]

        assert fragments == ["Hel", "lo"]
        assert seen["url"].path.endswith("models/gemini-pro:streamGenerateContent")
        assert seen["url"].params["alt"] == "sse"

    async def test_error_status_raises_before_yield(self):
        provider = provider_with(lambda request: httpx.Response(429, json={"error": {"message": "quota exceeded"}}))
        with pytest.raises(UpstreamError) as exc_info:
            [f async for f in provider.generate_stream("AIza-1", "gemini-pro", REQUEST)]
        assert exc_info.value.status_code == 429
        assert "quota" in exc_info.value.message

    async def test_in_stream_error(self):
        body = sse_body(candidate("partial"), {"error": {"code": 500, "message": "internal"}})
        provider = provider_with(lambda request: httpx.Response(200, content=body))

        fragments = []
        with pytest.raises(UpstreamError):
            async for fragment in provider.generate_stream("AIza-1", "gemini-pro", REQUEST):
                fragments.append(fragment)
        assert fragments == ["partial"]

    async def test_skips_noise_and_empty_parts(self):
        body = b": keepalive\r\n\r\ndata: not-json\r\n\r\n" + sse_body(candidate(""), candidate("x"))
        provider = provider_with(lambda request: httpx.Response(200, content=body))

        fragments = [f async for f in provider.generate_stream("AIza-1", "gemini-pro", REQUEST)]
        assert fragments == ["x"]


class TestListModels:

    async def test_success(self):
        models = [{"name": "models/gemini-pro"}]
        provider = provider_with(lambda request: httpx.Response(200, json={"models": models}))
        assert await provider.list_models("AIza-1") == models

    async def test_error(self):
        provider = provider_with(lambda request: httpx.Response(403, json={"error": {"message": "denied"}}))
        with pytest.raises(UpstreamError):
            await provider.list_models("AIza-1")


class TestClose:

    async def test_close_resets_client(self):
        provider = provider_with(lambda request: httpx.Response(200, json=candidate("x")))
        await provider.close()
        assert provider._client is None
