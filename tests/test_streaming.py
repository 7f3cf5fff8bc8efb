"""Integration tests for streamed chat completions (SSE) through the app."""

import json

from gemrelay.config.runtime import STREAMING_CONFIG_KEY
from gemrelay.proxy.errors import UpstreamError
from gemrelay.services import build_services, streaming_supported

AUTH = {"Authorization": "Bearer sk-test-caller"}
STREAM_CHAT = {
    "model": "gemini-2.0-flash",
    "stream": True,
    "messages": [{"role": "user", "content": "tell me something"}],
}


def set_streaming(store, real: bool, fake: bool) -> None:
    store.settings[STREAMING_CONFIG_KEY] = json.dumps({"enabled": real, "fake_stream_enabled": fake})


def parse_sse(text: str) -> list:
    """Parse an SSE body into JSON payloads; [DONE] stays a string."""
    events = []
    for block in text.split("\n\n"):
        if not block.startswith("data: "):
            continue
        payload = block[len("data: "):]
        events.append(payload if payload == "[DONE]" else json.loads(payload))
    return events


def delta_text(events: list) -> str:
    return "".join(
        e["choices"][0]["delta"].get("content", "")
        for e in events
        if isinstance(e, dict)
    )


class TestRealStream:

    async def test_sse_response(self, app_client, relay_store, relay_provider):
        set_streaming(relay_store, real=True, fake=False)
        relay_provider.scripts["AIza-key-1"] = ["Once ", "upon ", "a time"]

        resp = await app_client.post("/v1/chat/completions", json=STREAM_CHAT, headers=AUTH)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        events = parse_sse(resp.text)
        assert delta_text(events) == "Once upon a time"
        assert events[-2]["choices"][0]["finish_reason"] == "stop"
        assert events[-1] == "[DONE]"

    async def test_failover_before_first_fragment(self, app_client, relay_store, relay_provider, relay_services):
        set_streaming(relay_store, real=True, fake=False)
        relay_provider.scripts["AIza-key-1"] = UpstreamError("quota exceeded", 429)
        relay_provider.scripts["AIza-key-2"] = ["fine"]

        resp = await app_client.post("/v1/chat/completions", json=STREAM_CHAT, headers=AUTH)
        await relay_services.background.join()

        assert delta_text(parse_sse(resp.text)) == "fine"
        assert [r.status_code for r in relay_store.logs] == [429, 200]
        assert all(r.is_stream for r in relay_store.logs)

    async def test_mid_stream_error_stays_200(self, app_client, relay_store, relay_provider):
        set_streaming(relay_store, real=True, fake=False)
        relay_provider.scripts["AIza-key-1"] = ["partial", UpstreamError("connection reset", 502)]

        resp = await app_client.post("/v1/chat/completions", json=STREAM_CHAT, headers=AUTH)

        assert resp.status_code == 200
        events = parse_sse(resp.text)
        assert "[Error: connection reset]" in delta_text(events)
        assert events[-1] == "[DONE]"

    async def test_all_keys_fail_before_stream_gives_json_error(self, app_client, relay_store, relay_provider):
        set_streaming(relay_store, real=True, fake=False)
        for key in list(relay_provider.scripts):
            relay_provider.scripts[key] = UpstreamError("quota exceeded", 429)

        resp = await app_client.post("/v1/chat/completions", json=STREAM_CHAT, headers=AUTH)
        assert resp.status_code == 429
        assert resp.json()["error"]["type"] == "rate_limit_exceeded"


class TestFakeStream:

    async def test_chunks_reassemble(self, app_client, relay_store, relay_provider):
        set_streaming(relay_store, real=False, fake=True)
        answer = "A buffered answer that the relay replays to the caller as several chunks."
        relay_provider.scripts["AIza-key-1"] = answer

        resp = await app_client.post("/v1/chat/completions", json=STREAM_CHAT, headers=AUTH)

        events = parse_sse(resp.text)
        content_events = [e for e in events if isinstance(e, dict) and e["choices"][0]["delta"]]
        assert len(content_events) >= 2
        assert delta_text(events) == answer
        assert events[-1] == "[DONE]"
        assert relay_provider.calls[0][0] == "generate"


class TestBufferedFallback:

    async def test_both_modes_off_returns_json(self, app_client, relay_store):
        set_streaming(relay_store, real=False, fake=False)

        resp = await app_client.post("/v1/chat/completions", json=STREAM_CHAT, headers=AUTH)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        assert resp.json()["choices"][0]["message"]["content"] == "Hello!"

    async def test_lambda_transport_is_buffered(self, app_client, relay_store, relay_services):
        set_streaming(relay_store, real=True, fake=False)
        relay_services.dispatcher.streaming_supported = False

        resp = await app_client.post("/v1/chat/completions", json=STREAM_CHAT, headers=AUTH)
        assert resp.json()["object"] == "chat.completion"


class TestStreamingSupported:

    def test_lambda_env_disables_streaming(self, monkeypatch, override_settings, relay_store, relay_provider):
        monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", "gemrelay-fn")
        assert streaming_supported() is False
        assert build_services(relay_store, relay_provider).dispatcher.streaming_supported is False

    def test_default_supports_streaming(self, monkeypatch):
        monkeypatch.delenv("AWS_LAMBDA_FUNCTION_NAME", raising=False)
        assert streaming_supported() is True
