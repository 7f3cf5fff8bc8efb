"""Gemini REST API provider."""

import json
from collections.abc import AsyncGenerator

import httpx

from gemrelay.config.settings import get_settings
from gemrelay.providers.base import UpstreamProvider
from gemrelay.proxy.converter import extract_text
from gemrelay.proxy.errors import UpstreamError


class GeminiProvider(UpstreamProvider):
    """Sends generateContent / streamGenerateContent requests with a per-call API key."""

    def __init__(self, base_url: str | None = None):
        self._base_url = base_url
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            settings = get_settings()
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.upstream_timeout, connect=settings.upstream_connect_timeout)
            )
        return self._client

    def _url(self, path: str) -> str:
        base_url = self._base_url or get_settings().gemini_base_url
        return f"{base_url.rstrip('/')}/{path}"

    @staticmethod
    def _headers(api_key: str) -> dict:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        }

    @staticmethod
    def _error_from_body(status_code: int, raw: bytes) -> UpstreamError:
        """Build an UpstreamError from a Gemini error body.

        Gemini puts the machine-readable reason (e.g. API_KEY_INVALID) in
        error.details and the human text in error.message; both are kept so
        classification can match either.
        """
        text = raw.decode(errors="replace")
        prefix = f"[{status_code} {httpx.codes.get_reason_phrase(status_code)}]"
        try:
            error = json.loads(text).get("error", {})
        except (json.JSONDecodeError, AttributeError):
            return UpstreamError(f"{prefix} {text}", status_code=status_code)

        parts = [error.get("message", "")]
        if error.get("status"):
            parts.append(error["status"])
        for detail in error.get("details", []) or []:
            if isinstance(detail, dict) and detail.get("reason"):
                parts.append(detail["reason"])
        message = " ".join(p for p in parts if p) or text
        return UpstreamError(f"{prefix} {message}", status_code=status_code)

    @staticmethod
    def _check_blocked(response: dict) -> None:
        block_reason = response.get("promptFeedback", {}).get("blockReason")
        if block_reason:
            raise UpstreamError(f"Prompt blocked by upstream: {block_reason}", status_code=400)

    async def generate(self, api_key: str, model: str, request: dict) -> str:
        client = await self._get_client()
        url = self._url(f"models/{model}:generateContent")
        try:
            response = await client.post(url, json=request, headers=self._headers(api_key))
        except httpx.ConnectError:
            raise UpstreamError("Cannot reach upstream provider", status_code=502)
        except httpx.TimeoutException:
            raise UpstreamError("Upstream provider timed out", status_code=504)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Upstream error: {e}", status_code=502)

        if response.status_code != 200:
            raise self._error_from_body(response.status_code, response.content)

        body = response.json()
        self._check_blocked(body)
        return extract_text(body)

    async def generate_stream(
        self, api_key: str, model: str, request: dict
    ) -> AsyncGenerator[str, None]:
        client = await self._get_client()
        url = self._url(f"models/{model}:streamGenerateContent")

        try:
            async with client.stream(
                "POST", url, params={"alt": "sse"}, json=request, headers=self._headers(api_key)
            ) as response:
                if response.status_code != 200:
                    body_bytes = await response.aread()
                    raise self._error_from_body(response.status_code, body_bytes)

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line or not line.startswith("data:"):
                        continue

                    payload = line[len("data:"):].strip()
                    try:
                        chunk = json.loads(payload)
                    except json.JSONDecodeError:
                        continue

                    if "error" in chunk:
                        error = chunk["error"]
                        raise UpstreamError(
                            error.get("message", "Stream error"), status_code=error.get("code")
                        )
                    self._check_blocked(chunk)

                    text = extract_text(chunk)
                    if text:
                        yield text

        except httpx.ConnectError:
            raise UpstreamError("Cannot reach upstream provider", status_code=502)
        except httpx.TimeoutException:
            raise UpstreamError("Upstream provider timed out", status_code=504)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Upstream error: {e}", status_code=502)

    async def list_models(self, api_key: str) -> list[dict]:
        client = await self._get_client()
        try:
            response = await client.get(self._url("models"), headers=self._headers(api_key))
        except httpx.HTTPError as e:
            raise UpstreamError(f"Upstream error: {e}", status_code=502)

        if response.status_code != 200:
            raise self._error_from_body(response.status_code, response.content)
        return response.json().get("models", [])

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
