"""OpenAI <-> Gemini format translation.

Pure functions: the only non-deterministic outputs are response ids,
timestamps and the disguise token.
"""

import json
import secrets
import string
import time
import uuid

SYSTEM_PREFIX = "System: "
DISGUISE_ALPHABET = string.ascii_letters + string.digits
DISGUISE_LENGTH = 6

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]

_ROLE_MAP = {"system": "user", "user": "user", "assistant": "model"}

SSE_DONE = "data: [DONE]\n\n"


def generate_disguise_token(length: int = DISGUISE_LENGTH) -> str:
    return "".join(secrets.choice(DISGUISE_ALPHABET) for _ in range(length))


def disguise(content: str, token: str) -> str:
    return f"{content} [{token}]"


def _content_text(content) -> str:
    """Flatten OpenAI message content (string or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return "" if content is None else str(content)


def to_upstream(
    body: dict,
    disguise_enabled: bool = False,
    default_max_tokens: int = 2048,
    default_temperature: float = 0.7,
) -> dict:
    """Translate an OpenAI chat completion request to a Gemini generateContent body."""
    messages = body.get("messages", [])
    first_user_index = next(
        (i for i, msg in enumerate(messages) if msg.get("role") == "user"), None
    )

    contents = []
    for index, msg in enumerate(messages):
        role = msg.get("role")
        if role not in _ROLE_MAP:
            continue

        text = _content_text(msg.get("content"))
        if disguise_enabled and index == first_user_index:
            text = disguise(text, generate_disguise_token())
        if role == "system":
            text = f"{SYSTEM_PREFIX}{text}"

        contents.append({"role": _ROLE_MAP[role], "parts": [{"text": text}]})

    generation_config = {
        "maxOutputTokens": default_max_tokens if body.get("max_tokens") is None else body["max_tokens"],
        "temperature": default_temperature if body.get("temperature") is None else body["temperature"],
    }
    if body.get("top_p") is not None:
        generation_config["topP"] = body["top_p"]
    if body.get("stop"):
        stop = body["stop"]
        generation_config["stopSequences"] = [stop] if isinstance(stop, str) else list(stop)

    return {
        "contents": contents,
        "generationConfig": generation_config,
        "safetySettings": SAFETY_SETTINGS,
    }


def _completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:24]}"


def stream_chunk(text: str, model: str) -> dict:
    return {
        "id": _completion_id(),
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "delta": {"content": text},
            "finish_reason": None,
        }],
    }


def finish_chunk(model: str) -> dict:
    return {
        "id": _completion_id(),
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "delta": {},
            "finish_reason": "stop",
        }],
    }


def build_completion(text: str, model: str) -> dict:
    """Wrap full text in a non-streaming completion. Token usage is not tracked."""
    return {
        "id": _completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": text},
            "finish_reason": "stop",
        }],
        "usage": {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        },
    }


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def to_openai_models(upstream_models: list[dict]) -> list[dict]:
    """Reshape Gemini model listings into OpenAI model entries."""
    created = int(time.time())
    models = []
    for model in upstream_models:
        name = model.get("name", "")
        if "gemini" not in name:
            continue
        model_id = name.removeprefix("models/")
        models.append({
            "id": model_id,
            "object": "model",
            "created": created,
            "owned_by": "google",
            "permission": [],
            "root": model_id,
            "parent": None,
        })
    return models


def extract_text(response: dict) -> str:
    """Join the text parts of the first candidate in a Gemini response."""
    candidates = response.get("candidates") or []
    if not candidates:
        return ""
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(part.get("text", "") for part in parts if not part.get("thought"))
