"""Thin wrapper around an OpenAI-compatible chat-completion API returning JSON."""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any

from openai import AsyncOpenAI as _HTTPClient
from openai import OpenAIError

from brochure.config import settings
from brochure.errors import ConfigurationError, LLMError

logger = logging.getLogger(__name__)

_client: _HTTPClient | None = None

_FENCE_OPEN = re.compile(r"^```(?:json|JSON)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


def is_configured() -> bool:
    return bool(settings.openai_api_key)


def _get_client() -> _HTTPClient:
    global _client
    if _client is None:
        if not is_configured():
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        _client = _HTTPClient(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.llm_timeout,
        )
    return _client


async def generate_json(
    system_prompt: str,
    user_prompt: str,
    *,
    image_bytes: bytes | None = None,
    image_mime: str = "image/jpeg",
    model: str | None = None,
    temperature: float = 0.2,
    max_tokens: int = 4096,
) -> str:
    """Single-shot completion asking for one JSON object; returns the raw text.

    When *image_bytes* is given the user turn carries the image inline and
    the vision model is used.
    """
    client = _get_client()
    if image_bytes is not None:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        user_content: Any = [
            {"type": "text", "text": user_prompt},
            {
                "type": "image_url",
                "image_url": {"url": f"data:{image_mime};base64,{encoded}", "detail": "low"},
            },
        ]
        default_model = settings.vision_model
    else:
        user_content = user_prompt
        default_model = settings.text_model

    try:
        response = await client.chat.completions.create(
            model=model or default_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
    except OpenAIError as exc:
        raise LLMError(f"LLM request failed: {exc}") from exc

    content = response.choices[0].message.content or ""
    logger.debug("LLM response (%d chars): %s…", len(content), content[:120])
    if not content.strip():
        raise LLMError("LLM returned an empty response")
    return content.strip()


# ═══════════════════════════════════════════════════════════════════════════
# Response cleaning
# ═══════════════════════════════════════════════════════════════════════════

def clean_json_response(raw: str) -> str:
    """Strip markdown fences / preamble and return the first balanced JSON region.

    Returns the stripped text unchanged when no ``{`` or ``[`` is found.
    """
    cleaned = raw.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    cleaned = cleaned.strip()

    region = _first_balanced(cleaned)
    return region if region is not None else cleaned


def _first_balanced(text: str) -> str | None:
    start = next((i for i, ch in enumerate(text) if ch in "{["), None)
    if start is None:
        return None

    closers = {"{": "}", "[": "]"}
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in closers:
            stack.append(closers[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
            if not stack:
                return text[start:i + 1]
    # unbalanced: hand back the tail and let json.loads report it
    return text[start:]


def parse_json_response(raw: str) -> Any:
    """Clean and decode a model response; raises ``json.JSONDecodeError``."""
    return json.loads(clean_json_response(raw))
