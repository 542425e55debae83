from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import ExtractionParseError, UpstreamError


@dataclass
class LLMResponse:
    text: str
    model: str
    input_tokens: int
    output_tokens: int


class AnthropicClient:
    """Minimal client for the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com/v1",
        version: str = "2023-06-01",
        timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.version = version
        self.timeout = timeout
        self.transport = transport

    def complete(self, prompt: str, model: str, max_tokens: int = 1024) -> LLMResponse:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.version,
            "content-type": "application/json",
        }
        payload = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(f"{self.base_url}/messages", headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError(f"LLM request to {model} failed: {exc}") from exc

        blocks = data.get("content") if isinstance(data, dict) else None
        usage = data.get("usage") if isinstance(data, dict) else None
        if not isinstance(blocks, list) or not isinstance(usage, (dict, type(None))):
            raise UpstreamError(f"LLM response from {model} has an unexpected shape: {str(data)[:200]}")

        text = "".join(
            block.get("text") or "" for block in blocks if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = usage or {}
        try:
            input_tokens = int(usage.get("input_tokens") or 0)
            output_tokens = int(usage.get("output_tokens") or 0)
        except (TypeError, ValueError) as exc:
            raise UpstreamError(f"LLM response from {model} has unreadable usage: {usage!r}") from exc
        return LLMResponse(
            text=text.strip(),
            model=data.get("model") or model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


def _outermost(content: str, open_char: str, close_char: str) -> str | None:
    start = content.find(open_char)
    end = content.rfind(close_char)
    if start >= 0 and end > start:
        return content[start : end + 1]
    return None


def extract_json_object(content: str) -> dict[str, Any]:
    """The JSON object embedded in free text (first `{` to last `}`); anything else is rejected."""
    candidate = _outermost(content, "{", "}")
    if candidate is None:
        raise ExtractionParseError("LLM response contains no JSON object")
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ExtractionParseError(f"LLM response JSON is malformed: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ExtractionParseError("LLM response JSON is not an object")
    return parsed


def extract_json_array(content: str) -> list[Any] | None:
    candidate = _outermost(content, "[", "]")
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None
