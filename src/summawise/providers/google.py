"""Google Gemini API provider adapter."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from summawise.providers.base import (
    _raise_for_stream_status,
    _shared_or_ephemeral,
    split_data_url,
)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

_FINISH_REASON_MAP = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}


class GoogleProvider:
    """Direct Google Gemini API adapter.

    Translates between OpenAI-compatible format and the Gemini REST API.
    """

    name = "google"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client

    def supports_streaming(self, messages: list[dict[str, Any]]) -> bool:
        return True

    # -- Format translation ---------------------------------------------------

    @staticmethod
    def _to_gemini_parts(content: Any) -> list[dict[str, Any]]:
        if isinstance(content, str):
            return [{"text": content}]
        parts: list[dict[str, Any]] = []
        for part in content:
            part_type = part.get("type")
            if part_type == "image_url":
                url = part.get("image_url", {}).get("url", "")
            elif part_type == "file":
                url = part.get("file", {}).get("file_data", "")
            else:
                parts.append({"text": part.get("text", "")})
                continue
            media_type, data = split_data_url(url)
            parts.append({"inline_data": {"mime_type": media_type, "data": data}})
        return parts

    @classmethod
    def _to_gemini_request(
        cls,
        messages: list[dict[str, Any]],
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        """Convert OpenAI-format messages to Gemini payload."""
        system_instruction: dict[str, Any] | None = None
        contents: list[dict[str, Any]] = []

        for msg in messages:
            if msg["role"] == "system":
                system_instruction = {
                    "parts": cls._to_gemini_parts(msg.get("content", "")),
                }
            else:
                role = "model" if msg["role"] == "assistant" else "user"
                contents.append(
                    {
                        "role": role,
                        "parts": cls._to_gemini_parts(msg.get("content", "")),
                    }
                )

        payload: dict[str, Any] = {"contents": contents}
        if system_instruction:
            payload["system_instruction"] = system_instruction

        generation_config: dict[str, Any] = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config

        return payload

    @staticmethod
    def _to_openai_usage(usage: dict[str, Any]) -> dict[str, Any]:
        prompt_tokens = usage.get("promptTokenCount", 0)
        completion_tokens = usage.get("candidatesTokenCount", 0)
        return {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": usage.get("totalTokenCount", prompt_tokens + completion_tokens),
        }

    @classmethod
    def _to_openai_response(
        cls,
        data: dict[str, Any],
        model: str,
    ) -> dict[str, Any]:
        """Convert Gemini response to OpenAI-compatible format."""
        candidates = data.get("candidates", [])
        content = ""
        finish_reason = "stop"

        if candidates:
            parts = candidates[0].get("content", {}).get("parts", [])
            content = "".join(p.get("text", "") for p in parts)
            raw_reason = candidates[0].get("finishReason", "STOP")
            finish_reason = _FINISH_REASON_MAP.get(raw_reason, "stop")

        return {
            "id": "",
            "object": "chat.completion",
            "model": model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": finish_reason,
                }
            ],
            "usage": cls._to_openai_usage(data.get("usageMetadata", {})),
        }

    # -- Async ----------------------------------------------------------------

    async def alist_models(self, *, timeout: float = 30.0) -> list[dict[str, Any]]:
        """Return the raw ListModels entries available to this API key."""
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            resp = await client.get(
                f"{self.base_url}/models",
                params={"key": self.api_key, "pageSize": 1000},
                timeout=timeout,
            )
            resp.raise_for_status()
            models = resp.json().get("models", [])
        return models if isinstance(models, list) else []

    async def achat_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> dict[str, Any]:
        payload = self._to_gemini_request(messages, temperature, max_tokens)
        url = f"{self.base_url}/models/{model}:generateContent?key={self.api_key}"
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            resp = await client.post(
                url,
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=timeout,
            )
            resp.raise_for_status()
            return self._to_openai_response(resp.json(), model)

    async def astream_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> AsyncIterator[str]:
        """Stream from Gemini, converting to OpenAI SSE format."""
        payload = self._to_gemini_request(messages, temperature, max_tokens)
        url = f"{self.base_url}/models/{model}:streamGenerateContent?key={self.api_key}&alt=sse"
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            async with client.stream(
                "POST",
                url,
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=timeout,
            ) as resp:
                await _raise_for_stream_status(resp)
                async for line in resp.aiter_lines():
                    if not line or not line.startswith("data: "):
                        continue
                    data_str = line.removeprefix("data: ").strip()
                    try:
                        event = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue
                    chunk_line = self._convert_stream_event(event, model)
                    if chunk_line:
                        yield chunk_line

        yield "data: [DONE]"

    @classmethod
    def _convert_stream_event(
        cls,
        event: dict[str, Any],
        model: str,
    ) -> str | None:
        """Convert a Gemini streaming event to an OpenAI SSE data line."""
        candidates = event.get("candidates", [])
        text = ""
        if candidates:
            parts = candidates[0].get("content", {}).get("parts", [])
            text = "".join(p.get("text", "") for p in parts)
        usage_metadata = event.get("usageMetadata")
        if not text and not usage_metadata:
            return None

        chunk: dict[str, Any] = {
            "id": "",
            "object": "chat.completion.chunk",
            "model": model,
            "choices": [],
        }
        if text:
            chunk["choices"] = [
                {
                    "index": 0,
                    "delta": {"content": text},
                    "finish_reason": None,
                }
            ]
        if usage_metadata:
            chunk["usage"] = cls._to_openai_usage(usage_metadata)
        return "data: " + json.dumps(chunk)
