"""Anthropic Messages API provider adapter."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from summawise.errors import ProviderError, UnsupportedAttachmentError
from summawise.providers.base import (
    _raise_for_stream_status,
    _shared_or_ephemeral,
    split_data_url,
    system_text,
)

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
_API_VERSION = "2023-06-01"

_STOP_REASON_MAP = {
    "end_turn": "stop",
    "max_tokens": "length",
    "stop_sequence": "stop",
}

_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
_DOCUMENT_TYPES = {"application/pdf"}


class AnthropicProvider:
    """Direct Anthropic API adapter.

    Translates between OpenAI-compatible format and the Anthropic Messages API.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": _API_VERSION,
        }

    def supports_streaming(self, messages: list[dict[str, Any]]) -> bool:
        return True

    # -- Format translation ---------------------------------------------------

    @staticmethod
    def _to_anthropic_block(part: dict[str, Any]) -> dict[str, Any]:
        part_type = part.get("type")
        if part_type == "image_url":
            media_type, data = split_data_url(part.get("image_url", {}).get("url", ""))
            if media_type not in _IMAGE_TYPES:
                raise UnsupportedAttachmentError(
                    f"anthropic does not accept {media_type} images", media_type=media_type
                )
            return {
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": data},
            }
        if part_type == "file":
            media_type, data = split_data_url(part.get("file", {}).get("file_data", ""))
            if media_type not in _DOCUMENT_TYPES:
                raise UnsupportedAttachmentError(
                    f"anthropic does not accept {media_type} attachments", media_type=media_type
                )
            return {
                "type": "document",
                "source": {"type": "base64", "media_type": media_type, "data": data},
            }
        return {"type": "text", "text": part.get("text", "")}

    @classmethod
    def _to_anthropic_request(
        cls,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        """Convert OpenAI-format messages to Anthropic request payload."""
        anthropic_msgs: list[dict[str, Any]] = []

        for msg in messages:
            if msg["role"] == "system":
                continue
            content = msg.get("content", "")
            if isinstance(content, list):
                content = [cls._to_anthropic_block(p) for p in content]
            anthropic_msgs.append({"role": msg["role"], "content": content})

        payload: dict[str, Any] = {
            "model": model,
            "messages": anthropic_msgs,
            "max_tokens": max_tokens or 4096,
        }
        system = system_text(messages)
        if system:
            payload["system"] = system
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    @staticmethod
    def _to_openai_usage(usage: dict[str, Any]) -> dict[str, Any]:
        input_tokens = usage.get("input_tokens", 0) or 0
        output_tokens = usage.get("output_tokens", 0) or 0
        return {
            "prompt_tokens": input_tokens,
            "completion_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        }

    @classmethod
    def _to_openai_response(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Convert Anthropic response to OpenAI-compatible format."""
        content = ""
        for block in data.get("content", []):
            if block.get("type") == "text":
                content += block.get("text", "")

        stop_reason = data.get("stop_reason", "end_turn")

        return {
            "id": data.get("id", ""),
            "object": "chat.completion",
            "model": data.get("model", ""),
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": _STOP_REASON_MAP.get(stop_reason, "stop"),
                }
            ],
            "usage": cls._to_openai_usage(data.get("usage", {})),
        }

    # -- Async ----------------------------------------------------------------

    async def achat_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> dict[str, Any]:
        payload = self._to_anthropic_request(model, messages, temperature, max_tokens)
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            resp = await client.post(
                f"{self.base_url}/messages",
                headers=self._headers(),
                json=payload,
                timeout=timeout,
            )
            resp.raise_for_status()
            return self._to_openai_response(resp.json())

    async def astream_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> AsyncIterator[str]:
        """Stream from Anthropic, converting events to OpenAI SSE format."""
        payload = self._to_anthropic_request(model, messages, temperature, max_tokens)
        payload["stream"] = True
        usage: dict[str, Any] = {}

        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/messages",
                headers=self._headers(),
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
                    chunk_line = self._convert_stream_event(event, model, usage)
                    if chunk_line:
                        yield chunk_line

        yield "data: [DONE]"

    @classmethod
    def _convert_stream_event(
        cls,
        event: dict[str, Any],
        model: str,
        usage: dict[str, Any],
    ) -> str | None:
        """Convert an Anthropic streaming event to an OpenAI SSE data line.

        *usage* accumulates token counts across ``message_start`` and
        ``message_delta`` events.
        """
        event_type = event.get("type", "")

        if event_type == "message_start":
            usage.update(event.get("message", {}).get("usage", {}) or {})
            return None

        if event_type == "content_block_delta":
            delta = event.get("delta", {})
            text = delta.get("text", "")
            if text:
                chunk = {
                    "id": "",
                    "object": "chat.completion.chunk",
                    "model": model,
                    "choices": [
                        {
                            "index": 0,
                            "delta": {"content": text},
                            "finish_reason": None,
                        }
                    ],
                }
                return "data: " + json.dumps(chunk)

        elif event_type == "message_delta":
            usage.update(event.get("usage", {}) or {})
            stop_reason = event.get("delta", {}).get("stop_reason")
            finish = _STOP_REASON_MAP.get(stop_reason, "stop")
            chunk = {
                "id": "",
                "object": "chat.completion.chunk",
                "model": model,
                "choices": [
                    {
                        "index": 0,
                        "delta": {},
                        "finish_reason": finish,
                    }
                ],
                "usage": cls._to_openai_usage(usage),
            }
            return "data: " + json.dumps(chunk)

        elif event_type == "error":
            error = event.get("error", {}) or {}
            raise ProviderError(
                f"anthropic stream failed: {error.get('message', 'unknown error')}",
                body=json.dumps(error),
            )

        return None
