"""Direct OpenAI provider (chat completions or the Responses API)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from summawise.errors import ProviderError
from summawise.providers._openai_compat import OpenAICompatibleProvider
from summawise.providers.base import (
    _raise_for_stream_status,
    _shared_or_ephemeral,
    system_text,
)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


def _chunk_line(model: str, text: str | None = None, usage: dict[str, Any] | None = None) -> str:
    chunk: dict[str, Any] = {
        "id": "",
        "object": "chat.completion.chunk",
        "model": model,
        "choices": [],
    }
    if text:
        chunk["choices"] = [{"index": 0, "delta": {"content": text}, "finish_reason": None}]
    if usage is not None:
        chunk["usage"] = usage
    return "data: " + json.dumps(chunk)


class OpenAIProvider(OpenAICompatibleProvider):
    """Direct OpenAI API.

    Uses the Responses API by default and ``/chat/completions`` when
    ``use_responses`` is off (forced, configured, or a custom base URL).
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        *,
        use_responses: bool = True,
    ) -> None:
        super().__init__(api_key, base_url, http_client=http_client)
        self.use_responses = use_responses

    def supports_streaming(self, messages: list[dict[str, Any]]) -> bool:
        if self.use_responses:
            return True
        return super().supports_streaming(messages)

    # -- Responses API format translation -------------------------------------

    @staticmethod
    def _to_responses_part(part: dict[str, Any]) -> dict[str, Any]:
        part_type = part.get("type")
        if part_type == "image_url":
            return {"type": "input_image", "image_url": part.get("image_url", {}).get("url", "")}
        if part_type == "file":
            file = part.get("file", {})
            return {
                "type": "input_file",
                "filename": file.get("filename", "attachment"),
                "file_data": file.get("file_data", ""),
            }
        return {"type": "input_text", "text": part.get("text", "")}

    def _to_responses_request(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        inputs: list[dict[str, Any]] = []
        for msg in messages:
            if msg["role"] == "system":
                continue
            content = msg.get("content", "")
            parts = content if isinstance(content, list) else [{"type": "text", "text": content}]
            inputs.append(
                {"role": msg["role"], "content": [self._to_responses_part(p) for p in parts]}
            )

        payload: dict[str, Any] = {"model": model, "input": inputs}
        instructions = system_text(messages)
        if instructions:
            payload["instructions"] = instructions
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_output_tokens"] = max_tokens
        return payload

    @staticmethod
    def _responses_text(data: dict[str, Any]) -> str:
        if isinstance(data.get("output_text"), str):
            return data["output_text"]
        text = ""
        for item in data.get("output", []) or []:
            for block in item.get("content", []) or []:
                if isinstance(block.get("text"), str):
                    text += block["text"]
        return text

    @classmethod
    def _responses_to_openai(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Convert a Responses API payload to chat-completion format."""
        return {
            "id": data.get("id", ""),
            "object": "chat.completion",
            "model": data.get("model", ""),
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": cls._responses_text(data)},
                    "finish_reason": "stop",
                }
            ],
            "usage": data.get("usage"),
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
        if not self.use_responses:
            return await super().achat_completion(
                model, messages, temperature=temperature, max_tokens=max_tokens, timeout=timeout
            )
        payload = self._to_responses_request(model, messages, temperature, max_tokens)
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            resp = await client.post(
                f"{self.base_url}/responses",
                headers=self._auth_headers(),
                json=payload,
                timeout=timeout,
            )
            resp.raise_for_status()
            return self._responses_to_openai(resp.json())

    async def astream_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> AsyncIterator[str]:
        if not self.use_responses:
            async for line in super().astream_completion(
                model, messages, temperature=temperature, max_tokens=max_tokens, timeout=timeout
            ):
                yield line
            return

        payload = self._to_responses_request(model, messages, temperature, max_tokens)
        payload["stream"] = True
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/responses",
                headers=self._auth_headers(),
                json=payload,
                timeout=timeout,
            ) as resp:
                await _raise_for_stream_status(resp)
                async for line in resp.aiter_lines():
                    if not line or not line.startswith("data: "):
                        continue
                    try:
                        event = json.loads(line.removeprefix("data: ").strip())
                    except json.JSONDecodeError:
                        continue
                    chunk_line = self._convert_stream_event(event, model)
                    if chunk_line:
                        yield chunk_line

        yield "data: [DONE]"

    @staticmethod
    def _convert_stream_event(event: dict[str, Any], model: str) -> str | None:
        """Convert a Responses API streaming event to an OpenAI SSE data line."""
        event_type = event.get("type", "")

        if event_type == "response.output_text.delta":
            text = event.get("delta", "")
            return _chunk_line(model, text=text) if text else None

        if event_type == "response.completed":
            usage = (event.get("response") or {}).get("usage")
            return _chunk_line(model, usage=usage) if usage else None

        if event_type in ("response.failed", "error"):
            error = event.get("error") or (event.get("response") or {}).get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(f"openai stream failed: {message or event_type}")

        return None
