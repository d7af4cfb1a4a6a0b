"""Shared base for providers using the OpenAI chat completions format."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from summawise.errors import UnsupportedAttachmentError
from summawise.providers.base import (
    _raise_for_stream_status,
    _shared_or_ephemeral,
    has_file_parts,
    iter_content_parts,
    split_data_url,
)


class OpenAICompatibleProvider:
    """Base for providers that use the OpenAI /chat/completions format.

    Subclass and set ``name`` and the default ``base_url`` to create a
    concrete provider (e.g. OpenRouter, OpenAI, xAI, Z.AI).
    """

    name: str = ""
    supports_images: bool = True
    supports_files: bool = True

    def __init__(
        self,
        api_key: str,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _check_attachments(self, messages: list[dict[str, Any]]) -> None:
        for part in iter_content_parts(messages):
            part_type = part.get("type")
            if part_type == "image_url" and not self.supports_images:
                url = part.get("image_url", {}).get("url", "")
                media_type = url.split(";", 1)[0].removeprefix("data:") if url else None
                raise UnsupportedAttachmentError(
                    f"{self.name} does not accept image attachments", media_type=media_type
                )
            if part_type == "file" and not self.supports_files:
                media_type, _ = split_data_url(part.get("file", {}).get("file_data", ""))
                raise UnsupportedAttachmentError(
                    f"{self.name} does not accept {media_type} attachments", media_type=media_type
                )

    def supports_streaming(self, messages: list[dict[str, Any]]) -> bool:
        # Document parts are only accepted on buffered requests by most compatible APIs
        return not has_file_parts(messages)

    def _build_payload(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        self._check_attachments(messages)
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    async def achat_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> dict[str, Any]:
        payload = self._build_payload(model, messages, temperature, max_tokens)
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            resp = await client.post(
                f"{self.base_url}/chat/completions",
                headers=self._auth_headers(),
                json=payload,
                timeout=timeout,
            )
            resp.raise_for_status()
            result: dict[str, Any] = resp.json()
            return result

    async def astream_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> AsyncIterator[str]:
        payload = self._build_payload(model, messages, temperature, max_tokens)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                headers=self._auth_headers(),
                json=payload,
                timeout=timeout,
            ) as resp:
                await _raise_for_stream_status(resp)
                async for line in resp.aiter_lines():
                    if line:
                        yield line
                        if line.strip() == "data: [DONE]":
                            break
