"""Base protocol for LLM provider adapters."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from typing import Any, Protocol, runtime_checkable

import httpx

from summawise.errors import UnsupportedAttachmentError


@runtime_checkable
class LLMProvider(Protocol):
    """Interface for LLM provider adapters.

    All methods accept and return OpenAI-compatible formats.
    Each adapter handles translation to/from native API format internally.
    """

    @property
    def name(self) -> str:
        """Provider name, e.g. 'openrouter', 'openai', 'anthropic'."""
        ...

    def supports_streaming(self, messages: list[dict[str, Any]]) -> bool:
        """Whether these messages can be sent on the streaming endpoint."""
        ...

    async def achat_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> dict[str, Any]:
        """Async chat completion. Returns OpenAI-format response."""
        ...

    def astream_completion(
        self,
        model: str,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float = 120.0,
    ) -> AsyncIterator[str]:
        """Async streaming. Yields SSE lines (e.g. 'data: {...}')."""
        ...


@asynccontextmanager
async def _shared_or_ephemeral(
    client: httpx.AsyncClient | None,
    timeout: float,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield a shared client if available, otherwise create a short-lived one."""
    if client is not None:
        yield client
    else:
        async with httpx.AsyncClient(timeout=timeout) as ephemeral:
            yield ephemeral


async def _raise_for_stream_status(resp: httpx.Response) -> None:
    """Read the error body of a streamed response before raising on it."""
    if resp.is_error:
        await resp.aread()
    resp.raise_for_status()


def iter_content_parts(messages: list[dict[str, Any]]) -> Iterator[dict[str, Any]]:
    """Yield every content part, treating string content as one text part."""
    for msg in messages:
        content = msg.get("content", "")
        if isinstance(content, str):
            yield {"type": "text", "text": content}
        elif isinstance(content, list):
            yield from content


def has_file_parts(messages: list[dict[str, Any]]) -> bool:
    return any(part.get("type") == "file" for part in iter_content_parts(messages))


def split_data_url(url: str) -> tuple[str, str]:
    """Split ``data:<media>;base64,<data>`` into ``(media_type, data)``."""
    if not url.startswith("data:") or ";base64," not in url:
        raise UnsupportedAttachmentError(
            "Only inline (base64 data URL) attachments are supported", media_type=None
        )
    header, data = url.split(",", 1)
    media_type = header.removeprefix("data:").split(";", 1)[0]
    return media_type, data


def system_text(messages: list[dict[str, Any]]) -> str | None:
    """Concatenate system message text, or ``None`` when there is none."""
    chunks = [
        msg["content"]
        for msg in messages
        if msg.get("role") == "system" and isinstance(msg.get("content"), str)
    ]
    return "\n\n".join(chunks) if chunks else None
