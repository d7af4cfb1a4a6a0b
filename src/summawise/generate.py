"""Buffered and streamed text generation on top of provider adapters."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, NamedTuple

import httpx

from summawise.errors import (
    EmptyResultError,
    LLMTimeoutError,
    ProviderError,
    SummaryError,
    classify_http_error,
)
from summawise.models import TokenUsage
from summawise.providers.base import LLMProvider

logger = logging.getLogger(__name__)

_MAX_BACKOFF_SECONDS = 30.0


class RetryNotice(NamedTuple):
    """Passed to ``on_retry`` before each buffered retry."""

    attempt: int
    retries: int
    delay: float
    reason: str
    model_id: str


@dataclass
class GenerateResult:
    text: str
    usage: TokenUsage | None
    provider: str
    model: str


def default_temperature(model: str) -> float | None:
    """Deterministic output, except for models that reject a temperature."""
    bare = model.rsplit("/", 1)[-1].lower()
    if bare.startswith("gpt-5"):
        return None
    return 0.0


def retry_reason(exc: BaseException) -> str:
    if isinstance(exc, LLMTimeoutError):
        return "timeout"
    if isinstance(exc, EmptyResultError):
        return "empty output"
    return "error"


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, (LLMTimeoutError, EmptyResultError))


def retry_delay(attempt: int, backoff: float) -> float:
    return min(backoff * 2 ** (attempt - 1), _MAX_BACKOFF_SECONDS)


def _message_text(data: dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices:
        return ""
    content = (choices[0].get("message") or {}).get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(p.get("text", "") for p in content if isinstance(p, dict))
    return ""


async def _generate_once(
    provider: LLMProvider,
    model: str,
    messages: list[dict[str, Any]],
    *,
    max_output_tokens: int | None,
    timeout: float,
) -> GenerateResult:
    try:
        data = await asyncio.wait_for(
            provider.achat_completion(
                model,
                messages,
                temperature=default_temperature(model),
                max_tokens=max_output_tokens,
                timeout=timeout,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        raise LLMTimeoutError("LLM request timed out") from exc
    except httpx.HTTPError as exc:
        raise classify_http_error(exc, provider=provider.name) from exc

    usage = TokenUsage.from_openai(data.get("usage"))
    text = _message_text(data)
    if not text.strip():
        raise EmptyResultError(usage=usage, provider=provider.name, model_id=model)
    return GenerateResult(text=text, usage=usage, provider=provider.name, model=model)


async def generate_text(
    provider: LLMProvider,
    model: str,
    messages: list[dict[str, Any]],
    *,
    max_output_tokens: int | None = None,
    timeout: float = 120.0,
    retries: int = 0,
    backoff: float = 0.5,
    on_retry: Callable[[RetryNotice], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> GenerateResult:
    """Buffered completion, retrying timeouts and empty output up to *retries* times."""
    attempt = 0
    while True:
        try:
            return await _generate_once(
                provider,
                model,
                messages,
                max_output_tokens=max_output_tokens,
                timeout=timeout,
            )
        except SummaryError as exc:
            if not is_retryable(exc) or attempt >= retries:
                raise
            attempt += 1
            notice = RetryNotice(
                attempt=attempt,
                retries=retries,
                delay=retry_delay(attempt, backoff),
                reason=retry_reason(exc),
                model_id=model,
            )
            logger.info(
                "LLM %s for %s; retry %d/%d in %.1fs",
                notice.reason,
                model,
                attempt,
                retries,
                notice.delay,
            )
            if on_retry is not None:
                on_retry(notice)
            await sleep(notice.delay)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TextStream:
    """Text deltas from one streaming call.

    Errors raised after the first delta end the iteration; they are logged and
    kept for :meth:`last_error` so the caller can chain them.
    """

    def __init__(
        self,
        deltas: AsyncIterator[str],
        *,
        provider: str,
        model: str,
        first: str | None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.usage: TokenUsage | None = None
        self._deltas = deltas
        self._first = first
        self._error: BaseException | None = None

    def last_error(self) -> BaseException | None:
        return self._error

    async def __aiter__(self) -> AsyncIterator[str]:
        if self._first is None:
            return
        yield self._first
        try:
            async for delta in self._deltas:
                yield delta
        except (httpx.HTTPError, SummaryError) as exc:
            self._error = classify_http_error(exc, provider=self.provider)
            logger.warning("Stream from %s ended with an error: %s", self.model, self._error)
        finally:
            await self._deltas.aclose()


async def _iter_deltas(lines: AsyncIterator[str], stream: TextStream) -> AsyncIterator[str]:
    """Parse OpenAI-format SSE lines into text deltas, capturing usage."""
    async for line in lines:
        if not line.startswith("data: "):
            continue
        data_str = line.removeprefix("data: ").strip()
        if data_str == "[DONE]":
            break
        try:
            chunk = json.loads(data_str)
        except json.JSONDecodeError:
            continue
        if chunk.get("error"):
            error = chunk["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(f"{stream.provider} stream failed: {message}")
        usage = TokenUsage.from_openai(chunk.get("usage"))
        if usage is not None:
            stream.usage = usage
        for choice in chunk.get("choices") or []:
            content = (choice.get("delta") or {}).get("content")
            if isinstance(content, str) and content:
                yield content


async def stream_text(
    provider: LLMProvider,
    model: str,
    messages: list[dict[str, Any]],
    *,
    max_output_tokens: int | None = None,
    timeout: float = 120.0,
) -> TextStream:
    """Open a stream and wait (up to *timeout*) for its first delta.

    Failures before the first delta raise; a timeout raises ``LLMTimeoutError``.
    """
    lines = provider.astream_completion(
        model,
        messages,
        temperature=default_temperature(model),
        max_tokens=max_output_tokens,
        timeout=timeout,
    )
    stream = TextStream(_empty(), provider=provider.name, model=model, first=None)
    deltas = _iter_deltas(lines, stream)
    try:
        first = await asyncio.wait_for(anext(deltas), timeout=timeout)
    except StopAsyncIteration:
        return stream
    except asyncio.TimeoutError as exc:
        raise LLMTimeoutError("LLM request timed out") from exc
    except httpx.HTTPError as exc:
        raise classify_http_error(exc, provider=provider.name) from exc

    stream._deltas = deltas
    stream._first = first
    return stream


async def _empty() -> AsyncIterator[str]:
    return
    yield  # pragma: no cover
