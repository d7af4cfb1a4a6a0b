"""Tests for buffered and streamed generation."""

from __future__ import annotations

import httpx
import pytest

from summawise.errors import EmptyResultError, LLMTimeoutError, ProviderError
from summawise.generate import (
    default_temperature,
    generate_text,
    retry_delay,
    stream_text,
)

from .conftest import FakeProvider, completion, sse_chunk

_MESSAGES = [{"role": "user", "content": "Summarize this."}]


class _Sleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestHelpers:
    def test_retry_delay_doubles_and_caps(self):
        assert retry_delay(1, 0.5) == 0.5
        assert retry_delay(2, 0.5) == 1.0
        assert retry_delay(3, 0.5) == 2.0
        assert retry_delay(20, 0.5) == 30.0

    def test_default_temperature(self):
        assert default_temperature("gpt-5-mini") is None
        assert default_temperature("openai/gpt-5") is None
        assert default_temperature("claude-sonnet-4.5") == 0.0


class TestGenerateText:
    async def test_returns_text_and_usage(self):
        provider = FakeProvider(
            responses=[completion("A summary.", {"prompt_tokens": 10, "completion_tokens": 3})]
        )
        result = await generate_text(provider, "gpt-5-mini", _MESSAGES, max_output_tokens=100)
        assert result.text == "A summary."
        assert result.usage.prompt_tokens == 10
        assert result.usage.total_tokens == 13
        assert provider.calls[0]["max_tokens"] == 100

    async def test_empty_output_raises_with_usage(self):
        provider = FakeProvider(responses=[completion("   ", {"prompt_tokens": 4})])
        with pytest.raises(EmptyResultError) as exc_info:
            await generate_text(provider, "m", _MESSAGES)
        assert exc_info.value.usage.prompt_tokens == 4

    async def test_retries_empty_output_then_succeeds(self):
        provider = FakeProvider(responses=[completion(""), completion("Second try.")])
        sleeper = _Sleeper()
        notices = []
        result = await generate_text(
            provider,
            "m",
            _MESSAGES,
            retries=2,
            backoff=0.5,
            on_retry=notices.append,
            sleep=sleeper,
        )
        assert result.text == "Second try."
        assert sleeper.delays == [0.5]
        assert notices[0].reason == "empty output"
        assert notices[0].attempt == 1
        assert notices[0].retries == 2

    async def test_retries_timeouts_until_exhausted(self):
        provider = FakeProvider(
            responses=[httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow"), httpx.ReadTimeout("x")]
        )
        sleeper = _Sleeper()
        with pytest.raises(LLMTimeoutError):
            await generate_text(provider, "m", _MESSAGES, retries=2, backoff=1.0, sleep=sleeper)
        assert sleeper.delays == [1.0, 2.0]
        assert len(provider.calls) == 3

    async def test_provider_errors_are_not_retried(self):
        request = httpx.Request("POST", "https://api.example.com")
        error = httpx.HTTPStatusError(
            "bad", request=request, response=httpx.Response(400, text="bad input", request=request)
        )
        provider = FakeProvider(responses=[error, completion("unused")])
        with pytest.raises(ProviderError) as exc_info:
            await generate_text(provider, "m", _MESSAGES, retries=3, sleep=_Sleeper())
        assert exc_info.value.status_code == 400
        assert "bad input" in str(exc_info.value)
        assert len(provider.calls) == 1


class TestStreamText:
    async def test_yields_deltas_and_usage(self):
        provider = FakeProvider(
            stream_lines=[
                sse_chunk("Hello"),
                sse_chunk(" world"),
                sse_chunk(usage={"prompt_tokens": 7, "completion_tokens": 2}),
            ]
        )
        stream = await stream_text(provider, "m", _MESSAGES, timeout=1.0)
        deltas = [d async for d in stream]
        assert deltas == ["Hello", " world"]
        assert stream.usage.completion_tokens == 2
        assert stream.last_error() is None

    async def test_empty_stream(self):
        provider = FakeProvider(stream_lines=[])
        stream = await stream_text(provider, "m", _MESSAGES, timeout=1.0)
        assert [d async for d in stream] == []

    async def test_first_delta_timeout(self):
        provider = FakeProvider(stream_lines=[sse_chunk("late")], stream_delay=0.5)
        with pytest.raises(LLMTimeoutError):
            await stream_text(provider, "m", _MESSAGES, timeout=0.05)

    async def test_error_before_first_delta_raises(self):
        provider = FakeProvider(stream_error=ProviderError("denied", status_code=403))
        with pytest.raises(ProviderError):
            await stream_text(provider, "m", _MESSAGES, timeout=1.0)

    async def test_error_after_first_delta_is_kept(self):
        provider = FakeProvider(
            stream_lines=[sse_chunk("Partial"), 'data: {"error": {"message": "overloaded"}}']
        )
        stream = await stream_text(provider, "m", _MESSAGES, timeout=1.0)
        deltas = [d async for d in stream]
        assert deltas == ["Partial"]
        assert "overloaded" in str(stream.last_error())
