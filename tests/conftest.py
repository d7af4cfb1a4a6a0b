"""Shared test fixtures and fake providers."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from summawise import tokenizer
from summawise.catalog import ModelCatalog
from summawise.config import Settings, reset_settings
from summawise.engine import SummaryEngine
from summawise.errors import MissingCredentialError
from summawise.models import GatewayAttempt, ModelLimits, NativeAttempt, RequiredCredential

_ENV_VARS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_GENERATIVE_AI_API_KEY",
    "GOOGLE_API_KEY",
    "XAI_API_KEY",
    "Z_AI_API_KEY",
    "ZAI_API_KEY",
    "OPENROUTER_API_KEY",
    "OPENROUTER_PROVIDERS",
    "OPENAI_BASE_URL",
    "OPENAI_USE_CHAT_COMPLETIONS",
    "SUMMAWISE_STREAM",
    "SUMMAWISE_TIMEOUT",
    "SUMMAWISE_RETRIES",
    "SUMMAWISE_MAX_OUTPUT_TOKENS",
    "SUMMAWISE_LIMITS_FILE",
    "SUMMAWISE_LEDGER_PATH",
    "SUMMAWISE_CLI_CLAUDE",
    "SUMMAWISE_CLI_CODEX",
    "SUMMAWISE_CLI_GEMINI",
)

SAMPLE_LIMITS = [
    ModelLimits(
        id="openai/gpt-5-mini",
        max_input_tokens=1000,
        max_output_tokens=500,
        input_price=1.0,
        output_price=2.0,
    ),
    ModelLimits(
        id="anthropic/claude-sonnet-4.5",
        max_input_tokens=200_000,
        max_output_tokens=64_000,
        input_price=3.0,
        output_price=15.0,
    ),
    ModelLimits(
        id="google/gemini-2.5-flash",
        max_input_tokens=1_048_576,
        max_output_tokens=65_536,
        input_price=0.3,
        output_price=2.5,
    ),
]

ALL_CREDENTIALS = {credential: True for credential in RequiredCredential}


def sse_chunk(text: str | None = None, usage: dict[str, Any] | None = None) -> str:
    """One OpenAI-format SSE data line."""
    chunk: dict[str, Any] = {"object": "chat.completion.chunk", "choices": []}
    if text is not None:
        chunk["choices"] = [{"index": 0, "delta": {"content": text}, "finish_reason": None}]
    if usage is not None:
        chunk["usage"] = usage
    return "data: " + json.dumps(chunk)


def completion(text: str, usage: dict[str, Any] | None = None) -> dict[str, Any]:
    """An OpenAI-format chat completion response."""
    return {
        "object": "chat.completion",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}
        ],
        "usage": usage,
    }


class FakeProvider:
    """Scripted provider.

    ``responses`` is consumed one item per buffered call; an item is either a
    response dict or an exception to raise. ``stream_lines`` are yielded by
    every streaming call after ``stream_delay`` seconds, unless ``stream_error``
    is set.
    """

    def __init__(
        self,
        name: str = "openai",
        *,
        responses: list[Any] | None = None,
        stream_lines: list[str] | None = None,
        stream_error: Exception | None = None,
        stream_delay: float = 0.0,
        streaming: bool = True,
    ) -> None:
        self.name = name
        self.responses = list(responses or [])
        self.stream_lines = stream_lines or []
        self.stream_error = stream_error
        self.stream_delay = stream_delay
        self.streaming = streaming
        self.calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []

    def supports_streaming(self, messages: list[dict[str, Any]]) -> bool:
        return self.streaming

    async def achat_completion(
        self,
        model,
        messages,
        *,
        temperature=None,
        max_tokens=None,
        timeout=120.0,
    ):
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens})
        if not self.responses:
            raise AssertionError("unexpected buffered call")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def astream_completion(
        self,
        model,
        messages,
        *,
        temperature=None,
        max_tokens=None,
        timeout=120.0,
    ):
        self.stream_calls.append({"model": model, "max_tokens": max_tokens})
        if self.stream_delay:
            await asyncio.sleep(self.stream_delay)
        if self.stream_error is not None:
            raise self.stream_error
        for line in self.stream_lines:
            yield line
        yield "data: [DONE]"


class StaticResolver:
    """Resolves every HTTP attempt to one provider per prefix."""

    def __init__(self, providers: dict[str, FakeProvider]) -> None:
        self.providers = providers

    def resolve(self, attempt, model_id=None):
        model_id = model_id or attempt.model_id
        if isinstance(attempt, GatewayAttempt):
            return self.providers["openrouter"], model_id
        assert isinstance(attempt, NativeAttempt)
        prefix, _, bare = model_id.partition("/")
        if prefix not in self.providers:
            raise MissingCredentialError(f"no provider for {prefix}")
        return self.providers[prefix], bare

    def google(self):
        return None

    def gateway(self, allowed_providers=None, *, attempt=None):
        return self.providers["openrouter"]


@pytest.fixture(autouse=True)
def _reset_settings():
    """Reset global settings between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Keep real keys, config files and the tokenizer download out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("summawise.config._DEFAULT_CONFIG_PATH", tmp_path / "config.yaml")
    monkeypatch.setattr(tokenizer, "count_tokens", lambda text: len(text.split()))


@pytest.fixture
def settings() -> Settings:
    return Settings(timeout=5.0, retries=0, retry_backoff=0.0)


@pytest.fixture
def sample_catalog() -> ModelCatalog:
    return ModelCatalog(list(SAMPLE_LIMITS))


@pytest.fixture
def make_engine(settings: Settings, sample_catalog: ModelCatalog):
    """Build a SummaryEngine around fake providers."""

    def _make(providers: dict[str, FakeProvider], **kwargs: Any) -> SummaryEngine:
        kwargs.setdefault("catalog", sample_catalog)
        kwargs.setdefault("credentials", dict(ALL_CREDENTIALS))
        kwargs.setdefault("count_tokens", lambda text: len(text.split()))
        return SummaryEngine(
            kwargs.pop("settings", settings),
            resolver=StaticResolver(providers),
            **kwargs,
        )

    return _make
