"""Tests for model spec parsing and effective model-id resolution."""

from __future__ import annotations

import httpx
import pytest

from summawise.errors import ProviderError
from summawise.model_ids import (
    parse_model_id,
    resolve_effective_model_id,
    resolve_google_model,
)
from summawise.model_spec import parse_model_spec, parse_model_specs
from summawise.models import (
    GatewayAttempt,
    LocalTool,
    LocalToolAttempt,
    NativeAttempt,
    RequiredCredential,
)


class TestParseModelId:
    def test_valid(self):
        parsed = parse_model_id(" Anthropic/claude-sonnet-4.5 ")
        assert parsed.provider == "anthropic"
        assert parsed.model == "claude-sonnet-4.5"
        assert parsed.canonical == "anthropic/claude-sonnet-4.5"

    @pytest.mark.parametrize("raw", ["gpt-5", "openai/", "mistral/large"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_model_id(raw)


class TestParseModelSpec:
    def test_native(self):
        attempt = parse_model_spec("google/gemini-2.5-flash")
        assert isinstance(attempt, NativeAttempt)
        assert attempt.transport == "native"
        assert attempt.required_credential is RequiredCredential.GEMINI_API_KEY
        assert attempt.force_chat_completions is False

    def test_zai_forces_chat_completions(self):
        attempt = parse_model_spec("zai/glm-4.6")
        assert attempt.force_chat_completions is True
        assert attempt.required_credential is RequiredCredential.Z_AI_API_KEY

    def test_gateway(self):
        attempt = parse_model_spec("openrouter/meta-llama/llama-4-maverick")
        assert isinstance(attempt, GatewayAttempt)
        assert attempt.user_model_id == "openrouter/meta-llama/llama-4-maverick"
        assert attempt.model_id == "meta-llama/llama-4-maverick"
        assert attempt.required_credential is RequiredCredential.OPENROUTER_API_KEY

    def test_local_tool(self):
        attempt = parse_model_spec("cli/codex/gpt-5-codex")
        assert isinstance(attempt, LocalToolAttempt)
        assert attempt.local_tool is LocalTool.CODEX
        assert attempt.local_tool_model == "gpt-5-codex"
        assert attempt.required_credential is RequiredCredential.CLI_CODEX
        assert attempt.model_id is None

    def test_local_tool_without_model(self):
        attempt = parse_model_spec("cli/gemini")
        assert attempt.local_tool_model is None

    @pytest.mark.parametrize("raw", ["", "   ", "openrouter/", "cli/cursor", "gpt-5"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_model_spec(raw)

    def test_parse_many_keeps_order(self):
        attempts = parse_model_specs(["cli/claude", "openai/gpt-5-mini"])
        assert [a.user_model_id for a in attempts] == ["cli/claude", "openai/gpt-5-mini"]


def _lister(models=None, error=None):
    calls = []

    async def _list():
        calls.append(1)
        if error is not None:
            raise error
        return models or []

    _list.calls = calls
    return _list


class TestGoogleResolution:
    async def test_stable_model_is_not_looked_up(self):
        lister = _lister()
        resolution = await resolve_google_model("gemini-2.5-flash", lister)
        assert resolution.model_id == "gemini-2.5-flash"
        assert lister.calls == []

    async def test_preview_pinned_to_stable(self):
        lister = _lister(
            [
                {
                    "name": "models/gemini-3-pro",
                    "supportedGenerationMethods": ["generateContent", "streamGenerateContent"],
                }
            ]
        )
        resolution = await resolve_google_model("gemini-3-pro-preview", lister)
        assert resolution.model_id == "gemini-3-pro"
        assert resolution.note == (
            "Resolved google/gemini-3-pro-preview -> google/gemini-3-pro via ListModels"
        )
        assert resolution.force_streaming_off is False

    async def test_exact_match_without_streaming(self):
        lister = _lister(
            [
                {
                    "name": "models/gemini-2.0-flash-exp",
                    "supportedGenerationMethods": ["generateContent"],
                }
            ]
        )
        resolution = await resolve_google_model("gemini-2.0-flash-exp", lister)
        assert resolution.model_id == "gemini-2.0-flash-exp"
        assert resolution.note is None
        assert resolution.force_streaming_off is True

    async def test_unavailable_model_suggests_alternatives(self):
        lister = _lister([{"name": "models/gemini-2.5-flash"}, {"name": "models/gemini-2.5-pro"}])
        with pytest.raises(ProviderError) as exc_info:
            await resolve_google_model("gemini-9-ultra-preview", lister)
        assert "Try one of: google/gemini-2.5-flash" in str(exc_info.value)

    async def test_list_failure(self):
        lister = _lister(error=httpx.ConnectError("offline"))
        with pytest.raises(ProviderError, match="Cannot verify Google model availability"):
            await resolve_google_model("gemini-3-pro-preview", lister)

    async def test_effective_id_for_attempts(self):
        lister = _lister([{"name": "models/gemini-3-pro"}])
        google = parse_model_spec("google/gemini-3-pro-preview")
        resolution = await resolve_effective_model_id(google, list_google_models=lister)
        assert resolution.model_id == "google/gemini-3-pro"

        gateway = parse_model_spec("openrouter/google/gemini-3-pro-preview")
        resolution = await resolve_effective_model_id(gateway, list_google_models=lister)
        assert resolution.model_id == "google/gemini-3-pro-preview"

        openai = parse_model_spec("OpenAI/gpt-5-mini")
        resolution = await resolve_effective_model_id(openai)
        assert resolution.model_id == "openai/gpt-5-mini"
