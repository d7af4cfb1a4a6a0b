"""Tests for credential detection and messages."""

from __future__ import annotations

from summawise.config import LocalToolsConfig, Settings
from summawise.credentials import detect_credentials, format_missing_credential
from summawise.model_spec import parse_model_spec
from summawise.models import RequiredCredential


def test_detect_keys_and_tools():
    settings = Settings(openai_api_key="sk-test", google_api_key="  ")
    found = detect_credentials(settings, which=lambda name: "/usr/bin/claude" if name == "claude"
                               else None)
    assert found[RequiredCredential.OPENAI_API_KEY] is True
    assert found[RequiredCredential.GEMINI_API_KEY] is False
    assert found[RequiredCredential.CLI_CLAUDE] is True
    assert found[RequiredCredential.CLI_CODEX] is False
    assert set(found) == set(RequiredCredential)


def test_disabled_tool_is_unavailable():
    settings = Settings(local_tools=LocalToolsConfig(disabled=["claude"]))
    found = detect_credentials(settings, which=lambda name: f"/usr/bin/{name}")
    assert found[RequiredCredential.CLI_CLAUDE] is False
    assert found[RequiredCredential.CLI_GEMINI] is True


def test_missing_key_message():
    message = format_missing_credential(parse_model_spec("google/gemini-2.5-flash"))
    assert message == (
        "Missing GEMINI_API_KEY (or GOOGLE_GENERATIVE_AI_API_KEY / GOOGLE_API_KEY) for model "
        "google/gemini-2.5-flash. Set the env var or choose a different --model."
    )


def test_missing_tool_message():
    message = format_missing_credential(parse_model_spec("cli/codex"))
    assert message == (
        "Codex CLI not found for model cli/codex. Install Codex CLI or set SUMMAWISE_CLI_CODEX."
    )
