"""Credential and local-tool availability."""

from __future__ import annotations

import shutil
from collections.abc import Callable

from summawise.config import Settings, get_settings
from summawise.local_tools import is_tool_disabled, resolve_binary
from summawise.models import (
    AttemptDescriptor,
    LocalTool,
    LocalToolAttempt,
    RequiredCredential,
)

# RequiredCredential -> Settings field holding the key
_KEY_FIELDS: dict[RequiredCredential, str] = {
    RequiredCredential.OPENAI_API_KEY: "openai_api_key",
    RequiredCredential.ANTHROPIC_API_KEY: "anthropic_api_key",
    RequiredCredential.GEMINI_API_KEY: "google_api_key",
    RequiredCredential.XAI_API_KEY: "xai_api_key",
    RequiredCredential.Z_AI_API_KEY: "zai_api_key",
    RequiredCredential.OPENROUTER_API_KEY: "openrouter_api_key",
}

_TOOL_CREDENTIALS: dict[RequiredCredential, LocalTool] = {
    RequiredCredential.CLI_CLAUDE: LocalTool.CLAUDE,
    RequiredCredential.CLI_CODEX: LocalTool.CODEX,
    RequiredCredential.CLI_GEMINI: LocalTool.GEMINI,
}

_PROVIDER_CREDENTIALS: dict[str, RequiredCredential] = {
    "openai": RequiredCredential.OPENAI_API_KEY,
    "anthropic": RequiredCredential.ANTHROPIC_API_KEY,
    "google": RequiredCredential.GEMINI_API_KEY,
    "xai": RequiredCredential.XAI_API_KEY,
    "zai": RequiredCredential.Z_AI_API_KEY,
    "openrouter": RequiredCredential.OPENROUTER_API_KEY,
}

_TOOL_LABELS = {
    LocalTool.CLAUDE: "Claude",
    LocalTool.CODEX: "Codex",
    LocalTool.GEMINI: "Gemini",
}

# How the credential is named in user-facing messages
_ENV_LABELS = {
    RequiredCredential.GEMINI_API_KEY: (
        "GEMINI_API_KEY (or GOOGLE_GENERATIVE_AI_API_KEY / GOOGLE_API_KEY)"
    ),
}


def credential_for_provider(provider: str) -> RequiredCredential | None:
    return _PROVIDER_CREDENTIALS.get(provider)


def credential_for_tool(tool: LocalTool) -> RequiredCredential:
    for credential, candidate in _TOOL_CREDENTIALS.items():
        if candidate is tool:
            return credential
    raise ValueError(f"Unknown local tool: {tool}")


def detect_credentials(
    settings: Settings | None = None,
    *,
    which: Callable[[str], str | None] = shutil.which,
) -> dict[RequiredCredential, bool]:
    """Map every credential kind to whether it is currently available."""
    settings = settings or get_settings()
    available: dict[RequiredCredential, bool] = {}
    for credential, field_name in _KEY_FIELDS.items():
        available[credential] = bool(getattr(settings, field_name, "").strip())
    for credential, tool in _TOOL_CREDENTIALS.items():
        if is_tool_disabled(tool, settings.local_tools):
            available[credential] = False
            continue
        available[credential] = which(resolve_binary(tool, settings.local_tools)) is not None
    return available


def format_missing_credential(attempt: AttemptDescriptor) -> str:
    """User-facing message for an attempt whose credential is unavailable."""
    if isinstance(attempt, LocalToolAttempt):
        label = _TOOL_LABELS[attempt.local_tool]
        env_key = f"SUMMAWISE_CLI_{attempt.local_tool.value.upper()}"
        return (
            f"{label} CLI not found for model {attempt.user_model_id}. "
            f"Install {label} CLI or set {env_key}."
        )
    credential = attempt.required_credential
    env_label = _ENV_LABELS.get(credential, credential.value)
    return (
        f"Missing {env_label} for model {attempt.user_model_id}. "
        f"Set the env var or choose a different --model."
    )
