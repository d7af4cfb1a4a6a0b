"""Settings loading from environment variables and config files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_DEFAULT_CONFIG_PATH = Path.home() / ".config" / "summawise" / "config.yaml"

_TRUTHY = ("1", "true", "yes", "on")


class StreamMergeConfig(BaseModel):
    """Thresholds for reconciling overlapping stream deltas."""

    prefix_scan_chars: int = Field(default=4096, description="Bound on the common-prefix scan")
    rewrite_tail_chars: int = Field(
        default=64, description="Max tail divergence for a chunk to count as a self-correction"
    )
    rewrite_ratio: float = Field(
        default=0.9, description="Min share of the previous text a self-correction must restate"
    )
    overlap_window_chars: int = Field(default=2048, description="Bound on suffix/prefix search")
    min_overlap_chars: int = Field(
        default=4, description="Shorter suffix/prefix overlaps are treated as plain deltas"
    )


class LocalToolConfig(BaseModel):
    """Per-tool overrides for local CLI tools."""

    enabled: bool = True
    binary: str | None = None
    extra_args: list[str] = Field(default_factory=list)


class LocalToolsConfig(BaseModel):
    """Configuration for the claude / codex / gemini command-line tools."""

    enabled: list[str] | None = Field(default=None, description="Allow-list of tool names")
    disabled: list[str] | None = Field(default=None, description="Deny-list of tool names")
    claude: LocalToolConfig = Field(default_factory=LocalToolConfig)
    codex: LocalToolConfig = Field(default_factory=LocalToolConfig)
    gemini: LocalToolConfig = Field(default_factory=LocalToolConfig)

    def for_tool(self, tool: str) -> LocalToolConfig:
        return getattr(self, tool, LocalToolConfig())


class Settings(BaseModel):
    """Application settings."""

    openai_api_key: str = Field(default="", description="OpenAI API key")
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    google_api_key: str = Field(default="", description="Google Gemini API key")
    xai_api_key: str = Field(default="", description="xAI API key")
    zai_api_key: str = Field(default="", description="Z.AI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    openai_base_url: str = Field(default="", description="Override for the OpenAI base URL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API base URL",
    )
    zai_base_url: str = Field(default="https://api.z.ai/api/paas/v4")
    openrouter_providers: list[str] | None = Field(
        default=None, description="Allowed OpenRouter upstream providers"
    )
    timeout: float = Field(default=120.0, description="Per-call timeout in seconds")
    retries: int = Field(default=1, description="Buffered-call retries on timeout/empty output")
    retry_backoff: float = Field(default=0.5, description="Base retry backoff in seconds")
    streaming_enabled: bool = Field(default=True)
    openai_use_chat_completions: bool = Field(
        default=False, description="Use /chat/completions instead of the Responses API"
    )
    max_output_tokens: int | None = Field(default=None, description="Requested output cap")
    limits_file: str | None = Field(
        default=None, description="Path to a YAML file with model limits and pricing"
    )
    ledger_path: str = Field(
        default="",
        description="Path to ledger JSONL file (default: ~/.config/summawise/ledger.jsonl)",
    )
    daemon_host: str = Field(default="127.0.0.1")
    daemon_port: int = Field(default=8787)
    local_tools: LocalToolsConfig = Field(default_factory=LocalToolsConfig)
    stream_merge: StreamMergeConfig = Field(default_factory=StreamMergeConfig)


def _first_env(*names: str) -> str | None:
    for name in names:
        val = os.environ.get(name)
        if val is not None and val.strip():
            return val.strip()
    return None


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from a config file, then overlay environment variables."""
    env_values: dict[str, Any] = {}

    env_map: dict[str, tuple[str, ...]] = {
        "openai_api_key": ("OPENAI_API_KEY",),
        "anthropic_api_key": ("ANTHROPIC_API_KEY",),
        "google_api_key": ("GEMINI_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY", "GOOGLE_API_KEY"),
        "xai_api_key": ("XAI_API_KEY",),
        "zai_api_key": ("Z_AI_API_KEY", "ZAI_API_KEY"),
        "openrouter_api_key": ("OPENROUTER_API_KEY",),
        "openai_base_url": ("OPENAI_BASE_URL",),
        "openrouter_base_url": ("OPENROUTER_BASE_URL",),
        "zai_base_url": ("Z_AI_BASE_URL",),
        "timeout": ("SUMMAWISE_TIMEOUT",),
        "retries": ("SUMMAWISE_RETRIES",),
        "retry_backoff": ("SUMMAWISE_RETRY_BACKOFF",),
        "max_output_tokens": ("SUMMAWISE_MAX_OUTPUT_TOKENS",),
        "limits_file": ("SUMMAWISE_LIMITS_FILE",),
        "ledger_path": ("SUMMAWISE_LEDGER_PATH",),
        "daemon_host": ("SUMMAWISE_DAEMON_HOST",),
        "daemon_port": ("SUMMAWISE_DAEMON_PORT",),
    }

    for field_name, env_vars in env_map.items():
        val = _first_env(*env_vars)
        if val is not None:
            env_values[field_name] = val

    stream = os.environ.get("SUMMAWISE_STREAM")
    if stream is not None:
        env_values["streaming_enabled"] = stream.lower() in _TRUTHY
    chat = os.environ.get("OPENAI_USE_CHAT_COMPLETIONS")
    if chat is not None:
        env_values["openai_use_chat_completions"] = chat.lower() in _TRUTHY
    providers = _first_env("OPENROUTER_PROVIDERS")
    if providers is not None:
        env_values["openrouter_providers"] = [
            p.strip() for p in providers.split(",") if p.strip()
        ]

    # Load config file (lower priority than env vars)
    path = config_path or _DEFAULT_CONFIG_PATH
    file_values: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f)
            if isinstance(data, dict):
                file_values = data

    merged = {**file_values, **env_values}

    # Merge SUMMAWISE_CLI_<TOOL> binary overrides into local_tools
    tools_env: dict[str, Any] = {}
    for tool in ("claude", "codex", "gemini"):
        binary = _first_env(f"SUMMAWISE_CLI_{tool.upper()}")
        if binary is not None:
            tools_env[tool] = {"binary": binary}
    if tools_env:
        existing = merged.get("local_tools", {})
        if not isinstance(existing, dict):
            existing = {}
        for tool, override in tools_env.items():
            current = existing.get(tool, {})
            if not isinstance(current, dict):
                current = {}
            existing = {**existing, tool: {**current, **override}}
        merged["local_tools"] = existing

    return Settings(**merged)


# Singleton for convenience
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset cached settings (useful for testing)."""
    global _settings
    _settings = None
