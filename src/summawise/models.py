"""Pydantic data models for SummaWise."""

from __future__ import annotations

import base64
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Transport(str, Enum):
    """Mechanism used to reach a model."""

    NATIVE = "native"
    GATEWAY = "gateway"
    LOCAL_TOOL = "local-tool"


class RequiredCredential(str, Enum):
    """Credential or local tool an attempt needs before it can run."""

    OPENAI_API_KEY = "OPENAI_API_KEY"
    ANTHROPIC_API_KEY = "ANTHROPIC_API_KEY"
    GEMINI_API_KEY = "GEMINI_API_KEY"
    XAI_API_KEY = "XAI_API_KEY"
    Z_AI_API_KEY = "Z_AI_API_KEY"
    OPENROUTER_API_KEY = "OPENROUTER_API_KEY"
    CLI_CLAUDE = "CLI_CLAUDE"
    CLI_CODEX = "CLI_CODEX"
    CLI_GEMINI = "CLI_GEMINI"


class LocalTool(str, Enum):
    """Local command-line tools that can produce a summary."""

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"


class SelectionMode(str, Enum):
    """How the dispatch loop reacts to a failed attempt."""

    FIXED = "fixed"
    AUTO = "auto"


class UsagePurpose(str, Enum):
    """Why a model call was made."""

    SUMMARY = "summary"
    MARKDOWN_CONVERSION = "markdown-conversion"


class DispatchEventKind(str, Enum):
    """Kinds of advisory notices emitted while dispatching."""

    SKIP = "skip"
    FAILURE = "failure"
    RETRY = "retry"
    FALLBACK = "fallback"
    NOTE = "note"


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


class Attachment(BaseModel):
    """A binary or text payload sent alongside the prompt text."""

    model_config = ConfigDict(frozen=True)

    media_type: str = Field(description="MIME type, e.g. 'image/png' or 'application/pdf'")
    data: bytes = Field(repr=False)
    filename: str | None = None

    @property
    def kind(self) -> str:
        if self.media_type.startswith("image/"):
            return "image"
        if self.media_type.startswith("text/"):
            return "text"
        return "document"

    @property
    def is_binary(self) -> bool:
        return self.kind != "text"

    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


class Prompt(BaseModel):
    """Immutable prompt: user text plus zero or more attachments."""

    model_config = ConfigDict(frozen=True)

    user_text: str
    system: str | None = None
    attachments: tuple[Attachment, ...] = ()

    @property
    def is_text_only(self) -> bool:
        return not any(a.is_binary for a in self.attachments)

    def full_text(self) -> str:
        """All text the model will read (system, user text, text attachments)."""
        parts = [self.system or "", self.user_text]
        parts.extend(a.data.decode("utf-8", errors="replace") for a in self.attachments
                     if not a.is_binary)
        return "\n\n".join(p for p in parts if p)

    def to_messages(self) -> list[dict[str, Any]]:
        """Render OpenAI-style chat messages (content parts when attachments exist)."""
        messages: list[dict[str, Any]] = []
        if self.system:
            messages.append({"role": "system", "content": self.system})

        if not self.attachments:
            messages.append({"role": "user", "content": self.user_text})
            return messages

        parts: list[dict[str, Any]] = [{"type": "text", "text": self.user_text}]
        for attachment in self.attachments:
            if attachment.kind == "text":
                parts.append(
                    {"type": "text", "text": attachment.data.decode("utf-8", errors="replace")}
                )
            elif attachment.kind == "image":
                parts.append({"type": "image_url", "image_url": {"url": attachment.data_url()}})
            else:
                parts.append(
                    {
                        "type": "file",
                        "file": {
                            "filename": attachment.filename or "attachment",
                            "file_data": attachment.data_url(),
                        },
                    }
                )
        messages.append({"role": "user", "content": parts})
        return messages


# ---------------------------------------------------------------------------
# Attempt descriptors (tagged union on ``transport``)
# ---------------------------------------------------------------------------


class _AttemptBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_model_id: str = Field(description="Display/log identity, stable across remapping")
    required_credential: RequiredCredential


class NativeAttempt(_AttemptBase):
    """Direct provider API call."""

    transport: Literal["native"] = "native"
    model_id: str = Field(description="Gateway-style id, e.g. 'openai/gpt-5-mini'")
    base_url_override: str | None = None
    api_key_override: str | None = Field(default=None, repr=False)
    force_chat_completions: bool = False

    @model_validator(mode="after")
    def _check_model_id(self) -> NativeAttempt:
        if not self.model_id.strip():
            raise ValueError("native attempts require a model_id")
        return self


class GatewayAttempt(_AttemptBase):
    """Call routed through the OpenRouter gateway."""

    transport: Literal["gateway"] = "gateway"
    model_id: str = Field(description="Gateway model slug, e.g. 'anthropic/claude-sonnet-4.5'")
    required_credential: RequiredCredential = RequiredCredential.OPENROUTER_API_KEY
    allowed_providers: tuple[str, ...] | None = None
    force_chat_completions: bool = True

    @model_validator(mode="after")
    def _check_model_id(self) -> GatewayAttempt:
        if not self.model_id.strip():
            raise ValueError("gateway attempts require a model_id")
        return self


class LocalToolAttempt(_AttemptBase):
    """Summary produced by a local command-line tool."""

    transport: Literal["local-tool"] = "local-tool"
    local_tool: LocalTool
    local_tool_model: str | None = None

    @property
    def model_id(self) -> None:
        return None


AttemptDescriptor = Annotated[
    Union[NativeAttempt, GatewayAttempt, LocalToolAttempt],
    Field(discriminator="transport"),
]


# ---------------------------------------------------------------------------
# Results and telemetry
# ---------------------------------------------------------------------------


class EffectiveCallParams(BaseModel):
    """Per-attempt call parameters derived before execution."""

    model_id: str
    streaming_allowed: bool = False
    max_output_tokens: int | None = None
    max_input_tokens: int | None = None
    note: str | None = None


class TokenUsage(BaseModel):
    """Token usage reported by a provider (fields may be unknown)."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @classmethod
    def from_openai(cls, raw: dict[str, Any] | None) -> TokenUsage | None:
        """Normalize an OpenAI-format usage dict; ``None`` when nothing is known."""
        if not isinstance(raw, dict):
            return None

        def _num(*keys: str) -> int | None:
            for key in keys:
                value = raw.get(key)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return int(value)
            return None

        prompt = _num("prompt_tokens", "input_tokens")
        completion = _num("completion_tokens", "output_tokens")
        total = _num("total_tokens")
        if total is None and prompt is not None and completion is not None:
            total = prompt + completion
        if prompt is None and completion is None and total is None:
            return None
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class UsageRecord(BaseModel):
    """One provider or tool call that reached its backend."""

    provider: str
    model_id: str
    usage: TokenUsage | None = None
    cost_usd: float | None = None
    purpose: UsagePurpose = UsagePurpose.SUMMARY


class ModelMeta(BaseModel):
    """Which provider/model produced the summary."""

    provider: str
    canonical_id: str


class AttemptResult(BaseModel):
    """Successful outcome of a single attempt."""

    summary_text: str
    already_emitted: bool = False
    model_meta: ModelMeta
    effective_max_output_tokens: int | None = None


class DispatchEvent(BaseModel):
    """Advisory diagnostic notice; never affects control flow."""

    kind: DispatchEventKind
    attempt_id: str
    reason: str = ""
    message: str = ""


class DispatchSuccess(BaseModel):
    """First attempt that produced a summary."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    result: AttemptResult
    used_attempt: AttemptDescriptor


class DispatchFailure(BaseModel):
    """Every attempt was skipped or failed."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    last_error: BaseException | None = None
    tried: list[AttemptDescriptor] = Field(default_factory=list)
    missing_credentials: set[RequiredCredential] = Field(default_factory=set)
    saw_no_allowed_providers: bool = False


DispatchOutcome = Union[DispatchSuccess, DispatchFailure]


class DispatchResult(BaseModel):
    """Caller-facing result of :meth:`Dispatcher.dispatch`."""

    summary_text: str
    already_emitted: bool = False
    model_meta: ModelMeta
    used_attempt: AttemptDescriptor
    usage_records: list[UsageRecord] = Field(default_factory=list)

    @property
    def total_cost(self) -> float:
        return sum(r.cost_usd or 0.0 for r in self.usage_records)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ModelLimits(BaseModel):
    """Published token limits and pricing for one model (prices in $/M tokens)."""

    id: str = Field(description="Gateway-style id, e.g. 'openai/gpt-5-mini'")
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None
    input_price: float | None = None
    output_price: float | None = None

    @property
    def provider(self) -> str:
        return self.id.split("/", 1)[0] if "/" in self.id else ""


# ---------------------------------------------------------------------------
# Daemon API
# ---------------------------------------------------------------------------


class SummarizeRequest(BaseModel):
    """Body of ``POST /v1/summarize``."""

    text: str = Field(min_length=1)
    system: str | None = None
    models: list[str] = Field(min_length=1, description="Model specs, in priority order")
    mode: SelectionMode | None = Field(
        default=None, description="Defaults to fixed for one model, auto otherwise"
    )
    stream: bool = False
    max_output_tokens: int | None = None


class SummarizeResponse(BaseModel):
    summary: str
    model: str
    provider: str
    already_emitted: bool = False
    usage: list[UsageRecord] = Field(default_factory=list)
    total_cost: float = 0.0
