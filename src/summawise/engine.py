"""SummaryEngine — runs a single model attempt to completion."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from summawise import tokenizer
from summawise.catalog import ModelCatalog
from summawise.config import Settings, get_settings
from summawise.credentials import detect_credentials
from summawise.errors import (
    EmptyResultError,
    InputTokenLimitError,
    ProviderError,
    SummaryError,
    UnsupportedAttachmentError,
)
from summawise.generate import RetryNotice, generate_text, stream_text
from summawise.local_tools import LocalToolRunner, is_tool_disabled
from summawise.model_ids import ModelResolution, parse_model_id, resolve_effective_model_id
from summawise.models import (
    AttemptDescriptor,
    AttemptResult,
    DispatchEvent,
    DispatchEventKind,
    GatewayAttempt,
    LocalTool,
    LocalToolAttempt,
    ModelMeta,
    NativeAttempt,
    Prompt,
    RequiredCredential,
    TokenUsage,
    UsagePurpose,
    UsageRecord,
)
from summawise.output import OutputSink
from summawise.providers import ProviderResolver
from summawise.providers.base import LLMProvider
from summawise.streaming import (
    StreamAccumulator,
    is_google_streaming_unsupported_error,
    is_streaming_timeout_error,
)

logger = logging.getLogger(__name__)

_LOCAL_TOOL_PROVIDER = "cli"


@dataclass
class LocalToolOptions:
    """Per-run settings for local-tool attempts."""

    prompt_override: str | None = None
    cwd: str | None = None
    extra_args: dict[LocalTool, list[str]] = field(default_factory=dict)
    allow_tools: bool = False


@dataclass
class _PreparedCall:
    """Everything needed to call one resolved model."""

    attempt: AttemptDescriptor
    provider: LLMProvider
    provider_model: str
    catalog_id: str
    messages: list[dict[str, Any]]
    max_output_tokens: int | None
    model_meta: ModelMeta
    purpose: UsagePurpose
    force_streaming_off: bool = False


class SummaryEngine:
    """Executes attempt descriptors and records usage for every call made."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        catalog: ModelCatalog | None = None,
        resolver: ProviderResolver | None = None,
        tool_runner: LocalToolRunner | None = None,
        count_tokens: Callable[[str], int] | None = None,
        credentials: dict[RequiredCredential, bool] | None = None,
        on_event: Callable[[DispatchEvent], None] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.catalog = catalog or ModelCatalog(settings=self.settings)
        self.resolver = resolver or ProviderResolver(self.settings, http_client=http_client)
        self.tool_runner = tool_runner or LocalToolRunner(self.settings.local_tools)
        self.count_tokens = count_tokens or tokenizer.count_tokens
        self.on_event = on_event
        self.usage_records: list[UsageRecord] = []
        self._credentials = credentials

    # -- Credentials and events ----------------------------------------------

    @property
    def credentials(self) -> dict[RequiredCredential, bool]:
        if self._credentials is None:
            self._credentials = detect_credentials(self.settings)
        return self._credentials

    def has_credential(self, attempt: AttemptDescriptor) -> bool:
        if isinstance(attempt, NativeAttempt) and attempt.api_key_override:
            return True
        return self.credentials.get(attempt.required_credential, False)

    def emit(
        self,
        kind: DispatchEventKind,
        attempt: AttemptDescriptor,
        *,
        reason: str = "",
        message: str = "",
    ) -> None:
        if self.on_event is None:
            return
        self.on_event(
            DispatchEvent(
                kind=kind, attempt_id=attempt.user_model_id, reason=reason, message=message
            )
        )

    def _record(
        self,
        provider: str,
        model_id: str,
        usage: TokenUsage | None,
        purpose: UsagePurpose,
        cost_usd: float | None = None,
    ) -> None:
        if cost_usd is None:
            cost_usd = self.catalog.estimate_cost(model_id, usage)
        self.usage_records.append(
            UsageRecord(
                provider=provider,
                model_id=model_id,
                usage=usage,
                cost_usd=cost_usd,
                purpose=purpose,
            )
        )

    # -- Entry point ------------------------------------------------------------

    async def run_attempt(
        self,
        attempt: AttemptDescriptor,
        prompt: Prompt,
        *,
        allow_streaming: bool = True,
        sink: OutputSink | None = None,
        local_tool_options: LocalToolOptions | None = None,
        purpose: UsagePurpose = UsagePurpose.SUMMARY,
    ) -> AttemptResult:
        """Run *attempt* once (with buffered retries and streaming fallback)."""
        if isinstance(attempt, LocalToolAttempt):
            return await self._run_local_tool(attempt, prompt, local_tool_options, purpose)

        try:
            call = await self._prepare_call(attempt, prompt, purpose)
            streaming = (
                allow_streaming
                and self.settings.streaming_enabled
                and not call.force_streaming_off
                and call.provider.supports_streaming(call.messages)
            )
            if streaming:
                return await self._run_streamed(call, sink)
            return await self._run_buffered(call)
        except UnsupportedAttachmentError as exc:
            media = exc.media_type or "this attachment type"
            raise UnsupportedAttachmentError(
                f"{exc} Choose a model that accepts {media} input.", media_type=exc.media_type
            ) from exc

    # -- Native / gateway ---------------------------------------------------

    async def _resolve_model(self, attempt: AttemptDescriptor) -> ModelResolution:
        list_google_models = None
        if isinstance(attempt, NativeAttempt) and parse_model_id(attempt.model_id).provider == (
            "google"
        ):
            google = self.resolver.google()
            if google is not None:
                list_google_models = google.alist_models
        resolution = await resolve_effective_model_id(
            attempt, list_google_models=list_google_models
        )
        if resolution.note:
            self.emit(DispatchEventKind.NOTE, attempt, message=resolution.note)
        return resolution

    async def _prepare_call(
        self,
        attempt: AttemptDescriptor,
        prompt: Prompt,
        purpose: UsagePurpose,
    ) -> _PreparedCall:
        resolution = await self._resolve_model(attempt)
        provider, provider_model = self.resolver.resolve(attempt, resolution.model_id)
        catalog_id = resolution.model_id

        max_output_tokens = self.catalog.cap_output_tokens(
            catalog_id, self.settings.max_output_tokens
        )
        max_input_tokens = self.catalog.cap_input_tokens(catalog_id)
        if max_input_tokens and prompt.is_text_only:
            token_count = self.count_tokens(prompt.full_text())
            if token_count > max_input_tokens:
                raise InputTokenLimitError(token_count, max_input_tokens)

        if isinstance(attempt, GatewayAttempt):
            meta = ModelMeta(provider=provider.name, canonical_id=attempt.user_model_id)
        else:
            parsed = parse_model_id(resolution.model_id)
            meta = ModelMeta(provider=parsed.provider, canonical_id=parsed.canonical)

        return _PreparedCall(
            attempt=attempt,
            provider=provider,
            provider_model=provider_model,
            catalog_id=catalog_id,
            messages=prompt.to_messages(),
            max_output_tokens=max_output_tokens,
            model_meta=meta,
            purpose=purpose,
            force_streaming_off=resolution.force_streaming_off,
        )

    def _on_retry(self, attempt: AttemptDescriptor, notice: RetryNotice) -> None:
        self.emit(
            DispatchEventKind.RETRY,
            attempt,
            reason=notice.reason,
            message=(
                f"LLM {notice.reason} for {notice.model_id}; "
                f"retry {notice.attempt}/{notice.retries} in {notice.delay:.1f}s"
            ),
        )

    async def _generate(self, call: _PreparedCall) -> str:
        """One buffered call with retries; returns the trimmed, non-empty text."""
        try:
            result = await generate_text(
                call.provider,
                call.provider_model,
                call.messages,
                max_output_tokens=call.max_output_tokens,
                timeout=self.settings.timeout,
                retries=self.settings.retries,
                backoff=self.settings.retry_backoff,
                on_retry=lambda notice: self._on_retry(call.attempt, notice),
            )
        except EmptyResultError as exc:
            usage = exc.usage if isinstance(exc.usage, TokenUsage) else None
            self._record(call.provider.name, call.catalog_id, usage, call.purpose)
            raise
        self._record(call.provider.name, call.catalog_id, result.usage, call.purpose)
        summary = result.text.strip()
        if not summary:
            raise EmptyResultError(provider=call.provider.name, model_id=call.catalog_id)
        return summary

    def _result(self, call: _PreparedCall, text: str, already_emitted: bool) -> AttemptResult:
        return AttemptResult(
            summary_text=text,
            already_emitted=already_emitted,
            model_meta=call.model_meta,
            effective_max_output_tokens=call.max_output_tokens,
        )

    async def _run_buffered(self, call: _PreparedCall) -> AttemptResult:
        return self._result(call, await self._generate(call), already_emitted=False)

    async def _run_streamed(self, call: _PreparedCall, sink: OutputSink | None) -> AttemptResult:
        try:
            stream = await stream_text(
                call.provider,
                call.provider_model,
                call.messages,
                max_output_tokens=call.max_output_tokens,
                timeout=self.settings.timeout,
            )
        except SummaryError as exc:
            if is_streaming_timeout_error(exc):
                message = (
                    f"Streaming timed out for {call.model_meta.canonical_id}; "
                    f"falling back to non-streaming."
                )
            elif call.provider.name == "google" and is_google_streaming_unsupported_error(exc):
                message = (
                    f"Google model {call.model_meta.canonical_id} rejected "
                    f"streamGenerateContent; falling back to non-streaming."
                )
            else:
                raise
            logger.info(message)
            self.emit(
                DispatchEventKind.FALLBACK, call.attempt, reason=exc.kind.value, message=message
            )
            return await self._run_buffered(call)

        accumulator = StreamAccumulator(
            config=self.settings.stream_merge, last_error=stream.last_error
        )
        async for delta in stream:
            appended = accumulator.feed(delta)
            if appended and sink is not None:
                sink.on_appended(appended)
        summary = accumulator.finish()
        if sink is not None:
            sink.on_done(summary, accumulator.raw)

        self._record(call.provider.name, call.catalog_id, stream.usage, call.purpose)

        if not summary:
            last = accumulator.last_error()
            if last is not None:
                raise EmptyResultError(
                    str(last), provider=call.provider.name, model_id=call.catalog_id
                ) from last
            raise EmptyResultError(provider=call.provider.name, model_id=call.catalog_id)

        return self._result(
            call, summary, already_emitted=sink is not None and sink.writes_output
        )

    # -- Local tools ----------------------------------------------------------

    async def _run_local_tool(
        self,
        attempt: LocalToolAttempt,
        prompt: Prompt,
        options: LocalToolOptions | None,
        purpose: UsagePurpose,
    ) -> AttemptResult:
        options = options or LocalToolOptions()
        if not prompt.is_text_only and not options.prompt_override:
            raise UnsupportedAttachmentError(
                "Local tools require a text prompt (no binary attachments)."
            )
        tool = attempt.local_tool
        if is_tool_disabled(tool, self.settings.local_tools):
            raise ProviderError(
                f"Local tool {tool.value} is disabled by local_tools configuration. "
                f"Update your config to enable it."
            )

        result = await self.tool_runner.run(
            tool,
            options.prompt_override or prompt.full_text(),
            model=attempt.local_tool_model,
            timeout=self.settings.timeout,
            cwd=options.cwd,
            extra_args=options.extra_args.get(tool),
            allow_tools=options.allow_tools,
        )
        if result.usage is not None or result.cost_usd is not None:
            self.usage_records.append(
                UsageRecord(
                    provider=_LOCAL_TOOL_PROVIDER,
                    model_id=attempt.user_model_id,
                    usage=result.usage,
                    cost_usd=result.cost_usd,
                    purpose=purpose,
                )
            )

        summary = result.text.strip()
        if not summary:
            raise EmptyResultError(
                "Local tool returned an empty summary",
                provider=_LOCAL_TOOL_PROVIDER,
                model_id=attempt.user_model_id,
            )
        return AttemptResult(
            summary_text=summary,
            already_emitted=False,
            model_meta=ModelMeta(
                provider=_LOCAL_TOOL_PROVIDER, canonical_id=attempt.user_model_id
            ),
            effective_max_output_tokens=None,
        )
