"""Dispatcher — runs attempts in order until one produces a summary."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import httpx

from summawise.credentials import format_missing_credential
from summawise.engine import LocalToolOptions, SummaryEngine
from summawise.errors import (
    AllAttemptsFailedError,
    ErrorKind,
    MissingCredentialError,
    NoAllowedProvidersError,
    SummaryError,
)
from summawise.models import (
    AttemptDescriptor,
    DispatchEvent,
    DispatchEventKind,
    DispatchFailure,
    DispatchOutcome,
    DispatchResult,
    DispatchSuccess,
    GatewayAttempt,
    Prompt,
    SelectionMode,
    UsagePurpose,
)
from summawise.output import OutputSink

logger = logging.getLogger(__name__)

_MAX_TRIED_LISTED = 5


def format_tried(model_ids: list[str]) -> str:
    """Comma list of model ids, truncated after five entries."""
    if len(model_ids) <= _MAX_TRIED_LISTED:
        return ", ".join(model_ids)
    shown = ", ".join(model_ids[:_MAX_TRIED_LISTED])
    return f"{shown} (+{len(model_ids) - _MAX_TRIED_LISTED} more)"


class Dispatcher:
    """Walks an ordered list of attempts.

    ``fixed`` mode stops at the first failure (including a missing
    credential). ``auto`` mode skips attempts without credentials and falls
    through failures to the next attempt. The first success wins in both.
    """

    def __init__(
        self,
        engine: SummaryEngine | None = None,
        *,
        on_event: Callable[[DispatchEvent], None] | None = None,
    ) -> None:
        self.engine = engine or SummaryEngine(on_event=on_event)
        if on_event is not None and self.engine.on_event is None:
            self.engine.on_event = on_event

    async def run_attempts(
        self,
        attempts: list[AttemptDescriptor],
        prompt: Prompt,
        mode: SelectionMode = SelectionMode.AUTO,
        *,
        allow_streaming: bool = True,
        sink: OutputSink | None = None,
        local_tool_options: LocalToolOptions | None = None,
        purpose: UsagePurpose = UsagePurpose.SUMMARY,
    ) -> DispatchOutcome:
        failure = DispatchFailure()

        for attempt in attempts:
            failure.tried.append(attempt)

            if not self.engine.has_credential(attempt):
                message = format_missing_credential(attempt)
                if mode is SelectionMode.FIXED:
                    raise MissingCredentialError(
                        message, credential=attempt.required_credential.value
                    )
                failure.missing_credentials.add(attempt.required_credential)
                logger.info("Skipping %s: %s", attempt.user_model_id, message)
                self.engine.emit(
                    DispatchEventKind.SKIP,
                    attempt,
                    reason=ErrorKind.MISSING_CREDENTIAL.value,
                    message=message,
                )
                continue

            try:
                result = await self.engine.run_attempt(
                    attempt,
                    prompt,
                    allow_streaming=allow_streaming,
                    sink=sink,
                    local_tool_options=local_tool_options,
                    purpose=purpose,
                )
            except Exception as exc:
                if mode is SelectionMode.FIXED:
                    raise
                if isinstance(exc, MissingCredentialError):
                    failure.missing_credentials.add(attempt.required_credential)
                    self.engine.emit(
                        DispatchEventKind.SKIP, attempt, reason=exc.kind.value, message=str(exc)
                    )
                    continue
                failure.last_error = exc
                if isinstance(exc, NoAllowedProvidersError):
                    failure.saw_no_allowed_providers = True
                kind = exc.kind if isinstance(exc, SummaryError) else ErrorKind.PROVIDER_ERROR
                logger.info("Model %s failed, trying next: %s", attempt.user_model_id, exc)
                self.engine.emit(
                    DispatchEventKind.FAILURE, attempt, reason=kind.value, message=str(exc)
                )
                continue

            return DispatchSuccess(result=result, used_attempt=attempt)

        return failure

    async def dispatch(
        self,
        attempts: list[AttemptDescriptor],
        prompt: Prompt,
        mode: SelectionMode = SelectionMode.AUTO,
        *,
        allow_streaming: bool = True,
        sink: OutputSink | None = None,
        local_tool_options: LocalToolOptions | None = None,
        purpose: UsagePurpose = UsagePurpose.SUMMARY,
    ) -> DispatchResult:
        """Run *attempts* and return the first summary, or raise ``AllAttemptsFailedError``."""
        outcome = await self.run_attempts(
            attempts,
            prompt,
            mode,
            allow_streaming=allow_streaming,
            sink=sink,
            local_tool_options=local_tool_options,
            purpose=purpose,
        )
        if isinstance(outcome, DispatchSuccess):
            return DispatchResult(
                summary_text=outcome.result.summary_text,
                already_emitted=outcome.result.already_emitted,
                model_meta=outcome.result.model_meta,
                used_attempt=outcome.used_attempt,
                usage_records=list(self.engine.usage_records),
            )

        error = await self._exhaustion_error(outcome)
        if outcome.last_error is not None:
            raise error from outcome.last_error
        raise error

    def dispatch_sync(
        self,
        attempts: list[AttemptDescriptor],
        prompt: Prompt,
        mode: SelectionMode = SelectionMode.AUTO,
        **kwargs: object,
    ) -> DispatchResult:
        """Blocking wrapper around :meth:`dispatch` (not for use inside an event loop)."""
        return asyncio.run(self.dispatch(attempts, prompt, mode, **kwargs))  # type: ignore[arg-type]

    async def _exhaustion_error(self, failure: DispatchFailure) -> AllAttemptsFailedError:
        tried = [a.user_model_id for a in failure.tried]
        missing = sorted(c.value for c in failure.missing_credentials)

        if failure.last_error is None:
            if not failure.tried:
                return AllAttemptsFailedError("No models to try.", tried=tried)
            return AllAttemptsFailedError(
                f"Missing {', '.join(missing)} for models: {format_tried(tried)}. "
                f"Set the env var(s) or choose a different --model.",
                kind=ErrorKind.MISSING_CREDENTIAL,
                tried=tried,
                missing=missing,
            )

        last = failure.last_error
        message = str(last) or type(last).__name__
        if failure.saw_no_allowed_providers:
            hint = await self._allowed_providers_hint(failure.tried)
            if hint:
                message = f"{message}\n{hint}"
        kind = last.kind if isinstance(last, SummaryError) else ErrorKind.PROVIDER_ERROR
        return AllAttemptsFailedError(
            f"{message} (tried: {format_tried(tried)})",
            kind=kind,
            tried=tried,
            missing=missing,
        )

    async def _allowed_providers_hint(self, attempts: list[AttemptDescriptor]) -> str:
        """Per gateway model, which upstream providers could serve it."""
        settings = self.engine.settings
        lines: list[str] = []
        for attempt in attempts:
            if not isinstance(attempt, GatewayAttempt):
                continue
            try:
                gateway = self.engine.resolver.gateway()
                endpoints = await gateway.alist_endpoints(
                    attempt.model_id, timeout=min(settings.timeout, 30.0)
                )
            except (httpx.HTTPError, SummaryError) as exc:
                logger.debug("Could not list endpoints for %s: %s", attempt.model_id, exc)
                continue
            if endpoints:
                lines.append(f"  {attempt.model_id}: {', '.join(endpoints)}")
        if not lines:
            return ""
        allowed = attempts_allowed(attempts) or settings.openrouter_providers or []
        header = "OpenRouter has no allowed provider for these models"
        if allowed:
            header += f" (allowed: {', '.join(allowed)})"
        return header + ". Providers that serve them:\n" + "\n".join(lines)


def attempts_allowed(attempts: list[AttemptDescriptor]) -> list[str]:
    """Union of the allowed-provider lists carried by gateway attempts."""
    allowed: list[str] = []
    for attempt in attempts:
        if isinstance(attempt, GatewayAttempt) and attempt.allowed_providers:
            allowed.extend(p for p in attempt.allowed_providers if p not in allowed)
    return allowed
