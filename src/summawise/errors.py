"""Error taxonomy for model dispatch."""

from __future__ import annotations

from enum import Enum

import httpx

_BODY_SNIPPET_CHARS = 300

_NO_ALLOWED_PROVIDERS_MARKERS = (
    "no allowed providers",
    "no endpoints found matching your data policy",
)


class ErrorKind(str, Enum):
    """Classification of a failed attempt."""

    MISSING_CREDENTIAL = "missing-credential"
    UNSUPPORTED_ATTACHMENT = "unsupported-attachment"
    INPUT_TOKEN_LIMIT_EXCEEDED = "input-token-limit-exceeded"
    EMPTY_RESULT = "empty-result"
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider-error"
    NO_ALLOWED_PROVIDERS = "no-allowed-providers"


class SummaryError(Exception):
    """Base class for all dispatch and attempt failures."""

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR


class MissingCredentialError(SummaryError):
    """The attempt's API key or local tool is not available."""

    kind = ErrorKind.MISSING_CREDENTIAL

    def __init__(self, message: str, credential: str | None = None) -> None:
        self.credential = credential
        super().__init__(message)


class UnsupportedAttachmentError(SummaryError):
    """The provider cannot accept one of the prompt's attachments."""

    kind = ErrorKind.UNSUPPORTED_ATTACHMENT

    def __init__(self, message: str, media_type: str | None = None) -> None:
        self.media_type = media_type
        super().__init__(message)


class InputTokenLimitError(SummaryError):
    """Pre-flight rejection: the prompt is larger than the model accepts."""

    kind = ErrorKind.INPUT_TOKEN_LIMIT_EXCEEDED

    def __init__(self, token_count: int, limit: int) -> None:
        self.token_count = token_count
        self.limit = limit
        super().__init__(
            f"Input token count ({format_compact_count(token_count)}) exceeds model input "
            f"limit ({format_compact_count(limit)}). Tokenized with the GPT tokenizer; "
            f"prompt included."
        )


class EmptyResultError(SummaryError):
    """The model (or tool) returned no text."""

    kind = ErrorKind.EMPTY_RESULT

    def __init__(
        self,
        message: str = "LLM returned an empty summary",
        usage: object = None,
        provider: str | None = None,
        model_id: str | None = None,
    ) -> None:
        self.usage = usage
        self.provider = provider
        self.model_id = model_id
        super().__init__(message)


class LLMTimeoutError(SummaryError):
    """The request did not complete within the configured timeout."""

    kind = ErrorKind.TIMEOUT


class ProviderError(SummaryError):
    """Opaque provider failure (HTTP error, malformed response, tool exit code)."""

    kind = ErrorKind.PROVIDER_ERROR

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class NoAllowedProvidersError(ProviderError):
    """The gateway has no provider allowed to serve the requested model."""

    kind = ErrorKind.NO_ALLOWED_PROVIDERS


class AllAttemptsFailedError(SummaryError):
    """No attempt produced a summary."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PROVIDER_ERROR,
        tried: list[str] | None = None,
        missing: list[str] | None = None,
    ) -> None:
        self.kind = kind
        self.tried = tried or []
        self.missing = missing or []
        super().__init__(message)


def format_compact_count(value: int) -> str:
    """Format a token count as e.g. ``1.2M``, ``128k`` or ``950``."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}".rstrip("0").rstrip(".") + "M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}".rstrip("0").rstrip(".") + "k"
    return str(value)


def is_no_allowed_providers_message(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _NO_ALLOWED_PROVIDERS_MARKERS)


def classify_http_error(exc: Exception, *, provider: str = "") -> SummaryError:
    """Translate an httpx exception into the dispatch error taxonomy."""
    label = f"{provider} " if provider else ""
    if isinstance(exc, httpx.TimeoutException):
        return LLMTimeoutError("LLM request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        try:
            body = exc.response.text
        except httpx.ResponseNotRead:
            body = ""
        snippet = body.strip()[:_BODY_SNIPPET_CHARS]
        message = f"{label}request failed (HTTP {status})"
        if snippet:
            message = f"{message}: {snippet}"
        if is_no_allowed_providers_message(body):
            return NoAllowedProvidersError(message, status_code=status, body=body)
        return ProviderError(message, status_code=status, body=body)
    if isinstance(exc, httpx.HTTPError):
        return ProviderError(f"{label}request failed: {exc}")
    if isinstance(exc, SummaryError):
        return exc
    return ProviderError(str(exc))
