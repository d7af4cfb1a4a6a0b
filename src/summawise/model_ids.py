"""Model identifier parsing and effective-id resolution."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, NamedTuple

import httpx

from summawise.errors import ProviderError, SummaryError, classify_http_error
from summawise.models import AttemptDescriptor, NativeAttempt

logger = logging.getLogger(__name__)

NATIVE_PROVIDERS = ("openai", "anthropic", "google", "xai", "zai")

_UNSTABLE_MARKERS = ("preview", "exp", "alpha", "beta")

ListModelsFn = Callable[[], Awaitable[list[dict[str, Any]]]]


class ParsedModelId(NamedTuple):
    provider: str
    model: str
    canonical: str


class ModelResolution(NamedTuple):
    """Outcome of resolving an attempt's model id before execution."""

    model_id: str
    note: str | None = None
    force_streaming_off: bool = False


def parse_model_id(raw: str) -> ParsedModelId:
    """Split a gateway-style id (``provider/model``) into its parts."""
    text = raw.strip()
    provider, sep, model = text.partition("/")
    provider = provider.lower()
    if not sep or not model:
        raise ValueError(f"Invalid model id {raw!r}: expected 'provider/model'")
    if provider not in NATIVE_PROVIDERS:
        raise ValueError(
            f"Unknown provider {provider!r} in {raw!r}. "
            f"Expected one of: {', '.join(NATIVE_PROVIDERS)}"
        )
    return ParsedModelId(provider, model, f"{provider}/{model}")


def _normalize_google_id(name: str) -> str:
    return name.strip().removeprefix("models/")


def is_unstable_google_model(model: str) -> bool:
    lowered = model.lower()
    return any(marker in lowered for marker in _UNSTABLE_MARKERS) or lowered.startswith(
        "gemini-3"
    )


def _pick_suggestions(models: list[dict[str, Any]], limit: int = 5) -> list[str]:
    def score(model_id: str) -> int:
        lowered = model_id.lower()
        return (
            (0 if "flash" in lowered else 10)
            + (0 if "3" in lowered else 5)
            + (2 if "preview" in lowered else 0)
        )

    ids = [_normalize_google_id(m.get("name", "")) for m in models]
    ids = sorted((i for i in ids if i), key=score)
    return ids[: max(1, limit)]


async def resolve_google_model(
    requested: str,
    list_models: ListModelsFn,
) -> ModelResolution:
    """Pin an unstable Gemini id to what ListModels actually serves."""
    model = _normalize_google_id(requested)
    if not is_unstable_google_model(model):
        return ModelResolution(model)

    try:
        models = await list_models()
    except (httpx.HTTPError, SummaryError) as exc:
        cause = classify_http_error(exc, provider="Google ListModels")
        raise ProviderError(
            f"Cannot verify Google model availability for google/{model}. {cause}\n"
            f"Check GEMINI_API_KEY (or GOOGLE_GENERATIVE_AI_API_KEY / GOOGLE_API_KEY) "
            f"and that the Gemini API is enabled for this key."
        ) from exc

    by_id = {_normalize_google_id(m.get("name", "")): m for m in models}
    exact = by_id.get(model)
    stripped = model.removesuffix("-preview") if model.endswith("-preview") else None
    no_preview = by_id.get(stripped) if stripped else None

    candidate = exact or no_preview
    if candidate is None:
        suggestions = _pick_suggestions(models)
        hint = (
            f"Try one of: {', '.join(f'google/{s}' for s in suggestions)}"
            if suggestions
            else "Run ListModels to see available models for your key."
        )
        raise ProviderError(
            f"Google model google/{model} is not available via the Gemini API (v1beta) "
            f"for this API key. {hint}"
        )

    resolved = _normalize_google_id(candidate.get("name", model))
    methods = candidate.get("supportedGenerationMethods") or []
    force_streaming_off = bool(methods) and "streamGenerateContent" not in methods
    note = None
    if exact is None:
        note = f"Resolved google/{model} -> google/{resolved} via ListModels"
    return ModelResolution(resolved, note, force_streaming_off)


async def resolve_effective_model_id(
    attempt: AttemptDescriptor,
    *,
    list_google_models: ListModelsFn | None = None,
) -> ModelResolution:
    """Return the model id to call for *attempt*.

    Identity for everything except native Google attempts, whose preview and
    experimental aliases are checked against ListModels.
    """
    model_id = attempt.model_id or ""
    if not isinstance(attempt, NativeAttempt):
        return ModelResolution(model_id)

    parsed = parse_model_id(model_id)
    if parsed.provider != "google" or list_google_models is None:
        return ModelResolution(parsed.canonical)

    resolution = await resolve_google_model(parsed.model, list_google_models)
    if resolution.note:
        logger.info(resolution.note)
    return resolution._replace(model_id=f"google/{resolution.model_id}")
