"""Provider resolver — maps attempt descriptors to the right LLM provider."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from summawise.config import Settings, get_settings
from summawise.credentials import format_missing_credential
from summawise.errors import MissingCredentialError, ProviderError
from summawise.model_ids import parse_model_id
from summawise.models import AttemptDescriptor, GatewayAttempt, NativeAttempt

if TYPE_CHECKING:
    from summawise.providers.base import LLMProvider
    from summawise.providers.google import GoogleProvider
    from summawise.providers.openrouter import OpenRouterProvider

# Maps model ID prefix → (settings key field, settings base-url field, provider class import path)
_DIRECT_PROVIDERS: dict[str, tuple[str, str | None, str]] = {
    "openai": ("openai_api_key", "openai_base_url", "summawise.providers.openai.OpenAIProvider"),
    "anthropic": (
        "anthropic_api_key",
        None,
        "summawise.providers.anthropic.AnthropicProvider",
    ),
    "google": ("google_api_key", None, "summawise.providers.google.GoogleProvider"),
    "xai": ("xai_api_key", None, "summawise.providers.xai.XAIProvider"),
    "zai": ("zai_api_key", "zai_base_url", "summawise.providers.zai.ZAIProvider"),
}

_OPENAI_HOSTS = ("api.openai.com",)


def _import_class(dotted_path: str) -> type:
    """Import a class from a dotted module path."""
    module_path, class_name = dotted_path.rsplit(".", 1)
    import importlib

    module = importlib.import_module(module_path)
    return getattr(module, class_name)


def _is_custom_openai_base(base_url: str | None) -> bool:
    if not base_url:
        return False
    return urlparse(base_url).netloc not in _OPENAI_HOSTS


class ProviderResolver:
    """Resolves an attempt to ``(provider_instance, model_name_for_provider)``.

    Resolution logic:
      1. Gateway attempts always go to OpenRouter with the id as-is
      2. Native attempts pick the adapter from the id prefix (e.g. ``anthropic``
         from ``anthropic/claude-sonnet-4.5``) and strip the prefix
      3. A missing key raises ``MissingCredentialError``
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._http_client = http_client
        self._cache: dict[tuple[Any, ...], Any] = {}

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def resolve(
        self,
        attempt: AttemptDescriptor,
        model_id: str | None = None,
    ) -> tuple[LLMProvider, str]:
        """Return ``(provider, model_name)`` for *attempt*.

        *model_id* overrides the descriptor's id (e.g. after alias pinning).
        """
        if isinstance(attempt, GatewayAttempt):
            provider = self.gateway(attempt.allowed_providers, attempt=attempt)
            return provider, model_id or attempt.model_id
        if not isinstance(attempt, NativeAttempt):
            raise ProviderError(f"{attempt.user_model_id} does not use an HTTP provider")

        parsed = parse_model_id(model_id or attempt.model_id)
        key_field, base_field, class_path = _DIRECT_PROVIDERS[parsed.provider]
        api_key = attempt.api_key_override or getattr(self.settings, key_field, "")
        if not api_key:
            raise MissingCredentialError(
                format_missing_credential(attempt), credential=attempt.required_credential.value
            )

        base_url = attempt.base_url_override or (
            getattr(self.settings, base_field, "") if base_field else ""
        )
        kwargs: dict[str, Any] = {"http_client": self._http_client}
        if base_url:
            kwargs["base_url"] = base_url
        if parsed.provider == "openai":
            kwargs["use_responses"] = not (
                attempt.force_chat_completions
                or self.settings.openai_use_chat_completions
                or _is_custom_openai_base(base_url)
            )

        cls = _import_class(class_path)
        cache_key = (parsed.provider, api_key, tuple(sorted(kwargs.items(), key=str)))
        provider = self._get_or_create(cache_key, lambda: cls(api_key, **kwargs))
        return provider, parsed.model

    def gateway(
        self,
        allowed_providers: tuple[str, ...] | None = None,
        *,
        attempt: AttemptDescriptor | None = None,
    ) -> OpenRouterProvider:
        """The OpenRouter provider, restricted to *allowed_providers* if given."""
        from summawise.providers.openrouter import OpenRouterProvider

        settings = self.settings
        if not settings.openrouter_api_key:
            message = (
                format_missing_credential(attempt)
                if attempt is not None
                else "Missing OPENROUTER_API_KEY. Set the env var or choose a different --model."
            )
            raise MissingCredentialError(message, credential="OPENROUTER_API_KEY")

        only = allowed_providers or (
            tuple(settings.openrouter_providers) if settings.openrouter_providers else None
        )
        return self._get_or_create(
            ("openrouter", only),
            lambda: OpenRouterProvider(
                settings.openrouter_api_key,
                settings.openrouter_base_url,
                http_client=self._http_client,
                allowed_providers=only,
            ),
        )

    def google(self) -> GoogleProvider | None:
        """The Gemini provider used for ListModels, or ``None`` without a key."""
        from summawise.providers.google import GoogleProvider

        api_key = self.settings.google_api_key
        if not api_key:
            return None
        return self._get_or_create(
            ("google-models", api_key),
            lambda: GoogleProvider(api_key, http_client=self._http_client),
        )

    def _get_or_create(
        self,
        key: tuple[Any, ...],
        factory: Callable[[], Any],
    ) -> Any:
        if key not in self._cache:
            self._cache[key] = factory()
        return self._cache[key]
