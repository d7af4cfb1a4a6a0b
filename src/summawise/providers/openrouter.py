"""OpenRouter provider — passes model IDs through as-is."""

from __future__ import annotations

from typing import Any

import httpx

from summawise.providers._openai_compat import OpenAICompatibleProvider
from summawise.providers.base import _shared_or_ephemeral

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter API (OpenAI-compatible) with optional provider allow-list."""

    name = "openrouter"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        *,
        allowed_providers: tuple[str, ...] | list[str] | None = None,
    ) -> None:
        super().__init__(api_key, base_url, http_client=http_client)
        self.allowed_providers = tuple(allowed_providers) if allowed_providers else None

    def _build_payload(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        payload = super()._build_payload(model, messages, temperature, max_tokens)
        if self.allowed_providers:
            payload["provider"] = {"only": list(self.allowed_providers)}
        return payload

    async def alist_endpoints(self, model: str, *, timeout: float = 30.0) -> list[str]:
        """Names of the upstream providers that serve *model*."""
        async with _shared_or_ephemeral(self._http_client, timeout) as client:
            resp = await client.get(
                f"{self.base_url}/models/{model}/endpoints",
                headers=self._auth_headers(),
                timeout=timeout,
            )
            resp.raise_for_status()
            data = resp.json().get("data", {}) or {}

        names: list[str] = []
        for endpoint in data.get("endpoints", []) or []:
            name = endpoint.get("provider_name") or endpoint.get("name")
            if isinstance(name, str) and name and name not in names:
                names.append(name)
        return names
