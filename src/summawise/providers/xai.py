"""xAI (Grok) provider."""

from __future__ import annotations

import httpx

from summawise.providers._openai_compat import OpenAICompatibleProvider

DEFAULT_BASE_URL = "https://api.x.ai/v1"


class XAIProvider(OpenAICompatibleProvider):
    """xAI API (OpenAI-compatible, images only)."""

    name = "xai"
    supports_files = False

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, base_url, http_client=http_client)
