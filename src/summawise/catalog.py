"""ModelCatalog — token limits and pricing per model."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import httpx
import yaml

from summawise.config import Settings, get_settings
from summawise.models import ModelLimits, TokenUsage

logger = logging.getLogger(__name__)

# Gateway provider slugs that differ from the native prefix
_PROVIDER_ALIASES = {"x-ai": "xai", "z-ai": "zai"}


@lru_cache(maxsize=1)
def _load_bundled_limits() -> tuple[ModelLimits, ...]:
    """Load the bundled limits table from package data."""
    data_path = Path(__file__).parent / "data" / "model_limits.json"
    with open(data_path) as f:
        entries: list[dict[str, Any]] = json.load(f)["models"]
    return tuple(ModelLimits(**entry) for entry in entries)


def normalize_catalog_id(model_id: str) -> str:
    """Lower-case *model_id* and map gateway provider slugs to native ones."""
    model_lower = model_id.strip().lower()
    if model_lower.startswith("openrouter/"):
        model_lower = model_lower.removeprefix("openrouter/")
    provider, sep, rest = model_lower.partition("/")
    if sep and provider in _PROVIDER_ALIASES:
        return f"{_PROVIDER_ALIASES[provider]}/{rest}"
    return model_lower


def _parse_openrouter_model(data: dict[str, Any]) -> ModelLimits:
    """Parse an OpenRouter ``/models`` entry into ModelLimits."""
    pricing = data.get("pricing", {}) or {}
    # OpenRouter returns prices as strings in $/token; convert to $/M tokens
    try:
        input_price: float | None = float(pricing.get("prompt")) * 1_000_000
    except (ValueError, TypeError):
        input_price = None
    try:
        output_price: float | None = float(pricing.get("completion")) * 1_000_000
    except (ValueError, TypeError):
        output_price = None

    top_provider = data.get("top_provider", {}) or {}
    return ModelLimits(
        id=normalize_catalog_id(data.get("id", "")),
        max_input_tokens=data.get("context_length"),
        max_output_tokens=top_provider.get("max_completion_tokens"),
        input_price=input_price,
        output_price=output_price,
    )


class ModelCatalog:
    """Loads and queries per-model token limits and pricing.

    Sources, lowest priority first: the bundled table, an optional local YAML
    file (``limits_file``) and an optional OpenRouter ``/models`` refresh.
    """

    def __init__(
        self,
        entries: list[ModelLimits] | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings
        self._models: dict[str, ModelLimits] = {}
        if entries is None:
            self._merge(_load_bundled_limits())
            limits_file = (settings or get_settings()).limits_file
            if limits_file:
                self.load_from_file(limits_file)
        else:
            self._merge(entries)

    @property
    def models(self) -> dict[str, ModelLimits]:
        return dict(self._models)

    def _merge(self, entries: Any) -> None:
        for entry in entries:
            self._models[normalize_catalog_id(entry.id)] = entry

    def load_from_file(self, path: str | Path) -> int:
        """Merge entries from a local YAML file. Returns count of models loaded."""
        path = Path(path).expanduser()
        with open(path) as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict) or "models" not in data:
            raise ValueError(f"Invalid limits file: expected a 'models' key in {path}")

        entries = [ModelLimits(**entry) for entry in data["models"]]
        self._merge(entries)
        return len(entries)

    async def refresh_from_openrouter(self, http_client: httpx.AsyncClient | None = None) -> int:
        """Merge limits and pricing from the OpenRouter model list."""
        settings = self._settings or get_settings()
        headers: dict[str, str] = {}
        if settings.openrouter_api_key:
            headers["Authorization"] = f"Bearer {settings.openrouter_api_key}"

        url = f"{settings.openrouter_base_url}/models"
        if http_client is not None:
            resp = await http_client.get(url, headers=headers, timeout=30.0)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                resp = await client.get(url, headers=headers)
        resp.raise_for_status()

        entries = [_parse_openrouter_model(e) for e in resp.json().get("data", []) if e.get("id")]
        self._merge(entries)
        logger.info("Loaded %d models from OpenRouter", len(entries))
        return len(entries)

    def get(self, model_id: str) -> ModelLimits | None:
        """Exact match, else the longest catalog id that *model_id* extends."""
        key = normalize_catalog_id(model_id)
        if key in self._models:
            return self._models[key]
        best: ModelLimits | None = None
        best_len = 0
        for candidate, entry in self._models.items():
            if len(candidate) <= best_len:
                continue
            if key.startswith(candidate) and key[len(candidate)] in "-:@":
                best, best_len = entry, len(candidate)
        return best

    def max_output_tokens_for(self, model_id: str) -> int | None:
        entry = self.get(model_id)
        return entry.max_output_tokens if entry else None

    def max_input_tokens_for(self, model_id: str) -> int | None:
        entry = self.get(model_id)
        return entry.max_input_tokens if entry else None

    def pricing_for(self, model_id: str) -> tuple[float, float] | None:
        """``(input, output)`` price per million tokens, if known."""
        entry = self.get(model_id)
        if entry is None or entry.input_price is None or entry.output_price is None:
            return None
        return entry.input_price, entry.output_price

    def cap_output_tokens(self, model_id: str, requested: int | None) -> int | None:
        """Clamp *requested* to the published maximum output for *model_id*."""
        maximum = self.max_output_tokens_for(model_id)
        if maximum is None:
            return requested
        if requested is None:
            return maximum
        return min(requested, maximum)

    def cap_input_tokens(self, model_id: str) -> int | None:
        return self.max_input_tokens_for(model_id)

    def estimate_cost(self, model_id: str, usage: TokenUsage | None) -> float | None:
        """Cost in USD for *usage*, or ``None`` when pricing or usage is unknown."""
        pricing = self.pricing_for(model_id)
        if pricing is None or usage is None:
            return None
        if usage.prompt_tokens is None and usage.completion_tokens is None:
            return None
        input_price, output_price = pricing
        return (
            (usage.prompt_tokens or 0) * input_price
            + (usage.completion_tokens or 0) * output_price
        ) / 1_000_000

    def list_all(self) -> list[ModelLimits]:
        """All entries sorted by id."""
        return sorted(self._models.values(), key=lambda m: m.id)
