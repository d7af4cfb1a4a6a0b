"""LLM provider adapters for SummaWise."""

from summawise.providers.base import LLMProvider
from summawise.providers.resolver import ProviderResolver

__all__ = ["LLMProvider", "ProviderResolver"]
