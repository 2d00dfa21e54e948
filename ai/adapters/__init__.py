"""Adapters layer providing response caching, provider backends and routing."""

from __future__ import annotations

from .cache import ResponseCache, normalize_key, similarity
from .providers import (
    BaseProvider,
    ClaudeProvider,
    OllamaProvider,
    OpenAIProvider,
    create_provider,
    extract_json,
)
from .router import ProviderRouter

__all__ = [
    "ResponseCache",
    "normalize_key",
    "similarity",
    "BaseProvider",
    "ClaudeProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "create_provider",
    "extract_json",
    "ProviderRouter",
]
