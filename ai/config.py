"""Orchestrator configuration.

Provider settings are a closed tagged union: each backend gets its own model
carrying only the fields it needs, discriminated on ``type``.
"""
from pathlib import Path
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ai.types import AIProvider, CostLimits
from core.config import AppSettings, load_settings, load_yaml
from core.errors import ConfigError
from core.queues import RetryBackoff


class ClaudeProviderConfig(BaseModel):
    type: Literal["claude"] = "claude"
    api_key: str = Field(..., min_length=1)
    model: str = "claude-3-5-sonnet-20241022"
    base_url: str = "https://api.anthropic.com/v1"
    timeout: float = 30.0


class OpenAIProviderConfig(BaseModel):
    type: Literal["openai"] = "openai"
    api_key: str = Field(..., min_length=1)
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 30.0


class OllamaProviderConfig(BaseModel):
    type: Literal["ollama"] = "ollama"
    base_url: str = "http://localhost:11434"
    model: str = "llama3.2"
    timeout: float = 60.0  # Longer timeout for local models


ProviderConfig = Annotated[
    Union[ClaudeProviderConfig, OpenAIProviderConfig, OllamaProviderConfig],
    Field(discriminator="type"),
]


class OrchestratorConfig(BaseModel):
    """Everything the AI service needs at construction time."""
    primary_provider: AIProvider
    fallback_order: List[AIProvider] = Field(
        default_factory=lambda: [AIProvider.OPENAI, AIProvider.OLLAMA]
    )
    providers: List[ProviderConfig] = Field(default_factory=list)
    cache_enabled: bool = True
    cache_ttl: float = Field(3600.0, gt=0, description="Seconds")
    max_retries: int = Field(3, ge=0)
    retry_delay: float = Field(1.0, ge=0, description="Base backoff in seconds")
    retry_backoff: RetryBackoff = RetryBackoff.EXPONENTIAL
    queue_concurrency: int = Field(2, ge=1)
    cost_limits: CostLimits = Field(default_factory=CostLimits)

    @field_validator("providers")
    @classmethod
    def _one_config_per_provider(cls, providers):
        seen = set()
        for provider in providers:
            if provider.type in seen:
                raise ValueError(f"provider '{provider.type}' configured more than once")
            seen.add(provider.type)
        return providers


def load_orchestrator_config(
    path: Optional[Union[str, Path]] = None,
    settings: Optional[AppSettings] = None,
) -> OrchestratorConfig:
    """Load the orchestrator config from YAML, or derive it from the environment.

    With no *path* and no ``SHRINK_CONFIG_PATH``, a provider entry is created
    for every API key present; Ollama is always added since it runs locally.
    """
    settings = settings or load_settings()
    path = path or settings.SHRINK_CONFIG_PATH
    if path:
        return load_yaml(path, OrchestratorConfig)

    providers: List[Union[ClaudeProviderConfig, OpenAIProviderConfig, OllamaProviderConfig]] = []
    if settings.ANTHROPIC_API_KEY:
        providers.append(ClaudeProviderConfig(api_key=settings.ANTHROPIC_API_KEY))
    if settings.OPENAI_API_KEY:
        providers.append(OpenAIProviderConfig(api_key=settings.OPENAI_API_KEY))
    providers.append(OllamaProviderConfig(base_url=settings.OLLAMA_HOST))

    primary = settings.PRIMARY_PROVIDER or providers[0].type
    try:
        primary_provider = AIProvider(primary.lower())
    except ValueError as e:
        raise ConfigError(f"Unknown PRIMARY_PROVIDER '{primary}'") from e

    return OrchestratorConfig(
        primary_provider=primary_provider,
        fallback_order=[AIProvider(p.type) for p in providers],
        providers=providers,
    )
