"""Tests for environment settings and orchestrator YAML configuration."""
import pytest
import yaml

from ai.config import (
    ClaudeProviderConfig,
    OllamaProviderConfig,
    OrchestratorConfig,
    load_orchestrator_config,
)
from ai.types import AIProvider
from core.config import AppSettings, load_yaml
from core.errors import ConfigError
from core.queues import RetryBackoff

ENV_KEYS = (
    "SHRINK_CONFIG_PATH", "PRIMARY_PROVIDER", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OLLAMA_HOST", "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No provider variables and no stray .env file."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def config_file(tmp_path):
    data = {
        "primary_provider": "claude",
        "fallback_order": ["ollama"],
        "providers": [
            {"type": "claude", "api_key": "sk-ant-test", "model": "claude-3-5-haiku-20241022"},
            {"type": "ollama", "base_url": "http://gpu-box:11434"},
        ],
        "cache_ttl": 600,
        "retry_backoff": "linear",
        "cost_limits": {"daily_limit": 1.5},
    }
    path = tmp_path / "shrink.yml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestAppSettings:

    def test_defaults(self, clean_env):
        settings = AppSettings()
        assert settings.LOG_LEVEL == "INFO"
        assert settings.OLLAMA_HOST == "http://localhost:11434"
        assert settings.ANTHROPIC_API_KEY is None

    def test_reads_environment(self, clean_env):
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        clean_env.setenv("PRIMARY_PROVIDER", "claude")
        settings = AppSettings()
        assert settings.ANTHROPIC_API_KEY == "sk-ant-env"
        assert settings.PRIMARY_PROVIDER == "claude"


class TestLoadYaml:

    def test_valid_file(self, config_file):
        config = load_yaml(config_file, OrchestratorConfig)
        assert config.primary_provider == AIProvider.CLAUDE
        assert isinstance(config.providers[0], ClaudeProviderConfig)
        assert isinstance(config.providers[1], OllamaProviderConfig)
        assert config.providers[1].base_url == "http://gpu-box:11434"
        assert config.retry_backoff == RetryBackoff.LINEAR
        assert config.cost_limits.daily_limit == 1.5
        assert config.max_retries == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_yaml(tmp_path / "nope.yml", OrchestratorConfig)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        with pytest.raises(ConfigError, match="empty"):
            load_yaml(path, OrchestratorConfig)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yml"
        path.write_text("primary_provider: [claude\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_yaml(path, OrchestratorConfig)

    def test_validation_error(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text(yaml.safe_dump({"primary_provider": "claude", "queue_concurrency": 0}))
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_yaml(path, OrchestratorConfig)


class TestOrchestratorConfig:

    def test_claude_requires_api_key(self):
        with pytest.raises(ValueError):
            OrchestratorConfig.model_validate({"primary_provider": "claude", "providers": [{"type": "claude"}]})

    def test_duplicate_provider_rejected(self):
        with pytest.raises(ValueError, match="more than once"):
            OrchestratorConfig.model_validate({
                "primary_provider": "ollama",
                "providers": [{"type": "ollama"}, {"type": "ollama"}],
            })


class TestLoadOrchestratorConfig:

    def test_from_explicit_path(self, clean_env, config_file):
        config = load_orchestrator_config(config_file)
        assert config.cache_ttl == 600

    def test_from_env_path(self, clean_env, config_file):
        clean_env.setenv("SHRINK_CONFIG_PATH", str(config_file))
        assert load_orchestrator_config().primary_provider == AIProvider.CLAUDE

    def test_from_keys(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        config = load_orchestrator_config()

        assert config.primary_provider == AIProvider.OPENAI
        assert [p.type for p in config.providers] == ["openai", "ollama"]

    def test_ollama_only(self, clean_env):
        config = load_orchestrator_config()
        assert config.primary_provider == AIProvider.OLLAMA
        assert config.fallback_order == [AIProvider.OLLAMA]

    def test_primary_override(self, clean_env):
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant")
        clean_env.setenv("PRIMARY_PROVIDER", "Ollama")
        assert load_orchestrator_config().primary_provider == AIProvider.OLLAMA

    def test_unknown_primary(self, clean_env):
        clean_env.setenv("PRIMARY_PROVIDER", "gemini")
        with pytest.raises(ConfigError, match="gemini"):
            load_orchestrator_config()
