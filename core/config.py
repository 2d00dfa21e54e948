import logging
from pathlib import Path
from typing import Optional, Type, TypeVar, Union

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError

# --- Base Path ---
BASE_DIR = Path(__file__).resolve().parent.parent
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# --- Environment-based Settings ---

class AppSettings(BaseSettings):
    """
    Main application settings loaded from environment variables.
    The .env file is loaded automatically by pydantic-settings.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- General & Core ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the application (e.g., DEBUG, INFO, WARNING, ERROR)")
    LOG_FILE: Optional[str] = Field(None, description="Optional: Path of the rotating JSON log file.")
    SHRINK_CONFIG_PATH: Optional[str] = Field(None, description="Optional: Path to the orchestrator YAML configuration file.")
    PRIMARY_PROVIDER: Optional[str] = Field(None, description="Optional: Provider tried first when no YAML file is used.")

    # --- Cloud providers ---
    ANTHROPIC_API_KEY: Optional[str] = Field(None)
    OPENAI_API_KEY: Optional[str] = Field(None)

    # --- Ollama / Local LLMs ---
    OLLAMA_HOST: str = Field("http://localhost:11434", description="The full URL of your Ollama server.")

# --- YAML-based Configuration ---

def load_yaml(path: Union[str, Path], model: Type[ModelT]) -> ModelT:
    """Loads a YAML file and validates it with the given Pydantic model."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file '{config_path.name}' not found in {config_path.parent}")
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file {config_path}: {e}") from e
    if not data:
        raise ConfigError(f"Configuration file {config_path} is empty")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Configuration validation error in {config_path}: {e}")
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

def load_settings() -> AppSettings:
    """Loads environment settings, turning validation errors into ConfigError."""
    try:
        return AppSettings()
    except ValidationError as e:
        raise ConfigError(f"Configuration validation error: {e}") from e
