import logging
from pathlib import Path
from typing import Optional
import yaml
from pydantic import ValidationError
from hwbench.config.models import AppConfig
from hwbench.domain.errors import ConfigError

logger = logging.getLogger(__name__)

def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Returns defaults if the file doesn't exist; raises ConfigError if it can't be parsed or validated.
    """
    if config_path is None or not Path(config_path).exists():
        if config_path is not None:
            logger.warning(f"Config file not found at {config_path}, using defaults.")
        return AppConfig()

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} must be a mapping, got {type(data).__name__}")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e
