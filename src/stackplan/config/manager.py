"""Layered configuration manager (defaults + user + project + explicit file)."""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from .paths import get_defaults_path, get_user_config_path, get_project_config_path
from ..utils.errors import ConfigError
from ..utils.logging import get_logger

logger = get_logger("config.manager")


def read_yaml_mapping(path: Path) -> Dict[str, Any]:
    """
    Read a YAML file that must contain a mapping.

    Raises:
        ConfigError: If the file is unreadable, invalid YAML, or not a mapping
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading config file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a dictionary")
    return data


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the full config tree.

    Later layers override earlier ones: packaged defaults, user config,
    project config, then the explicit config file.

    Args:
        config_path: Optional explicit config file (must exist)

    Returns:
        Merged configuration dictionary
    """
    config = read_yaml_mapping(get_defaults_path())

    user_config_path = get_user_config_path()
    if user_config_path.exists():
        try:
            _deep_merge(config, read_yaml_mapping(user_config_path))
            logger.debug(f"Loaded user config from {user_config_path}")
        except ConfigError as e:
            logger.warning(f"Could not load user config: {e}")

    project_config_path = get_project_config_path()
    if project_config_path:
        try:
            _deep_merge(config, read_yaml_mapping(project_config_path))
            logger.info(f"Loaded project config from {project_config_path}")
        except ConfigError as e:
            logger.warning(f"Could not load project config: {e}")

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        _deep_merge(config, read_yaml_mapping(path))
        logger.info(f"Loaded config from {config_path}")

    return config


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
