"""Configuration module: load execution settings and resource type policies."""

from typing import Any, Dict, Optional
from pydantic import ValidationError
from ..utils.errors import ConfigError
from ..utils.logging import get_logger
from .manager import load_config
from .models import EngineConfig, ExecutionSettings, TypePolicy
from .paths import get_defaults_path, get_user_config_path, get_project_config_path

logger = get_logger("config")


def load_engine_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> EngineConfig:
    """
    Load and validate the layered configuration.

    Args:
        config_path: Optional explicit config YAML, applied after user/project config
        overrides: Execution settings from CLI flags; ``None`` values are ignored

    Returns:
        Validated EngineConfig

    Raises:
        ConfigError: If any layer is invalid
    """
    raw = load_config(config_path)

    execution_overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    if execution_overrides:
        raw.setdefault("execution", {}).update(execution_overrides)

    resource_types = raw.get("resource_types") or {}
    if not isinstance(resource_types, dict):
        raise ConfigError("'resource_types' must be a mapping of type name to policy")
    raw["resource_types"] = {name: policy or {} for name, policy in resource_types.items()}

    try:
        config = EngineConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")

    logger.debug(
        f"Engine config: concurrency={config.execution.concurrency}, "
        f"max_attempts={config.execution.max_attempts}, "
        f"{len(config.resource_types)} type policies"
    )
    return config


__all__ = [
    "EngineConfig",
    "ExecutionSettings",
    "TypePolicy",
    "load_engine_config",
    "load_config",
    "get_defaults_path",
    "get_user_config_path",
    "get_project_config_path",
]
