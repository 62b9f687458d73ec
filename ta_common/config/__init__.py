"""Configuration helpers for ta_common."""

from .settings import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_PATH,
    AgentConfig,
    load_config,
    resolve_config_path,
)

__all__ = [
    "AgentConfig",
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "load_config",
    "resolve_config_path",
]
