"""Public API surface for ta_common."""

from ta_common.config import AgentConfig, load_config
from ta_common.errors import (
    ConfigurationError,
    DisplayPoolError,
    NodeOperationError,
    ProvisioningError,
    TAError,
    describe_error,
    error_to_payload,
    wrap_error,
)
from ta_common.logging import configure_logging

__all__ = [
    "AgentConfig",
    "ConfigurationError",
    "DisplayPoolError",
    "NodeOperationError",
    "ProvisioningError",
    "TAError",
    "configure_logging",
    "describe_error",
    "error_to_payload",
    "load_config",
    "wrap_error",
]
