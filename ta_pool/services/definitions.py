"""Load pool definitions from YAML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ta_common.errors import ConfigurationError

from ta_pool.models.types import PoolDefinition


def load_pool_definition(path: Path | str) -> PoolDefinition:
    """Parse and validate a pool definition file."""
    definition_path = Path(path).expanduser()
    if not definition_path.exists():
        raise ConfigurationError(
            f"Pool definition not found: {definition_path}",
            context={"path": definition_path},
        )
    try:
        data: Any = yaml.safe_load(definition_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Pool definition {definition_path} contains invalid YAML",
            context={"path": definition_path},
            cause=exc,
        ) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Pool definition must contain a mapping at the top level.",
            context={"path": definition_path},
        )
    try:
        return PoolDefinition.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Pool definition {definition_path} is invalid: {exc}",
            context={"path": definition_path},
            cause=exc,
        ) from exc
