"""Shared pool types and value objects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator, model_validator

from ta_common.errors import ConfigurationError, NodeOperationError, TAError

VNC_BASE_PORT = 5900
DEFAULT_RETRY_LIMIT = 3
DEFAULT_BATCH_SIZE = 2


class NodeSpec(BaseModel):
    """Description of a node to create and optionally bootstrap."""

    name: str = Field(description="Node name, unique within a pool")
    template: str | int = Field(description="Backend template name or numeric id")
    run_list: List[str] = Field(default_factory=list, description="Playbooks applied after creation")
    options: Dict[str, Any] = Field(default_factory=dict, description="Extra variables for the run list")
    keep_alive: bool = Field(default=False, description="Leave the VM running when the pool is released")

    model_config = {"extra": "forbid"}

    @field_validator("run_list", mode="before")
    @classmethod
    def _wrap_single_entry(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("options", mode="before")
    @classmethod
    def _none_options(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _validate_name_not_empty(self) -> "NodeSpec":
        if not self.name or not self.name.strip():
            raise ValueError("NodeSpec: 'name' must be non-empty")
        return self


class PoolDefinition(BaseModel):
    """A pool described in a YAML file: nodes plus the display selection."""

    nodes: List[NodeSpec] = Field(min_length=1, description="Nodes to provision")
    displays: bool | List[str] = Field(
        default=False,
        description="False for no displays, True for every node, or a list of node names",
    )

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _validate_names_unique(self) -> "PoolDefinition":
        names = [spec.name for spec in self.nodes]
        if len(names) != len(set(names)):
            raise ValueError("PoolDefinition: node names must be unique")
        if isinstance(self.displays, list):
            unknown = sorted(set(self.displays) - set(names))
            if unknown:
                raise ValueError(f"PoolDefinition: displays reference unknown nodes: {', '.join(unknown)}")
        return self

    def display_names(self) -> tuple[str, ...] | None:
        """Names to pass to ``init_display_sessions``; None when displays are off."""
        if self.displays is False:
            return None
        if self.displays is True:
            return ()
        return tuple(self.displays)


@dataclass(frozen=True)
class DisplayTarget:
    """One entry of an ordered display allocation request."""

    node_name: str
    address: str


@dataclass(frozen=True)
class DisplayAssignment:
    """One entry of an ordered display allocation response."""

    node_name: str
    address: str
    session: Any


class DuplicateNodeError(ConfigurationError):
    """Raised when a node name is already taken in the pool or the batch."""


class MissingNodeError(NodeOperationError):
    """Raised when an operation targets a node that is not in the pool."""


class BootstrapError(NodeOperationError):
    """Raised when applying a run list to a node fails."""


class TeardownError(TAError):
    """Raised after a release attempt in which some step failed."""
