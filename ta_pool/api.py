"""Public pool API surface."""

from ta_pool.engine.factory import create_pool
from ta_pool.engine.pool import NodePool, as_matcher
from ta_pool.models.protocols import DisplayPool, NodeBackend, NodeHandle
from ta_pool.models.types import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_RETRY_LIMIT,
    VNC_BASE_PORT,
    BootstrapError,
    DisplayAssignment,
    DisplayTarget,
    DuplicateNodeError,
    MissingNodeError,
    NodeSpec,
    PoolDefinition,
    TeardownError,
)
from ta_pool.providers.ansible import AnsibleBootstrapper
from ta_pool.providers.opennebula import OpenNebulaBackend, OpenNebulaNode
from ta_pool.services.definitions import load_pool_definition
from ta_pool.services.guacamole import DisplaySession, GuacamoleDisplayPool

__all__ = [
    "AnsibleBootstrapper",
    "BootstrapError",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_RETRY_LIMIT",
    "DisplayAssignment",
    "DisplayPool",
    "DisplaySession",
    "DisplayTarget",
    "DuplicateNodeError",
    "GuacamoleDisplayPool",
    "MissingNodeError",
    "NodeBackend",
    "NodeHandle",
    "NodePool",
    "NodeSpec",
    "OpenNebulaBackend",
    "OpenNebulaNode",
    "PoolDefinition",
    "TeardownError",
    "VNC_BASE_PORT",
    "as_matcher",
    "create_pool",
    "load_pool_definition",
]
