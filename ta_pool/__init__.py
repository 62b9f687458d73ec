"""Pool manager for ephemeral test nodes and their remote-display sessions."""

from ta_common.api import configure_logging as _configure_logging

_configure_logging()

from ta_pool.api import (  # noqa: F401,E402
    NodePool,
    NodeSpec,
    PoolDefinition,
    create_pool,
    load_pool_definition,
)

__all__ = [
    "NodePool",
    "NodeSpec",
    "PoolDefinition",
    "create_pool",
    "load_pool_definition",
]
