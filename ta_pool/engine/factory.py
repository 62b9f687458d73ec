"""Wire a NodePool with the concrete collaborators described by the configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ta_common.config import AgentConfig

from ta_pool.engine.pool import NodePool, SpecLike
from ta_pool.models.protocols import DisplayPool, NodeBackend
from ta_pool.models.types import DEFAULT_BATCH_SIZE, DEFAULT_RETRY_LIMIT
from ta_pool.providers.ansible import AnsibleBootstrapper
from ta_pool.providers.opennebula import OpenNebulaBackend
from ta_pool.services.guacamole import GuacamoleDisplayPool


def create_pool(
    config: AgentConfig,
    *specs: SpecLike,
    backend: Optional[NodeBackend] = None,
    display_pool: Optional[DisplayPool] = None,
    state_dir: Optional[Path] = None,
    retry_limit: int = DEFAULT_RETRY_LIMIT,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> NodePool:
    """Build a pool on OpenNebula + Guacamole unless collaborators are given."""
    if backend is None:
        backend = OpenNebulaBackend(
            config,
            bootstrapper=AnsibleBootstrapper(config, private_data_dir=state_dir),
        )
    if display_pool is None:
        display_pool = GuacamoleDisplayPool.from_config(config)
    return NodePool(
        backend,
        display_pool,
        config,
        *specs,
        retry_limit=retry_limit,
        batch_size=batch_size,
    )
