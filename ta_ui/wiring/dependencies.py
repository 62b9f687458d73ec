from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from ta_common.config import AgentConfig, load_config, resolve_config_path
from ta_pool.api import NodePool, create_pool


@dataclass
class UIContext:
    """Container for CLI services and state, initialized lazily."""

    config_path: Optional[Path] = None
    pool_factory: Callable[..., NodePool] = create_pool

    _config: Optional[AgentConfig] = None
    _console: Optional[Console] = None

    def reset(self, config_path: Optional[Path] = None) -> None:
        """Point the context at another config file and drop cached state."""
        self.config_path = config_path
        self._config = None

    @property
    def resolved_config_path(self) -> Path:
        return resolve_config_path(self.config_path)

    @property
    def config(self) -> AgentConfig:
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        if self._console is None:
            self._console = Console()
        return self._console
