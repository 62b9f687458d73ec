"""Shared helpers for test-agent."""

from ta_common.api import AgentConfig, TAError, configure_logging, load_config

__all__ = ["AgentConfig", "TAError", "configure_logging", "load_config"]
