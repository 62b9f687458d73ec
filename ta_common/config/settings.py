"""Agent configuration: defaults merged with recognized keys from a YAML file."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/test-agent/config.yaml")
CONFIG_PATH_ENV = "TA_CONFIG_PATH"
SECRET_FIELDS = frozenset(
    {"credentials", "local_sudo_pass", "default_ssh_pass", "guacamole_password"}
)


class AgentConfig(BaseModel):
    """Immutable settings shared by the pool manager and its collaborators."""

    backend_host: str = Field(
        default="127.0.0.1",
        description="Host of the virtualization backend; VNC displays are reached here",
    )
    endpoint: str = Field(
        default="http://127.0.0.1:2633/RPC2",
        description="OpenNebula XML-RPC endpoint",
    )
    credentials: str = Field(
        default="oneadmin:oneadmin",
        description="OpenNebula session string (user:password)",
    )
    local_sudo_pass: str = Field(default="password", description="Local administrative password")
    default_ssh_pass: str = Field(default="password", description="Default remote login password for nodes")
    default_interface_ip: str = Field(
        default=r"^127\.",
        description="Regular expression matching the address of the default interface",
    )
    boot_timeout: int = Field(default=300, gt=0, description="Seconds to wait for a VM to reach RUNNING")
    guacamole_url: str = Field(
        default="http://127.0.0.1:8080/guacamole",
        description="Base URL of the Guacamole web application",
    )
    guacamole_username: str = Field(default="guacadmin", description="Guacamole API user")
    guacamole_password: str = Field(default="guacadmin", description="Guacamole API password")
    guacamole_data_source: str = Field(default="postgresql", description="Guacamole data source name")
    display_capacity: int = Field(default=21, gt=0, description="Maximum concurrent display sessions")

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("endpoint", "guacamole_url")
    @classmethod
    def _validate_http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"must be an http(s) URL, got: {value}")
        return value

    @field_validator("default_interface_ip")
    @classmethod
    def _validate_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"default_interface_ip is not a valid regular expression: {exc}") from exc
        return value

    def merged(self, overrides: Mapping[Any, Any]) -> "AgentConfig":
        """Return a copy with recognized keys from ``overrides`` applied.

        Unknown keys are ignored. Invalid values raise ``ValidationError``.
        """
        known = type(self).model_fields
        recognized = {str(k): v for k, v in overrides.items() if str(k) in known}
        ignored = sorted(str(k) for k in overrides if str(k) not in known)
        if ignored:
            logger.debug("Ignoring unknown configuration keys: %s", ", ".join(ignored))
        data = self.model_dump()
        data.update(recognized)
        return type(self).model_validate(data)

    def public_dict(self) -> dict[str, Any]:
        """Dump settings with secret values masked."""
        return {
            key: ("********" if key in SECRET_FIELDS and value else value)
            for key, value in self.model_dump().items()
        }


def resolve_config_path(path: Path | str | None = None) -> Path:
    """Explicit path, then $TA_CONFIG_PATH, then the system-wide default."""
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(path: Path | str | None = None) -> AgentConfig:
    """Load the agent configuration, falling back to defaults on any problem."""
    target = resolve_config_path(path)
    defaults = AgentConfig()
    try:
        data = yaml.safe_load(target.read_text())
    except FileNotFoundError:
        logger.warning("YAML configuration file %s couldn't be found. Using defaults.", target)
        return defaults
    except OSError as exc:
        logger.warning("YAML configuration file %s couldn't be read (%s). Using defaults.", target, exc)
        return defaults
    except UnicodeDecodeError as exc:
        logger.warning("YAML configuration file %s is not valid UTF-8 (%s). Using defaults.", target, exc)
        return defaults
    except yaml.YAMLError:
        logger.warning("YAML configuration file %s contains invalid syntax. Using defaults.", target)
        return defaults

    if data is None:
        return defaults
    if not isinstance(data, Mapping):
        logger.warning("YAML configuration file %s must contain a mapping. Using defaults.", target)
        return defaults
    try:
        return defaults.merged(data)
    except ValidationError as exc:
        logger.warning("YAML configuration file %s has invalid values (%s). Using defaults.", target, exc)
        return defaults
