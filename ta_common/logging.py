"""Logging setup for test-agent: stdlib handlers rendered through structlog."""

from __future__ import annotations

import logging
import os
import sys

import structlog

LEVEL_ENV = "TA_LOG_LEVEL"
JSON_ENV = "TA_LOG_JSON"
FILE_ENV = "TA_LOG_FILE"

# Record attributes set through ``extra=`` (or a LoggerAdapter) that are
# promoted to fields of the structured event.
RECORD_FIELDS = frozenset({"ta_phase", "ta_node"})
TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})


def _level_from(value: str | int | None, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    if value is None:
        return logging.INFO
    if isinstance(value, int):
        return value
    if value.strip().isdigit():
        return int(value)
    return logging.getLevelNamesMapping().get(value.strip().upper(), logging.INFO)


def _flag_from_env(name: str) -> bool | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    return raw.strip().lower() in TRUTHY_VALUES


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.ExtraAdder(allow=RECORD_FIELDS),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _build_formatter(as_json: bool) -> logging.Formatter:
    renderer: structlog.types.Processor
    if as_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_pre_chain())


def configure_logging(
    *,
    level: str | int | None = None,
    debug: bool = False,
    log_file: str | None = None,
    json: bool | None = None,
    force: bool = False,
) -> None:
    """Route stdlib logging through structlog renderers.

    Explicit arguments win over ``TA_LOG_LEVEL``, ``TA_LOG_JSON`` and
    ``TA_LOG_FILE``. When the root logger already has handlers they are kept
    and only structlog is configured, unless ``force`` replaces them.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        _configure_structlog()
        return

    as_json = json if json is not None else bool(_flag_from_env(JSON_ENV))
    target_file = log_file if log_file is not None else os.environ.get(FILE_ENV)
    formatter = _build_formatter(as_json)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if target_file:
        handlers.append(logging.FileHandler(target_file))

    if force:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

    root_logger.setLevel(_level_from(level or os.environ.get(LEVEL_ENV), debug))
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    _configure_structlog()
