"""
Command-line interface for test-agent.

Exposes commands to inspect the agent configuration and to bring node pools
described in YAML files up and down.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from ta_common.api import configure_logging
from ta_ui.cli.commands.config import create_config_app
from ta_ui.cli.commands.pool import create_pool_app
from ta_ui.wiring.dependencies import UIContext

ctx_store = UIContext()

app = typer.Typer(help="Provision test node pools and bind their remote displays.", no_args_is_help=True)


@app.callback()
def entry(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Agent config file (defaults to $TA_CONFIG_PATH or /etc/test-agent/config.yaml).",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
) -> None:
    """Global options shared by every command."""
    configure_logging(debug=debug, force=True)
    ctx_store.reset(config)


app.add_typer(create_config_app(ctx_store), name="config")
app.add_typer(create_pool_app(ctx_store), name="pool")


def main() -> None:
    """Entry point for the ``ta`` console script."""
    app()


if __name__ == "__main__":
    main()
