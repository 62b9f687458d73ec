from __future__ import annotations

import typer
from rich.table import Table

from ta_ui.wiring.dependencies import UIContext


def create_config_app(ctx: UIContext) -> typer.Typer:
    """Build the config Typer app, wired to the given context."""
    app = typer.Typer(help="Inspect the agent configuration.", no_args_is_help=True)

    @app.command("show")
    def config_show() -> None:
        """Print the effective settings with secrets masked."""
        cfg = ctx.config
        table = Table(title="Agent configuration", show_header=True, header_style="bold magenta")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in cfg.public_dict().items():
            table.add_row(key, str(value))
        ctx.console.print(table)

    @app.command("path")
    def config_path() -> None:
        """Print which config file is used and whether it exists."""
        resolved = ctx.resolved_config_path
        if resolved.exists():
            ctx.console.print(f"[green]{resolved}[/green]")
        else:
            ctx.console.print(f"[yellow]{resolved} (missing, defaults in use)[/yellow]")

    return app
