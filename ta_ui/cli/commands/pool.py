from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from ta_common.errors import TAError, describe_error
from ta_pool.api import NodePool, PoolDefinition, load_pool_definition
from ta_ui.wiring.dependencies import UIContext


def _display_label(session: object) -> str:
    if session is None:
        return "-"
    return str(getattr(session, "url", session))


def _ready_label(node: object) -> str:
    try:
        return "yes" if node.ready() else "no"  # type: ignore[attr-defined]
    except TAError:
        return "error"


def create_pool_app(ctx: UIContext) -> typer.Typer:
    """Build the pool Typer app, wired to the given context."""
    app = typer.Typer(help="Bring test node pools up and down.", no_args_is_help=True)

    def _load_definition(path: Path) -> PoolDefinition:
        try:
            return load_pool_definition(path)
        except TAError as exc:
            ctx.console.print(f"[red]{escape(describe_error(exc))}[/red]")
            raise typer.Exit(1)

    def _print_pool(pool: NodePool) -> None:
        table = Table(title="Node pool", show_header=True, header_style="bold magenta")
        table.add_column("Node", style="cyan")
        table.add_column("VM id", justify="right")
        table.add_column("Ready")
        table.add_column("Keep alive")
        table.add_column("Display")
        for name, node in pool.items():
            table.add_row(
                name,
                str(node.id),
                _ready_label(node),
                "yes" if node.keep_alive else "no",
                _display_label(node.session),
            )
        ctx.console.print(table)

    @app.command("check")
    def pool_check(
        path: Path = typer.Argument(..., help="Pool definition (YAML)."),
    ) -> None:
        """Validate a pool definition and list its nodes."""
        definition = _load_definition(path)
        displays = definition.display_names()
        table = Table(title=f"Pool definition: {path}", show_header=True, header_style="bold magenta")
        table.add_column("Node", style="cyan")
        table.add_column("Template")
        table.add_column("Run list")
        table.add_column("Keep alive")
        table.add_column("Display")
        for spec in definition.nodes:
            wants_display = displays is not None and (not displays or spec.name in displays)
            table.add_row(
                spec.name,
                str(spec.template),
                ", ".join(spec.run_list) or "-",
                "yes" if spec.keep_alive else "no",
                "yes" if wants_display else "no",
            )
        ctx.console.print(table)

    @app.command("up")
    def pool_up(
        path: Path = typer.Argument(..., help="Pool definition (YAML)."),
        hold: bool = typer.Option(
            False,
            "--hold",
            help="Wait for a key press before releasing the pool.",
        ),
    ) -> None:
        """Provision a pool, bind its displays, report, then release it."""
        definition = _load_definition(path)
        try:
            pool = ctx.pool_factory(ctx.config)
        except (TAError, ValueError) as exc:
            ctx.console.print(f"[red]Cannot set up the pool: {escape(describe_error(exc))}[/red]")
            raise typer.Exit(1)
        exit_code = 0
        try:
            pool.add_nodes(*definition.nodes)
            names = definition.display_names()
            if names is not None and not pool.init_display_sessions(*names):
                ctx.console.print("[yellow]No display sessions were bound.[/yellow]")
            _print_pool(pool)
            if hold:
                typer.pause("Press any key to release the pool...")
        except TAError as exc:
            ctx.console.print(f"[red]{escape(describe_error(exc))}[/red]")
            exit_code = 1
        finally:
            try:
                pool.release()
            except TAError as exc:
                ctx.console.print(f"[red]{escape(describe_error(exc))}[/red]")
                exit_code = 1

        if exit_code:
            raise typer.Exit(exit_code)
        ctx.console.print("[green]Pool released.[/green]")

    return app
