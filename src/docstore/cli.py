"""
Command line interface for docstore.

    docstore serve --port 3030 --spec seed.json
    docstore rules seed.json
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from docstore import __version__
from docstore.errors import RuleConfigError

app = typer.Typer(
    help="In-memory document store with a query language and rule-based access control",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"docstore {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version"),
    ] = False,
) -> None:
    """In-memory document store."""


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", help="Host to bind to")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to bind to")] = None,
    spec: Annotated[
        Path | None,
        typer.Option("--spec", "-s", help="Seed data and rules file (.json or .toml)"),
    ] = None,
    throttle: Annotated[
        bool, typer.Option("--throttle", help="Delay every response by 500-1000 ms")
    ] = False,
    log_level: Annotated[str | None, typer.Option("--log-level", help="Log level")] = None,
) -> None:
    """Run the HTTP server."""
    from docstore.config import ServerSettings
    from docstore.runtime.app_factory import run_app

    settings = ServerSettings.from_env(
        host=host,
        port=port,
        spec_path=spec,
        throttle=throttle or None,
        log_level=log_level.upper() if log_level else None,
    )
    if settings.spec_path is not None and not settings.spec_path.exists():
        console.print(f"[red]Spec file not found: {settings.spec_path}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]docstore[/green] listening on http://{settings.host}:{settings.port}/")
    run_app(settings)


@app.command()
def rules(
    path: Annotated[Path, typer.Argument(help="Spec file (.json or .toml)")],
) -> None:
    """Validate the rules document of a spec file and list the compiled rules."""
    from docstore.config import load_store_spec
    from docstore.runtime.rule_engine import RuleEngine

    try:
        spec = load_store_spec(path)
        engine = RuleEngine(spec.rules)
    except RuleConfigError as e:
        console.print(f"[red]Invalid rules:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Rules ({path.name})")
    table.add_column("Collection")
    table.add_column("Scope", style="dim")
    table.add_column("Action")
    table.add_column("Rule")

    for collection, scope, action, rule in engine.iter_rules():
        table.add_row(collection, scope or "-", action.value, rule.describe())

    console.print(table)
