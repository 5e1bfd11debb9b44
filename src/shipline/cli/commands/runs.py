"""
Runs Commands

Inspect recorded pipeline runs:
- shipline runs list: most recent runs
- shipline runs show <run-id>: stage results of one run
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from shipline.cli.commands._render import print_run, status_text
from shipline.pipeline.infrastructure.run_store import RunStore
from shipline.shared.infrastructure.config import settings

console = Console()

runs_app = typer.Typer(
    name="runs",
    help="Inspect recorded pipeline runs",
    no_args_is_help=True,
)


def _store(state_dir: Path | None) -> RunStore:
    return RunStore(Path(state_dir or settings.state_dir))


@runs_app.command("list")
def runs_list(
    limit: int = typer.Option(20, "--limit", "-n", help="How many runs to show"),
    state_dir: Path | None = typer.Option(None, "--state-dir", help="Run records directory"),
) -> None:
    """List the most recent runs."""
    runs = _store(state_dir).list_runs(limit=limit)
    if not runs:
        console.print("[dim]No runs recorded.[/dim]")
        return

    table = Table(box=box.SIMPLE)
    table.add_column("Run", style="bold")
    table.add_column("Branch")
    table.add_column("Commit")
    table.add_column("Target")
    table.add_column("Status")
    table.add_column("Created")
    for run in runs:
        table.add_row(
            run.id,
            run.branch,
            run.commit[:12],
            run.target,
            status_text(run.status),
            run.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@runs_app.command("show")
def runs_show(
    run_id: str = typer.Argument(..., help="Run id"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw run record"),
    state_dir: Path | None = typer.Option(None, "--state-dir", help="Run records directory"),
) -> None:
    """Show one run and its stage results."""
    run = _store(state_dir).load(run_id)
    if run is None:
        console.print(f"[red]Unknown run:[/red] {run_id}")
        raise typer.Exit(1)
    if as_json:
        console.print_json(json.dumps(run.to_json()))
        return
    print_run(console, run)
