"""
Run Command

Manually trigger one pipeline run for a branch and commit, wait for it and
exit with the run's status (0 succeeded, 1 failed, 2 cancelled).

Usage examples::

    shipline run --branch main --commit 3f9c2e1
    shipline run -b staging -c HEAD-sha --config deploy/shipline.yaml
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console

from shipline.cli.bootstrap import build_pipeline, load_config_or_exit
from shipline.cli.commands._render import print_run, stage_line
from shipline.pipeline.domain.models import PushEvent

console = Console()


def run_command(
    branch: str = typer.Option(..., "--branch", "-b", help="Branch that was pushed"),
    commit: str = typer.Option(..., "--commit", "-c", help="Commit to build and deploy"),
    config: Path | None = typer.Option(None, "--config", help="Pipeline file (default: shipline.yaml)"),
    state_dir: Path | None = typer.Option(None, "--state-dir", help="Run records and logs directory"),
) -> None:
    """Run checkout, build, test and deploy for one commit."""
    pipeline_config = load_config_or_exit(config)

    async def _run():
        pipeline = build_pipeline(
            pipeline_config,
            state_dir=state_dir,
            progress_callback=lambda run, result: console.print(stage_line(result)),
        )
        try:
            run = pipeline.listener.on_push(PushEvent(branch=branch, commit=commit, source="manual"))
        except ValueError as e:
            console.print(f"[red]Invalid push:[/red] {e}")
            raise typer.Exit(1)
        if run is None:
            return None
        console.print(f"[bold cyan]Run {run.id}[/bold cyan] {branch}@{commit} -> {run.target}")
        return await pipeline.queue.wait(run.id)

    run = asyncio.run(_run())
    if run is None:
        console.print(f"[yellow]Branch '{branch}' is not allow-listed; nothing to do.[/yellow]")
        return

    console.print()
    print_run(console, run)
    if run.exit_code:
        raise typer.Exit(run.exit_code)
