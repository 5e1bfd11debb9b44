"""
Config Commands

- shipline config validate: load the pipeline file and report problems
- shipline config show: print the effective pipeline and settings
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from shipline.cli.bootstrap import load_config_or_exit
from shipline.shared.infrastructure.config import settings

console = Console()

config_app = typer.Typer(
    name="config",
    help="Validate and inspect the pipeline configuration",
    no_args_is_help=True,
)


@config_app.command("validate")
def config_validate(
    config: Path | None = typer.Option(None, "--config", help="Pipeline file (default: shipline.yaml)"),
) -> None:
    """Check the pipeline file."""
    pipeline = load_config_or_exit(config)
    console.print(
        f"[green]Valid:[/green] {len(pipeline.branches)} branch(es), "
        f"{len(pipeline.targets)} target(s)"
    )


@config_app.command("show")
def config_show(
    config: Path | None = typer.Option(None, "--config", help="Pipeline file (default: shipline.yaml)"),
) -> None:
    """Print the effective pipeline definition."""
    pipeline = load_config_or_exit(config)

    console.print(f"[bold]Repository:[/bold] {pipeline.repository}")
    console.print(f"[bold]Environment:[/bold] {settings.app_env}  [dim]state dir {settings.state_dir}[/dim]")

    branches = Table(title="Allow-listed branches", box=box.SIMPLE)
    branches.add_column("Branch", style="bold")
    branches.add_column("Target")
    for branch, target in pipeline.branches.items():
        branches.add_row(branch, target)
    console.print(branches)

    stages = Table(title="Stages", box=box.SIMPLE)
    stages.add_column("Stage", style="bold")
    stages.add_column("Policy")
    stages.add_column("Command", style="dim")
    for stage in pipeline.stages:
        stages.add_row(stage.name.value, stage.policy.value, stage.command or "(built-in)")
    console.print(stages)

    targets = Table(title="Targets", box=box.SIMPLE)
    targets.add_column("Target", style="bold")
    targets.add_column("Address")
    targets.add_column("Workdir")
    targets.add_column("Port", justify="right")
    targets.add_column("Start")
    for target in pipeline.targets.values():
        targets.add_row(
            target.name,
            f"{target.address}:{target.ssh_port}",
            target.workdir,
            str(target.port),
            f"service {target.service}" if target.service else target.rendered_start_command(),
        )
    console.print(targets)
