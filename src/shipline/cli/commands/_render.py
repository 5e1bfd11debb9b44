"""Rich rendering of runs and stage results."""

from rich import box
from rich.console import Console
from rich.table import Table

from shipline.pipeline.domain.enums import RunStatus, StageStatus
from shipline.pipeline.domain.models import PipelineRun, StageResult

_STATUS_STYLE = {
    RunStatus.PENDING: "dim",
    RunStatus.RUNNING: "cyan",
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "red",
    RunStatus.CANCELLED: "yellow",
}


def status_text(status: RunStatus) -> str:
    style = _STATUS_STYLE[status]
    return f"[{style}]{status.value}[/{style}]"


def stage_line(result: StageResult) -> str:
    if result.passed:
        mark = "[green]✓[/green]"
    elif result.fatal:
        mark = "[red]✗[/red]"
    else:
        mark = "[yellow]![/yellow]"
    suffix = f" [dim]({result.error})[/dim]" if result.error else ""
    return f"  {mark} {result.stage.value:<9} {result.duration:6.1f}s{suffix}"


def stage_table(run: PipelineRun) -> Table:
    table = Table(title=f"Run {run.id}  {run.branch}@{run.commit[:12]} -> {run.target}", box=box.SIMPLE)
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Output", style="dim")

    for result in run.stage_results:
        if result.status is StageStatus.PASSED:
            status = "[green]passed[/green]"
        elif result.fatal:
            status = "[red]failed[/red]"
        else:
            status = "[yellow]failed (non-fatal)[/yellow]"
        table.add_row(
            result.stage.value,
            status,
            "" if result.exit_code is None else str(result.exit_code),
            f"{result.duration:.1f}s",
            result.output_path or "",
        )
    return table


def print_run(console: Console, run: PipelineRun) -> None:
    console.print(stage_table(run))
    console.print(f"Status: {status_text(run.status)}")
    if run.error:
        console.print(f"[dim]Error:[/dim] {run.error}")
    if run.handle:
        console.print(
            f"[dim]Started pid[/dim] {run.handle.pid} [dim]on[/dim] {run.handle.host}:{run.handle.port}"
            + (f" [dim](service {run.handle.service})[/dim]" if run.handle.service else "")
        )
