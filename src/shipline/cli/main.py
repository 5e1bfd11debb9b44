"""
Shipline CLI
Main entry point for the command-line interface

Usage:
    shipline run -b main -c <sha>   # Build, test and deploy one commit
    shipline serve                  # Receive push webhooks
    shipline watch                  # Poll branches for new commits
    shipline supervise -p 5000      # Free a port on this host
    shipline runs list              # Recent runs
    shipline config validate        # Check shipline.yaml
"""

import typer
from rich.console import Console
from rich.panel import Panel

from shipline import __version__
from shipline.cli.commands.config import config_app
from shipline.cli.commands.run import run_command
from shipline.cli.commands.runs import runs_app
from shipline.cli.commands.serve import serve_command, watch_command
from shipline.cli.commands.supervise import supervise_command
from shipline.shared.infrastructure.logging import configure_logging

app = typer.Typer(
    name="shipline",
    help="Shipline - build, test and deploy with safe process replacement",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()

app.command("run", help="Run the pipeline for one branch and commit")(run_command)
app.command("serve", help="Receive push webhooks and run the pipeline")(serve_command)
app.command("watch", help="Poll allow-listed branches and run the pipeline")(watch_command)
app.command("supervise", help="Free a TCP port on this host")(supervise_command)
app.add_typer(runs_app, name="runs", help="Inspect recorded pipeline runs")
app.add_typer(config_app, name="config", help="Validate and inspect the pipeline configuration")


@app.callback()
def _setup() -> None:
    configure_logging()


@app.command()
def version():
    """Show Shipline version information"""
    console.print(Panel.fit(
        "[bold cyan]Shipline[/bold cyan]\n"
        f"[dim]Version:[/dim] {__version__}\n",
        title="About Shipline",
        border_style="cyan",
    ))


def main():
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
