"""
Supervise Command

Free a TCP port on this host so a new application instance can bind it.
Exits 0 when the port is free afterwards, including when nothing held it.

Usage examples::

    shipline supervise --port 5000
    shipline supervise -p 8000 --sudo
"""

import typer
from rich.console import Console

from shipline.deploy.supervisor import ProcessSupervisor
from shipline.shared.domain.exceptions import SupervisorError

console = Console()


def supervise_command(
    port: int = typer.Option(..., "--port", "-p", min=1, max=65535, help="Port the application binds"),
    sudo: bool = typer.Option(False, "--sudo", help="Escalate with 'sudo -n' when termination is denied"),
    settle_timeout: float = typer.Option(5.0, "--settle-timeout", help="Seconds to wait for the port to clear"),
) -> None:
    """Terminate whatever listens on PORT."""
    supervisor = ProcessSupervisor(use_sudo=sudo, settle_timeout=settle_timeout)
    try:
        supervisor.replace(port)
    except SupervisorError as e:
        console.print(f"[red]Supervisor Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Port {port} is free.[/green]")
