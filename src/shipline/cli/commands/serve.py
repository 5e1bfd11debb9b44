"""
Trigger Commands

Long-running trigger sources:
- shipline serve: receive push webhooks over HTTP
- shipline watch: poll the repository for moved branch heads
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from aiohttp import web
from rich.console import Console

from shipline.cli.bootstrap import build_pipeline, load_config_or_exit
from shipline.shared.infrastructure.config import settings
from shipline.shared.infrastructure.logging import get_logger
from shipline.trigger.poller import BranchPoller
from shipline.trigger.webhook_server import WebhookServer

logger = get_logger(__name__)
console = Console()


def serve_command(
    host: str | None = typer.Option(None, "--host", help="Bind address (default: SHIPLINE_WEBHOOK_HOST)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default: SHIPLINE_WEBHOOK_PORT)"),
    config: Path | None = typer.Option(None, "--config", help="Pipeline file (default: shipline.yaml)"),
    state_dir: Path | None = typer.Option(None, "--state-dir", help="Run records and logs directory"),
) -> None:
    """Start the webhook receiver."""
    if settings.is_production and not settings.webhook_secret:
        console.print("[red]SHIPLINE_WEBHOOK_SECRET must be set in production.[/red]")
        raise typer.Exit(1)
    if not settings.webhook_secret:
        logger.warning("webhook_signature_check_disabled")

    pipeline_config = load_config_or_exit(config)
    bind_host = host or settings.webhook_host
    bind_port = port or settings.webhook_port

    async def _serve():
        pipeline = build_pipeline(pipeline_config, state_dir=state_dir)
        server = WebhookServer(pipeline.listener, pipeline.queue, secret=settings.webhook_secret)
        runner = web.AppRunner(server.app)
        await runner.setup()
        site = web.TCPSite(runner, bind_host, bind_port)
        await site.start()
        logger.info("webhook_server_listening", host=bind_host, port=bind_port)
        console.print(f"[cyan]Listening for push webhooks on http://{bind_host}:{bind_port}/webhook[/cyan]")
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        console.print("\n[cyan]Webhook receiver stopped.[/cyan]")


def watch_command(
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between polls (default: SHIPLINE_POLL_INTERVAL)"),
    config: Path | None = typer.Option(None, "--config", help="Pipeline file (default: shipline.yaml)"),
    state_dir: Path | None = typer.Option(None, "--state-dir", help="Run records and logs directory"),
) -> None:
    """Poll allow-listed branches and run the pipeline when a head moves."""
    pipeline_config = load_config_or_exit(config)

    async def _watch():
        pipeline = build_pipeline(pipeline_config, state_dir=state_dir)
        poller = BranchPoller(pipeline.listener, interval=interval or settings.poll_interval)
        try:
            await poller.run_forever()
        finally:
            await pipeline.queue.drain()

    console.print(f"[cyan]Watching {', '.join(pipeline_config.branches)} in {pipeline_config.repository}[/cyan]")
    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("\n[cyan]Watcher stopped.[/cyan]")
