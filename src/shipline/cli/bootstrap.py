"""Wiring shared by the CLI commands: settings + pipeline file -> listener, queue, runner."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.console import Console

from shipline.deploy.remote_executor import RemoteExecutor
from shipline.pipeline.application.run_queue import RunQueue
from shipline.pipeline.application.stage_actions import StageActions
from shipline.pipeline.application.stage_runner import StageRunner
from shipline.pipeline.domain.models import PipelineConfig
from shipline.pipeline.infrastructure.config_loader import load_pipeline_config
from shipline.pipeline.infrastructure.run_store import RunStore
from shipline.shared.domain.exceptions import ConfigurationError
from shipline.shared.infrastructure.config import settings
from shipline.shared.infrastructure.execution import CommandExecutor
from shipline.trigger.listener import TriggerListener

console = Console()


@dataclass
class Pipeline:
    config: PipelineConfig
    store: RunStore
    runner: StageRunner
    queue: RunQueue
    listener: TriggerListener


def load_config_or_exit(config_path: Optional[Path]) -> PipelineConfig:
    path = Path(config_path or settings.config_path)
    try:
        return load_pipeline_config(path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1)


def build_pipeline(
    config: PipelineConfig,
    state_dir: Optional[Path] = None,
    progress_callback: Optional[Callable] = None,
) -> Pipeline:
    """Must be called inside the event loop that will run the queue."""
    store = RunStore(Path(state_dir or settings.state_dir))
    remote_executor = RemoteExecutor(
        default_timeout=settings.deploy_timeout,
        ssh_binary=settings.ssh_binary,
        connect_timeout=settings.ssh_connect_timeout,
    )
    actions = StageActions(
        repository=config.repository,
        executor=CommandExecutor(default_timeout=settings.stage_timeout),
        remote_executor=remote_executor,
        stage_timeout=settings.stage_timeout,
    )
    runner = StageRunner(
        config,
        store,
        actions=actions,
        keep_workspaces=settings.keep_workspaces,
        progress_callback=progress_callback,
    )
    queue = RunQueue(runner)
    return Pipeline(config=config, store=store, runner=runner, queue=queue, listener=TriggerListener(config, queue))
