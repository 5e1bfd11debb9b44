"""
Stage Runner.

Drives one PipelineRun through the fixed stage sequence
(checkout, build, test, deploy) and leaves it in a terminal state.
"""

import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import structlog

from shipline.pipeline.application.stage_actions import StageActions, StageOutcome
from shipline.pipeline.domain.enums import FailurePolicy, StageStatus
from shipline.pipeline.domain.models import PipelineConfig, PipelineRun, Stage, StageResult
from shipline.pipeline.infrastructure.run_store import RunStore
from shipline.shared.domain.exceptions import StageError
from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class StageRunner:
    """
    Executes stages strictly in order.

    For each stage:
    - a result is recorded whether it passed or failed
    - a failure under fail-fast marks the run failed and skips the rest
    - a failure under continue-on-error (the test stage by default) is
      recorded and the run moves on
    - cancellation is honoured only between stages
    """

    def __init__(
        self,
        config: PipelineConfig,
        store: RunStore,
        actions: Optional[StageActions] = None,
        keep_workspaces: bool = False,
        progress_callback: Optional[Callable[[PipelineRun, StageResult], None]] = None,
    ):
        self.config = config
        self.store = store
        self.actions = actions or StageActions(repository=config.repository)
        self.keep_workspaces = keep_workspaces
        self.progress_callback = progress_callback

    async def run(self, run: PipelineRun) -> PipelineRun:
        """Run all stages and return the run in a terminal state."""
        target = self.config.targets[run.target]
        workspace = self.store.workspace(run.id)

        structlog.contextvars.bind_contextvars(run_id=run.id, branch=run.branch, target=run.target)
        try:
            run.start()
            self.store.save(run)
            logger.info("run_started", commit=run.commit)

            for stage in self.config.stages:
                if run.cancel_requested:
                    logger.info("run_cancelled_at_boundary", next_stage=stage.name.value)
                    run.cancel()
                    break

                result, outcome = await self._execute_stage(stage, run, workspace, target)
                run.record(result)
                if outcome is not None and outcome.commit:
                    run.resolve_commit(outcome.commit)
                if outcome is not None and outcome.handle is not None:
                    run.attach_handle(outcome.handle)
                self.store.save(run)
                if self.progress_callback:
                    self.progress_callback(run, result)

                if result.fatal:
                    run.fail(f"{stage.name.value}: {result.error}")
                    break
            else:
                run.succeed()

            self.store.save(run)
            logger.info(
                "run_finished",
                status=run.status.value,
                duration=run.duration,
                stages=[f"{r.stage.value}:{r.status.value}" for r in run.stage_results],
            )
            return run
        finally:
            if not self.keep_workspaces and workspace.exists():
                shutil.rmtree(workspace, ignore_errors=True)
            structlog.contextvars.unbind_contextvars("run_id", "branch", "target")

    async def _execute_stage(self, stage: Stage, run: PipelineRun, workspace: Path, target):
        logger.info("stage_started", stage=stage.name.value, policy=stage.policy.value)
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        outcome: Optional[StageOutcome] = None
        error: Optional[Exception] = None

        try:
            outcome = await self.actions.execute(stage, run, workspace, target)
        except StageError as e:
            error = e
        except Exception as e:
            # Unknown failures are always fatal, whatever the stage policy.
            logger.exception("stage_crashed", stage=stage.name.value)
            error = e

        duration = time.perf_counter() - start

        if error is None:
            output_path = self.store.write_stage_log(run.id, stage.name, outcome.output)
            logger.info("stage_passed", stage=stage.name.value, duration=duration)
            return StageResult(
                stage=stage.name,
                status=StageStatus.PASSED,
                duration=duration,
                exit_code=outcome.exit_code,
                output_path=str(output_path),
                started_at=started_at,
            ), outcome

        is_stage_error = isinstance(error, StageError)
        fatal = not is_stage_error or stage.policy is FailurePolicy.FAIL_FAST
        output = error.output if is_stage_error else f"{type(error).__name__}: {error}"
        output_path = self.store.write_stage_log(run.id, stage.name, output)

        log = logger.error if fatal else logger.warning
        log(
            "stage_failed",
            stage=stage.name.value,
            error=str(error),
            error_type=type(error).__name__,
            fatal=fatal,
        )
        return StageResult(
            stage=stage.name,
            status=StageStatus.FAILED,
            duration=duration,
            exit_code=error.exit_code if is_stage_error else None,
            output_path=str(output_path),
            error=str(error),
            error_type=type(error).__name__,
            fatal=fatal,
            started_at=started_at,
        ), None
