"""
Stage actions.

The work behind each stage: checkout into an isolated workspace, build and
test via the configured shell commands, deploy through the Remote Executor.
Each action returns a StageOutcome on success and raises the matching
StageError subclass on failure.
"""

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shipline.deploy.remote_executor import RemoteExecutor
from shipline.pipeline.domain.enums import StageName
from shipline.pipeline.domain.models import DeployTarget, PipelineRun, RemoteProcessHandle, Stage
from shipline.shared.domain.exceptions import BuildError, CheckoutError, TestFailure
from shipline.shared.infrastructure.execution import CommandExecutor, CommandResult
from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StageOutcome:
    """What a successful stage produced."""

    output: str = ""
    exit_code: Optional[int] = 0
    handle: Optional[RemoteProcessHandle] = None
    commit: Optional[str] = None  # full SHA, set by checkout


class StageActions:
    """Executes individual stages for the Stage Runner."""

    def __init__(
        self,
        repository: str,
        executor: Optional[CommandExecutor] = None,
        remote_executor: Optional[RemoteExecutor] = None,
        stage_timeout: float = 1800.0,
    ):
        self.repository = repository
        self.executor = executor or CommandExecutor(default_timeout=stage_timeout)
        self.remote_executor = remote_executor or RemoteExecutor()
        self.stage_timeout = stage_timeout

    async def execute(
        self,
        stage: Stage,
        run: PipelineRun,
        workspace: Path,
        target: DeployTarget,
    ) -> StageOutcome:
        if stage.name is StageName.CHECKOUT:
            return await self.checkout(stage, run, workspace)
        if stage.name is StageName.BUILD:
            return await self._shell_stage(stage, run, workspace, BuildError)
        if stage.name is StageName.TEST:
            return await self._shell_stage(stage, run, workspace, TestFailure)
        return await self.deploy(run, target)

    async def checkout(self, stage: Stage, run: PipelineRun, workspace: Path) -> StageOutcome:
        """Clone the repository and detach HEAD at exactly ``run.commit``."""
        timeout = stage.timeout or self.stage_timeout
        if workspace.exists():
            shutil.rmtree(workspace)
        workspace.parent.mkdir(parents=True, exist_ok=True)

        transcript = []

        async def git(*args: str, cwd: Optional[Path] = None) -> CommandResult:
            result = await self.executor.run_async(["git", *args], cwd=cwd, timeout=timeout)
            transcript.append(f"$ {result.command}\n{result.output}")
            return result

        clone = await git("clone", "--quiet", "--no-checkout", self.repository, str(workspace))
        if not clone.is_success:
            raise CheckoutError(
                f"Could not clone {self.repository}",
                context={"exit_code": clone.exit_code, "output": "\n".join(transcript)},
            )

        resolved = await git("rev-parse", "--verify", "--quiet", f"{run.commit}^{{commit}}", cwd=workspace)
        if not resolved.is_success:
            # Commits not reachable from any advertised ref need an explicit fetch.
            await git("fetch", "--quiet", "origin", run.commit, cwd=workspace)
            resolved = await git("rev-parse", "--verify", "--quiet", f"{run.commit}^{{commit}}", cwd=workspace)
        if not resolved.is_success:
            raise CheckoutError(
                f"Cannot resolve commit reference {run.commit!r}",
                context={"exit_code": resolved.exit_code, "output": "\n".join(transcript)},
            )

        sha = resolved.stdout.strip()
        checkout = await git("checkout", "--quiet", "--detach", sha, cwd=workspace)
        if not checkout.is_success:
            raise CheckoutError(
                f"Could not check out {sha}",
                context={"exit_code": checkout.exit_code, "output": "\n".join(transcript)},
            )

        logger.info("workspace_checked_out", run_id=run.id, commit=sha, workspace=str(workspace))
        return StageOutcome(output="\n".join(transcript), exit_code=0, commit=sha)

    async def _shell_stage(self, stage: Stage, run: PipelineRun, workspace: Path, error_cls: type) -> StageOutcome:
        if not stage.command:
            logger.info("stage_has_no_command", run_id=run.id, stage=stage.name.value)
            return StageOutcome(output="no command configured\n")

        result = await self.executor.run_async(
            stage.command,
            cwd=workspace,
            shell=True,
            timeout=stage.timeout or self.stage_timeout,
            env={
                "SHIPLINE_RUN_ID": run.id,
                "SHIPLINE_BRANCH": run.branch,
                "SHIPLINE_COMMIT": run.revision,
            },
        )
        if not result.is_success:
            reason = "timed out" if result.is_timeout else f"exited with {result.exit_code}"
            raise error_cls(
                f"{stage.name.value} command {reason}",
                context={"exit_code": result.exit_code, "output": result.output},
            )
        return StageOutcome(output=result.output, exit_code=result.exit_code)

    async def deploy(self, run: PipelineRun, target: DeployTarget) -> StageOutcome:
        handle = await self.remote_executor.deploy(target, run.revision)
        return StageOutcome(output=handle.session_log, exit_code=0, handle=handle)
