"""
Branch poller.

Alternative to the webhook: asks the repository for the head of every
allow-listed branch with ``git ls-remote`` and emits a push event when a
head moves. The first observation of a branch only records a baseline.
"""

import asyncio
from typing import Dict, List, Optional

from shipline.pipeline.domain.models import PipelineRun, PushEvent
from shipline.shared.infrastructure.execution import CommandExecutor
from shipline.shared.infrastructure.logging import get_logger
from shipline.trigger.listener import TriggerListener

logger = get_logger(__name__)


class BranchPoller:
    def __init__(
        self,
        listener: TriggerListener,
        interval: float = 60.0,
        executor: Optional[CommandExecutor] = None,
    ):
        self.listener = listener
        self.interval = interval
        self.executor = executor or CommandExecutor(default_timeout=60.0)
        self.heads: Dict[str, str] = {}

    async def fetch_heads(self) -> Dict[str, str]:
        """Current head commit of each allow-listed branch that exists remotely."""
        branches = list(self.listener.config.branches)
        refs = [f"refs/heads/{branch}" for branch in branches]
        result = await self.executor.run_async(["git", "ls-remote", self.listener.config.repository, *refs])
        if not result.is_success:
            logger.warning("ls_remote_failed", exit_code=result.exit_code, stderr=result.stderr.strip()[:200])
            return {}

        heads = {}
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1].startswith("refs/heads/"):
                heads[parts[1][len("refs/heads/"):]] = parts[0]
        return heads

    async def poll_once(self) -> List[PipelineRun]:
        """One polling round. Returns the runs it started."""
        runs = []
        for branch, commit in (await self.fetch_heads()).items():
            previous = self.heads.get(branch)
            self.heads[branch] = commit
            if previous is None:
                logger.info("branch_baseline", branch=branch, commit=commit)
                continue
            if previous == commit:
                continue
            run = self.listener.on_push(PushEvent(branch=branch, commit=commit, source="poll"))
            if run is not None:
                runs.append(run)
        return runs

    async def run_forever(self) -> None:
        logger.info("poller_started", interval=self.interval, branches=list(self.listener.config.branches))
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)
