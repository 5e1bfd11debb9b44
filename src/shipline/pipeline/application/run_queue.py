"""
Run queue.

Serializes runs per deploy target. The kill-by-port then start sequence on
a host is not atomic, so two runs must never deploy to the same target at
once. Runs for different targets proceed concurrently.

Finished runs are dropped from memory; their record stays in the RunStore.
"""

import asyncio
from typing import Dict, Optional

from shipline.pipeline.application.stage_runner import StageRunner
from shipline.pipeline.domain.models import PipelineRun
from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class RunQueue:
    """FIFO per target; asyncio.Lock wakes waiters in arrival order."""

    def __init__(self, runner: StageRunner):
        self.runner = runner
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._runs: Dict[str, PipelineRun] = {}
        self._active: Dict[str, int] = {}

    def submit(self, run: PipelineRun) -> asyncio.Task:
        """Queue a pending run. Must be called from within the event loop."""
        lock = self._locks.setdefault(run.target, asyncio.Lock())
        self._runs[run.id] = run
        self.runner.store.save(run)
        task = asyncio.get_running_loop().create_task(self._run_serialized(run, lock), name=f"run-{run.id}")
        self._tasks[run.id] = task
        self._active[run.target] = self._active.get(run.target, 0) + 1
        task.add_done_callback(lambda _: self._forget(run))
        logger.info("run_queued", run_id=run.id, target=run.target, waiting=lock.locked())
        return task

    async def _run_serialized(self, run: PipelineRun, lock: asyncio.Lock) -> PipelineRun:
        async with lock:
            return await self.runner.run(run)

    def _forget(self, run: PipelineRun) -> None:
        self._tasks.pop(run.id, None)
        self._runs.pop(run.id, None)
        self._active[run.target] -= 1
        if not self._active[run.target]:
            del self._active[run.target]
            del self._locks[run.target]

    def get(self, run_id: str) -> Optional[PipelineRun]:
        """A queued or running run; finished runs are only in the store."""
        return self._runs.get(run_id)

    async def wait(self, run_id: str) -> Optional[PipelineRun]:
        task = self._tasks.get(run_id)
        if task is None:
            return self.runner.store.load(run_id)
        return await task

    def cancel(self, run_id: str) -> bool:
        """
        Request cancellation at the next stage boundary.

        A deploy already in flight on the remote host is not interrupted.
        Returns False if the run is unknown or already finished.
        """
        run = self._runs.get(run_id)
        if run is None or run.is_terminal:
            return False
        run.request_cancel()
        logger.info("run_cancel_requested", run_id=run_id)
        return True

    async def drain(self) -> None:
        """Wait for every queued run to finish."""
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
