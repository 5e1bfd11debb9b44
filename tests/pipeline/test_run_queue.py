"""Tests for per-target run serialization."""

import asyncio

import pytest

from shipline.pipeline.application.run_queue import RunQueue
from shipline.pipeline.domain.enums import RunStatus
from shipline.pipeline.domain.models import PipelineRun


class RecordingRunner:
    """Stands in for StageRunner; tracks how many runs overlap per target."""

    def __init__(self, store, hold: float = 0.05):
        self.store = store
        self.hold = hold
        self.active = {}
        self.max_active = {}
        self.order = []
        self.release = None

    async def run(self, run: PipelineRun) -> PipelineRun:
        run.start()
        self.order.append(run.id)
        self.active[run.target] = self.active.get(run.target, 0) + 1
        self.max_active[run.target] = max(self.max_active.get(run.target, 0), self.active[run.target])
        try:
            if self.release is not None:
                await self.release.wait()
            else:
                await asyncio.sleep(self.hold)
        finally:
            self.active[run.target] -= 1
        if run.cancel_requested:
            run.cancel()
        else:
            run.succeed()
        return run


def _run(target="production", commit="abc"):
    return PipelineRun(branch="main", commit=commit, target=target)


@pytest.mark.asyncio
async def test_same_target_runs_one_at_a_time_in_order(run_store):
    runner = RecordingRunner(run_store)
    queue = RunQueue(runner)
    runs = [_run(commit=f"c{i}") for i in range(3)]

    for run in runs:
        queue.submit(run)
    await queue.drain()

    assert runner.max_active["production"] == 1
    assert runner.order == [r.id for r in runs]
    assert all(r.status == RunStatus.SUCCEEDED for r in runs)


@pytest.mark.asyncio
async def test_different_targets_run_concurrently(run_store):
    runner = RecordingRunner(run_store)
    runner.release = asyncio.Event()
    queue = RunQueue(runner)

    queue.submit(_run("production"))
    queue.submit(_run("staging"))
    await asyncio.sleep(0.01)

    assert runner.active == {"production": 1, "staging": 1}
    runner.release.set()
    await queue.drain()


@pytest.mark.asyncio
async def test_submit_persists_pending_run(run_store):
    queue = RunQueue(RecordingRunner(run_store))
    run = _run()

    queue.submit(run)
    stored = run_store.load(run.id)

    assert stored is not None
    assert stored.status == RunStatus.PENDING
    await queue.drain()


@pytest.mark.asyncio
async def test_wait_returns_finished_run(run_store):
    queue = RunQueue(RecordingRunner(run_store))
    run = _run()
    queue.submit(run)

    finished = await queue.wait(run.id)

    assert finished is run
    assert finished.is_terminal


@pytest.mark.asyncio
async def test_cancel_queued_run(run_store):
    runner = RecordingRunner(run_store)
    runner.release = asyncio.Event()
    queue = RunQueue(runner)
    first, second = _run(commit="c1"), _run(commit="c2")
    queue.submit(first)
    queue.submit(second)
    await asyncio.sleep(0.01)

    assert queue.cancel(second.id) is True
    runner.release.set()
    await queue.drain()

    assert first.status == RunStatus.SUCCEEDED
    assert second.status == RunStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_unknown_or_finished_run(run_store):
    queue = RunQueue(RecordingRunner(run_store))
    run = _run()
    queue.submit(run)
    await queue.wait(run.id)

    assert queue.cancel("nope") is False
    assert queue.cancel(run.id) is False


@pytest.mark.asyncio
async def test_drain_with_nothing_queued(run_store):
    await RunQueue(RecordingRunner(run_store)).drain()


@pytest.mark.asyncio
async def test_finished_runs_are_released(run_store):
    queue = RunQueue(RecordingRunner(run_store))
    runs = [_run("production", "c1"), _run("production", "c2"), _run("staging", "c3")]
    for run in runs:
        queue.submit(run)

    await queue.drain()

    assert queue._tasks == {}
    assert queue._runs == {}
    assert queue._locks == {}
    assert all(queue.get(r.id) is None for r in runs)


@pytest.mark.asyncio
async def test_wait_after_release_reads_the_store(run_store):
    queue = RunQueue(RecordingRunner(run_store))
    run = _run()
    queue.submit(run)
    await queue.drain()
    run_store.save(run)

    reloaded = await queue.wait(run.id)

    assert reloaded.id == run.id
    assert reloaded.status == RunStatus.SUCCEEDED
