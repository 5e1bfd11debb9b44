"""Tests for BranchPoller."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from shipline.shared.infrastructure.execution import CommandResult
from shipline.trigger.listener import TriggerListener
from shipline.trigger.poller import BranchPoller


def _ls_remote(**heads):
    stdout = "".join(f"{sha}\trefs/heads/{branch}\n" for branch, sha in heads.items())
    return CommandResult(command="git ls-remote", exit_code=0, stdout=stdout, stderr="", duration=0.2)


@pytest.fixture
def queue():
    return MagicMock()


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.run_async = AsyncMock()
    return executor


@pytest.fixture
def poller(pipeline_config, queue, executor):
    return BranchPoller(TriggerListener(pipeline_config, queue), interval=0.01, executor=executor)


@pytest.mark.asyncio
async def test_fetch_heads_asks_for_allow_listed_branches(poller, executor):
    executor.run_async.return_value = _ls_remote(main="aaa", staging="bbb")

    assert await poller.fetch_heads() == {"main": "aaa", "staging": "bbb"}
    argv = executor.run_async.call_args[0][0]
    assert argv[:3] == ["git", "ls-remote", "https://github.com/acme/webapp.git"]
    assert set(argv[3:]) == {"refs/heads/main", "refs/heads/staging"}


@pytest.mark.asyncio
async def test_first_round_is_baseline(poller, executor, queue):
    executor.run_async.return_value = _ls_remote(main="aaa")

    assert await poller.poll_once() == []
    queue.submit.assert_not_called()


@pytest.mark.asyncio
async def test_moved_head_triggers_run(poller, executor, queue):
    executor.run_async.side_effect = [_ls_remote(main="aaa", staging="bbb"), _ls_remote(main="ccc", staging="bbb")]

    await poller.poll_once()
    runs = await poller.poll_once()

    assert [(r.branch, r.commit, r.trigger_source) for r in runs] == [("main", "ccc", "poll")]
    queue.submit.assert_called_once()


@pytest.mark.asyncio
async def test_ls_remote_failure_triggers_nothing(poller, executor, queue):
    executor.run_async.return_value = CommandResult(
        command="git ls-remote", exit_code=128, stdout="", stderr="fatal: could not read from remote", duration=0.1
    )

    assert await poller.fetch_heads() == {}
    assert await poller.poll_once() == []
    queue.submit.assert_not_called()
