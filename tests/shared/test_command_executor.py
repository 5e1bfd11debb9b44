"""Tests for CommandExecutor."""

import asyncio

import pytest

from shipline.shared.infrastructure.execution import CommandExecutor
from shipline.shared.infrastructure.execution.command_executor import EXIT_SPAWN_ERROR, EXIT_TIMEOUT


@pytest.fixture
def executor():
    return CommandExecutor(default_timeout=10)


@pytest.mark.asyncio
async def test_captures_stdout(executor):
    result = await executor.run_async(["echo", "hello"])

    assert result.is_success
    assert result.stdout == "hello\n"
    assert result.command == "echo hello"


@pytest.mark.asyncio
async def test_failure_keeps_exit_code_and_stderr(executor):
    result = await executor.run_async("echo out; echo err >&2; exit 4", shell=True)

    assert not result.is_success
    assert result.exit_code == 4
    assert result.output == "out\nerr\n"


@pytest.mark.asyncio
async def test_input_text_goes_to_stdin(executor):
    result = await executor.run_async(["cat"], input_text="line one\nline two\n")
    assert result.stdout == "line one\nline two\n"


@pytest.mark.asyncio
async def test_env_and_cwd(executor, tmp_path):
    result = await executor.run_async('echo "$SHIPLINE_BRANCH" && pwd', shell=True, cwd=tmp_path, env={"SHIPLINE_BRANCH": "main"})
    assert result.stdout.splitlines() == ["main", str(tmp_path.resolve())]


@pytest.mark.asyncio
async def test_timeout_kills_process_group(executor):
    result = await executor.run_async("sleep 30 & sleep 30", shell=True, timeout=0.2)

    assert result.is_timeout
    assert result.exit_code == EXIT_TIMEOUT
    assert not result.is_success
    assert result.duration < 5


@pytest.mark.asyncio
async def test_missing_binary_is_spawn_error(executor):
    result = await executor.run_async(["definitely-not-a-real-binary-xyz"])

    assert result.exit_code == EXIT_SPAWN_ERROR
    assert "Execution error" in result.stderr


@pytest.mark.asyncio
async def test_cancellation_propagates(executor):
    task = asyncio.create_task(executor.run_async(["sleep", "30"]))
    await asyncio.sleep(0.1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_timeout_keeps_output_printed_before_kill(executor):
    result = await executor.run_async("echo first; echo oops >&2; sleep 30", shell=True, timeout=0.5)

    assert result.is_timeout
    assert result.stdout == "first\n"
    assert result.stderr.startswith("oops\n")
    assert "timed out" in result.stderr


@pytest.mark.asyncio
async def test_large_stdin_and_stdout(executor):
    text = "x" * 200_000 + "\n"
    result = await executor.run_async(["cat"], input_text=text)
    assert result.stdout == text
