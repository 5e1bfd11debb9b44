"""
Command Executor Service.

Runs local processes asynchronously for pipeline stages and the SSH
transport. Handles timeouts, stdin feeding, output capturing, and logging.
"""

import asyncio
import contextlib
import os
import shlex
import signal
import time
from dataclasses import dataclass
from pathlib import Path

from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

EXIT_TIMEOUT = -1
EXIT_SPAWN_ERROR = -2


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration: float
    is_timeout: bool = False

    @property
    def is_success(self) -> bool:
        """Check if command succeeded."""
        return self.exit_code == 0 and not self.is_timeout

    @property
    def output(self) -> str:
        """Combined stdout and stderr, as written to stage logs."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandExecutor:
    """
    Async subprocess wrapper.

    Every process runs in its own session so a timeout can kill the whole
    process group (a shell and everything it spawned, or an ssh client).
    """

    def __init__(self, default_timeout: float = 300.0):
        self.default_timeout = default_timeout

    async def run_async(
        self,
        command: str | list[str],
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        shell: bool = False,
        input_text: str | None = None,
    ) -> CommandResult:
        """
        Execute a command asynchronously.

        Args:
            command: Command string or list of arguments
            cwd: Working directory
            env: Environment variables (merged over os.environ)
            timeout: Execution timeout in seconds
            shell: Run through /bin/sh
            input_text: Text written to the process's stdin, then closed

        Returns:
            CommandResult object. Never raises for process failures: timeouts
            report EXIT_TIMEOUT, spawn failures report EXIT_SPAWN_ERROR.
        """
        start_time = time.perf_counter()
        timeout_val = timeout if timeout is not None else self.default_timeout

        if isinstance(command, str) and not shell:
            cmd_args = shlex.split(command)
        else:
            cmd_args = command

        run_env = os.environ.copy()
        if env:
            run_env.update(env)

        cmd_str = command if isinstance(command, str) else shlex.join(command)
        logger.debug("executing_command", command=cmd_str, cwd=str(cwd) if cwd else "cwd", timeout=timeout_val)

        stdin = asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL
        process = None
        try:
            if shell:
                process = await asyncio.create_subprocess_shell(
                    cmd_str,
                    stdin=stdin,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=run_env,
                    preexec_fn=os.setsid,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *cmd_args,
                    stdin=stdin,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=run_env,
                    preexec_fn=os.setsid,
                )
        except OSError as e:
            logger.error("command_spawn_failed", command=cmd_str, error=str(e))
            return CommandResult(
                command=cmd_str,
                exit_code=EXIT_SPAWN_ERROR,
                stdout="",
                stderr=f"Execution error: {e!s}",
                duration=time.perf_counter() - start_time,
            )

        payload = input_text.encode("utf-8") if input_text is not None else None
        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        readers = {
            asyncio.ensure_future(self._read_stream(process.stdout, stdout_chunks)),
            asyncio.ensure_future(self._read_stream(process.stderr, stderr_chunks)),
        }
        try:
            await asyncio.wait_for(self._feed_and_wait(process, payload, readers), timeout=timeout_val)
        except asyncio.TimeoutError:
            logger.warning("command_timeout", command=cmd_str, timeout=timeout_val)
            await self._kill_group(process)
            # Keep whatever the process printed before it was killed.
            await self._finish_readers(readers)
            partial_stderr = _decode(stderr_chunks)
            return CommandResult(
                command=cmd_str,
                exit_code=EXIT_TIMEOUT,
                stdout=_decode(stdout_chunks),
                stderr=f"{partial_stderr}Command timed out after {timeout_val}s",
                duration=time.perf_counter() - start_time,
                is_timeout=True,
            )
        except asyncio.CancelledError:
            await self._kill_group(process)
            for reader in readers:
                reader.cancel()
            raise

        duration = time.perf_counter() - start_time
        exit_code = process.returncode
        stdout_str = _decode(stdout_chunks)
        stderr_str = _decode(stderr_chunks)

        if exit_code != 0:
            logger.warning(
                "command_failed",
                command=cmd_str,
                exit_code=exit_code,
                stderr_snippet=stderr_str[:200],
            )
        else:
            logger.debug("command_success", command=cmd_str, duration=duration)

        return CommandResult(
            command=cmd_str,
            exit_code=exit_code,
            stdout=stdout_str,
            stderr=stderr_str,
            duration=duration,
        )

    @staticmethod
    async def _read_stream(stream: asyncio.StreamReader, chunks: list[bytes]) -> None:
        while True:
            data = await stream.read(65536)
            if not data:
                return
            chunks.append(data)

    @staticmethod
    async def _feed_and_wait(
        process: asyncio.subprocess.Process,
        payload: bytes | None,
        readers: set[asyncio.Future],
    ) -> None:
        if payload is not None:
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                process.stdin.write(payload)
                await process.stdin.drain()
            process.stdin.close()
        # asyncio.wait, unlike gather, leaves the readers running if this is cancelled.
        await asyncio.wait(readers)
        await process.wait()

    @staticmethod
    async def _finish_readers(readers: set[asyncio.Future], grace: float = 2.0) -> None:
        """Let readers hit EOF after a kill; a pipe held open elsewhere is abandoned."""
        _, pending = await asyncio.wait(readers, timeout=grace)
        for reader in pending:
            reader.cancel()

    @staticmethod
    async def _kill_group(process: asyncio.subprocess.Process) -> None:
        """Kill the process group so children die too, then reap."""
        with contextlib.suppress(ProcessLookupError):
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        with contextlib.suppress(ProcessLookupError):
            await process.wait()


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")
