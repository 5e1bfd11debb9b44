"""
SSH transport.

Runs a script on the deploy target through the system OpenSSH client: the
script goes to ``bash -s`` over stdin, so the whole deploy is one
authenticated session and one exit status.
"""

from typing import List, Optional

from shipline.pipeline.domain.models import DeployTarget
from shipline.shared.infrastructure.execution import CommandExecutor, CommandResult
from shipline.shared.infrastructure.execution.command_executor import EXIT_SPAWN_ERROR

# OpenSSH reports its own failures (as opposed to the remote command's) with 255.
SSH_TRANSPORT_FAILURE = 255

_AUTH_MARKERS = (
    "permission denied",
    "host key verification failed",
    "no supported authentication methods",
    "too many authentication failures",
)

STEP_CONNECT = "connect"
STEP_AUTHENTICATE = "authenticate"


class SSHSession:
    """One non-interactive session against one DeployTarget."""

    def __init__(
        self,
        target: DeployTarget,
        executor: Optional[CommandExecutor] = None,
        ssh_binary: str = "ssh",
        connect_timeout: int = 15,
    ):
        self.target = target
        self.executor = executor or CommandExecutor()
        self.ssh_binary = ssh_binary
        self.connect_timeout = connect_timeout

    def argv(self, remote_command: str = "bash -s") -> List[str]:
        args = [
            self.ssh_binary,
            "-T",
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", "ServerAliveInterval=15",
            "-o", "ServerAliveCountMax=3",
            "-p", str(self.target.ssh_port),
        ]
        if self.target.credential:
            args += ["-i", self.target.credential, "-o", "IdentitiesOnly=yes"]
        args += [self.target.address, remote_command]
        return args

    async def run_script(self, script: str, timeout: float) -> CommandResult:
        """Run ``script`` remotely; on timeout the ssh client is killed, closing the session."""
        return await self.executor.run_async(self.argv(), timeout=timeout, input_text=script)


def classify_transport_failure(result: CommandResult) -> Optional[str]:
    """
    Name the session-level step a failure belongs to, if it is one.

    Returns "authenticate", "connect", or None when the remote side ran
    and the failure is the script's own.
    """
    if result.exit_code == EXIT_SPAWN_ERROR:
        return STEP_CONNECT
    if result.exit_code != SSH_TRANSPORT_FAILURE:
        return None
    stderr = result.stderr.lower()
    if any(marker in stderr for marker in _AUTH_MARKERS):
        return STEP_AUTHENTICATE
    return STEP_CONNECT
