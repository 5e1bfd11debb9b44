"""
Remote Executor.

``deploy(target, commit)`` renders the atomic deploy script, runs it in a
single SSH session and turns the outcome into either a RemoteProcessHandle
or a DeployError naming the failing step. No retries.
"""

from typing import Callable, Optional

from shipline.deploy.remote_script import (
    STEP_START,
    STEP_SUPERVISE,
    render_deploy_script,
    reported_commit,
    reported_pid,
    steps_reached,
)
from shipline.deploy.ssh_session import STEP_CONNECT, SSHSession, classify_transport_failure
from shipline.deploy.supervisor import PORT_STILL_BOUND_EXIT
from shipline.pipeline.domain.models import DeployTarget, RemoteProcessHandle
from shipline.shared.domain.exceptions import DeployError, SupervisorError
from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[DeployTarget], SSHSession]


class RemoteExecutor:
    """Deploys a commit to a target over one SSH session."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        default_timeout: float = 600.0,
        ssh_binary: str = "ssh",
        connect_timeout: int = 15,
    ):
        self.session_factory = session_factory or (
            lambda target: SSHSession(target, ssh_binary=ssh_binary, connect_timeout=connect_timeout)
        )
        self.default_timeout = default_timeout

    async def deploy(self, target: DeployTarget, commit: str) -> RemoteProcessHandle:
        """
        Deploy ``commit`` to ``target``.

        Returns:
            Handle of the application instance that was started

        Raises:
            DeployError: step is connect, authenticate or the remote step that failed
            SupervisorError: the application port stayed bound
        """
        timeout = target.timeout or self.default_timeout
        script = render_deploy_script(target, commit)
        session = self.session_factory(target)

        logger.info("deploy_started", target=target.name, host=target.host, commit=commit, timeout=timeout)
        result = await session.run_script(script, timeout=timeout)

        steps = steps_reached(result.stdout)
        last_step = steps[-1] if steps else None
        context = {
            "exit_code": result.exit_code,
            "output": result.output,
            "steps": steps,
            "host": target.host,
        }

        if result.is_timeout:
            raise DeployError(
                f"remote session timed out after {timeout}s and was closed",
                step=last_step or STEP_CONNECT,
                context={**context, "timed_out": True},
            )

        if not result.is_success:
            transport_step = classify_transport_failure(result)
            if transport_step and last_step is None:
                raise DeployError(
                    f"could not open session to {target.address}: {result.stderr.strip()[-300:]}",
                    step=transport_step,
                    context=context,
                )
            if last_step == STEP_SUPERVISE and result.exit_code == PORT_STILL_BOUND_EXIT:
                raise SupervisorError(f"port {target.port} is still bound on {target.host}", port=target.port, context=context)
            # A session dropped mid-script lands here too: whatever step was running failed.
            raise DeployError(
                f"remote step exited with {result.exit_code}: {result.stderr.strip()[-300:]}",
                step=last_step or STEP_CONNECT,
                context=context,
            )

        pid = reported_pid(result.stdout)
        if pid is None:
            raise DeployError("remote script finished without reporting a pid", step=STEP_START, context=context)

        handle = RemoteProcessHandle(
            pid=pid,
            host=target.host,
            port=target.port,
            commit=reported_commit(result.stdout) or commit,
            log_file=f"{target.workdir.rstrip('/')}/{target.log_file}",
            service=target.service,
            session_log=result.output,
        )
        logger.info("deploy_succeeded", target=target.name, host=target.host, pid=pid, port=target.port, commit=handle.commit)
        return handle
