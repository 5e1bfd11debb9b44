"""
Process Supervisor.

``replace(port)`` is a convergence operation: when it returns, nothing is
bound to ``port`` and the caller may start the new instance. Finding
nothing to terminate is success. A process that vanishes before the signal
lands is success. Only a port that stays bound is an error.

Two renditions of the same contract:
- ProcessSupervisor: psutil on the host this process runs on
- replace_port_script: a bash fragment for the remote deploy script
"""

import shlex
import socket
import subprocess
import time
from typing import List, Set

import psutil

from shipline.shared.domain.exceptions import SupervisorError
from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Exit status of the remote fragment when the port is still bound afterwards.
PORT_STILL_BOUND_EXIT = 70


class ProcessSupervisor:
    """Kill-by-port on the local host. Nothing is cached between calls."""

    def __init__(self, use_sudo: bool = False, settle_timeout: float = 5.0, poll_interval: float = 0.1):
        self.use_sudo = use_sudo
        self.settle_timeout = settle_timeout
        self.poll_interval = poll_interval

    def listeners(self, port: int) -> Set[int | None]:
        """
        PIDs with a listening TCP socket on ``port``.

        ``None`` stands for a listener whose owner the OS would not reveal
        (another user's process without privileges).
        """
        pids: Set[int | None] = set()
        for conn in psutil.net_connections(kind="tcp"):
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                pids.add(conn.pid)
        return pids

    def is_bound(self, port: int) -> bool:
        try:
            return bool(self.listeners(port))
        except psutil.AccessDenied:
            return _accepts_connections(port)

    def replace(self, port: int) -> None:
        """
        Ensure nothing is bound to ``port``.

        Raises:
            SupervisorError: If the port is still bound after termination
        """
        try:
            pids = self.listeners(port)
        except psutil.AccessDenied:
            logger.warning("port_table_access_denied", port=port, use_sudo=self.use_sudo)
            pids = {None} if _accepts_connections(port) else set()

        if not pids:
            logger.debug("port_already_free", port=port)
            return

        logger.info("terminating_port_owners", port=port, pids=sorted(p for p in pids if p is not None))
        for pid in pids:
            if pid is None:
                self._escalate(port)
            else:
                self._kill(pid, port)

        deadline = time.monotonic() + self.settle_timeout
        while self.is_bound(port):
            if time.monotonic() >= deadline:
                raise SupervisorError(
                    f"port {port} is still bound after terminating its owner(s)",
                    port=port,
                    context={"pids": sorted(p for p in pids if p is not None)},
                )
            time.sleep(self.poll_interval)

        logger.info("port_freed", port=port)

    def _kill(self, pid: int, port: int) -> None:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            logger.debug("process_already_gone", pid=pid)
        except psutil.AccessDenied:
            logger.warning("kill_access_denied", pid=pid, use_sudo=self.use_sudo)
            if self.use_sudo:
                self._sudo(["kill", "-9", str(pid)])

    def _escalate(self, port: int) -> None:
        if not self.use_sudo:
            logger.warning("port_owner_unknown", port=port)
            return
        self._sudo(["fuser", "-k", "-9", "-n", "tcp", str(port)])

    @staticmethod
    def _sudo(argv: List[str]) -> None:
        # Outcome is judged by re-reading the port table, not by this exit status.
        completed = subprocess.run(["sudo", "-n", *argv], capture_output=True, text=True, check=False)
        logger.debug("sudo_command", command=shlex.join(argv), exit_code=completed.returncode)


def _accepts_connections(port: int) -> bool:
    """Fallback when the port table is unreadable: does anything accept on localhost?"""
    for family, address in ((socket.AF_INET, "127.0.0.1"), (socket.AF_INET6, "::1")):
        try:
            with socket.socket(family, socket.SOCK_STREAM) as sock:
                sock.settimeout(0.5)
                if sock.connect_ex((address, port)) == 0:
                    return True
        except OSError:
            continue
    return False


def replace_port_script(port: int, use_sudo: bool = False, settle_seconds: float = 5.0) -> str:
    """
    Render ``replace(port)`` as a bash fragment.

    Looks the owner up with lsof, falling back to fuser then ss, and sends
    SIGKILL. Whether the port is free is decided separately, from the
    listening socket table (ss) or a loopback connect, which need no
    privileges: an owner the lookup cannot see still counts as bound.
    Exits PORT_STILL_BOUND_EXIT if the port does not clear.
    """
    sudo = "sudo -n " if use_sudo else ""
    tries = max(1, int(settle_seconds / 0.2))
    kill = f"kill -9 $pids 2>/dev/null || {sudo}kill -9 $pids 2>/dev/null || true" if use_sudo else "kill -9 $pids 2>/dev/null || true"
    return f"""\
shipline_port_pids() {{
  if command -v lsof >/dev/null 2>&1; then
    {sudo}lsof -t -iTCP:{port} -sTCP:LISTEN 2>/dev/null || true
  elif command -v fuser >/dev/null 2>&1; then
    {sudo}fuser -n tcp {port} 2>/dev/null || true
  else
    {sudo}ss -tlnp "sport = :{port}" 2>/dev/null | tail -n +2 | grep -o 'pid=[0-9]*' | cut -d= -f2 || true
  fi
}}
shipline_port_bound() {{
  if command -v ss >/dev/null 2>&1; then
    [ -n "$(ss -tln "sport = :{port}" 2>/dev/null | tail -n +2)" ]
  else
    (exec 3<>/dev/tcp/127.0.0.1/{port}) 2>/dev/null
  fi
}}
pids="$(shipline_port_pids | xargs)"
if [ -n "$pids" ]; then
  echo "terminating pid(s) $pids bound to port {port}"
  {kill}
fi
for _ in $(seq 1 {tries}); do
  shipline_port_bound || break
  sleep 0.2
done
if shipline_port_bound; then
  echo "port {port} is still bound${{pids:+ after killing $pids}}" >&2
  exit {PORT_STILL_BOUND_EXIT}
fi
"""
