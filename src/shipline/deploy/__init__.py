"""Deploy module - remote execution and process supervision."""

from shipline.deploy.remote_executor import RemoteExecutor
from shipline.deploy.ssh_session import SSHSession
from shipline.deploy.supervisor import ProcessSupervisor, replace_port_script

__all__ = ["ProcessSupervisor", "RemoteExecutor", "SSHSession", "replace_port_script"]
