"""
Run the rendered deploy script for real, on this machine.

The "ssh client" is a shell script that hands its stdin to ``bash -s``,
so every step runs exactly as it would on a target host. The target's
repository is a local git repository and the application is Python's
own http.server bound to a free loopback port.
"""

import shlex
import shutil
import socket
import subprocess
import sys
import time

import psutil
import pytest
import pytest_asyncio

from shipline.deploy.remote_executor import RemoteExecutor
from shipline.deploy.remote_script import EXIT_NOT_A_CHECKOUT, EXIT_START_FAILED
from shipline.deploy.ssh_session import SSHSession
from shipline.deploy.supervisor import ProcessSupervisor
from shipline.pipeline.domain.models import DeployTarget
from shipline.shared.domain.exceptions import DeployError

pytestmark = [
    pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed"),
    pytest.mark.skipif(shutil.which("git") is None, reason="git not installed"),
    pytest.mark.skipif(not sys.platform.startswith("linux"), reason="uses the Linux port table"),
]

requires_port_lookup = pytest.mark.skipif(
    not any(shutil.which(tool) for tool in ("lsof", "fuser", "ss")),
    reason="needs lsof, fuser or ss to find the port owner",
)


def _git(repo, *args):
    return subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _alive(pid):
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def _family(pid):
    """``pid`` and every descendant; ``sh -c`` may or may not exec its command."""
    try:
        process = psutil.Process(pid)
        return {pid} | {child.pid for child in process.children(recursive=True)}
    except psutil.NoSuchProcess:
        return set()


def _wait_for_listener(port, timeout=10.0):
    supervisor = ProcessSupervisor()
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        owners = supervisor.listeners(port)
        if owners:
            return owners
        time.sleep(0.1)
    return set()


@pytest.fixture
def origin(tmp_path):
    """A repository on branch main; returns (path, head_sha)."""
    repo = tmp_path / "origin"
    repo.mkdir()
    _git(repo, "init", "--quiet")
    _git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    (repo / "app.py").write_text("VERSION = 1\n")
    (repo / ".gitignore").write_text(".venv/\napp.log\n")
    _git(repo, "add", "app.py", ".gitignore")
    _git(repo, "commit", "--quiet", "-m", "first")
    return repo, _git(repo, "rev-parse", "HEAD")


@pytest.fixture
def fake_bin(tmp_path):
    """An ssh that runs the script locally, and a python that builds a bare venv."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    ssh = bin_dir / "ssh"
    ssh.write_text("#!/bin/sh\nexec bash -s\n")
    ssh.chmod(0o755)
    python = bin_dir / "python"
    # Invoked as: python -m venv <dir>
    python.write_text(f'#!/bin/sh\nmkdir -p "$3/bin"\nln -sf {shlex.quote(sys.executable)} "$3/bin/python"\n')
    python.chmod(0o755)
    return bin_dir


@pytest.fixture
def make_target(tmp_path, origin, fake_bin):
    def _make(**overrides):
        values = dict(
            name="local",
            host="localhost",
            workdir=str(tmp_path / "srv" / "webapp"),
            port=_free_port(),
            repository=str(origin[0]),
            python=str(fake_bin / "python"),
            start_command="python -m http.server {port} --bind 127.0.0.1",
            timeout=60,
        )
        values.update(overrides)
        return DeployTarget(**values)

    return _make


@pytest_asyncio.fixture
async def deployer(fake_bin):
    """Deploys through the fake ssh; kills every instance it started on teardown."""
    started = []
    executor = RemoteExecutor(session_factory=lambda target: SSHSession(target, ssh_binary=str(fake_bin / "ssh")))

    async def _deploy(target, commit):
        handle = await executor.deploy(target, commit)
        started.append(handle.pid)
        return handle

    yield _deploy

    for pid in started:
        for member in _family(pid):
            try:
                psutil.Process(member).kill()
            except psutil.NoSuchProcess:
                pass


@requires_port_lookup
@pytest.mark.asyncio
async def test_redeploy_discards_drift_and_replaces_instance(make_target, deployer, origin):
    _, sha = origin
    target = make_target()
    workdir = target.workdir

    first = await deployer(target, sha)
    assert _wait_for_listener(target.port) & _family(first.pid)

    with open(f"{workdir}/app.py", "a") as f:
        f.write("HOTFIX = True\n")
    with open(f"{workdir}/scratch.txt", "w") as f:
        f.write("left behind\n")

    second = await deployer(target, sha)

    assert second.commit == sha
    assert _git(workdir, "rev-parse", "HEAD") == sha
    assert _git(workdir, "status", "--porcelain") == ""
    assert not _alive(first.pid)
    assert second.pid != first.pid
    assert _wait_for_listener(target.port) & _family(second.pid)


@requires_port_lookup
@pytest.mark.asyncio
async def test_foreign_process_on_port_is_replaced(make_target, deployer, origin):
    _, sha = origin
    target = make_target()
    squatter = subprocess.Popen(
        [sys.executable, "-m", "http.server", str(target.port), "--bind", "127.0.0.1"],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    try:
        assert squatter.pid in _wait_for_listener(target.port)

        handle = await deployer(target, sha)

        assert squatter.wait(timeout=10) != 0
        assert _wait_for_listener(target.port) & _family(handle.pid)
    finally:
        if squatter.poll() is None:
            squatter.kill()
            squatter.wait()


@pytest.mark.asyncio
async def test_branch_redeploy_follows_origin(make_target, deployer, origin):
    repo, first_sha = origin
    target = make_target(start_command="sleep 30")

    first = await deployer(target, "main")
    assert first.commit == first_sha

    (repo / "app.py").write_text("VERSION = 2\n")
    _git(repo, "commit", "--quiet", "-am", "second")
    second_sha = _git(repo, "rev-parse", "HEAD")

    second = await deployer(target, "main")

    assert second.commit == second_sha
    assert _git(target.workdir, "rev-parse", "HEAD") == second_sha
    with open(f"{target.workdir}/app.py") as f:
        assert f.read() == "VERSION = 2\n"


@pytest.mark.asyncio
async def test_workdir_that_is_not_a_checkout(make_target, deployer, origin, tmp_path):
    _, sha = origin
    target = make_target()
    workdir = tmp_path / "srv" / "webapp"
    workdir.mkdir(parents=True)
    (workdir / "index.html").write_text("hand-copied site\n")

    with pytest.raises(DeployError, match="exited with 65") as exc:
        await deployer(target, sha)

    assert exc.value.step == "sync"
    assert exc.value.context["exit_code"] == EXIT_NOT_A_CHECKOUT
    assert (workdir / "index.html").exists()


@pytest.mark.asyncio
async def test_application_that_dies_at_start(make_target, deployer, origin):
    _, sha = origin
    target = make_target(start_command="echo 'cannot import app' >&2; exit 3")

    with pytest.raises(DeployError) as exc:
        await deployer(target, sha)

    assert exc.value.step == "start"
    assert exc.value.context["exit_code"] == EXIT_START_FAILED
    assert "cannot import app" in exc.value.context["output"]
