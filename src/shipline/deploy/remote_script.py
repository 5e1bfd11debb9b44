"""
Atomic remote deploy script.

The whole deploy runs as one bash script in one SSH session under
``set -euo pipefail``: the first failing command ends the session with a
non-zero status, so there is no partially successful deploy. Each step
announces itself on stdout so the caller can name the step that failed.

Steps:
    prepare   - ensure the working directory exists
    sync      - clone if absent, else fetch and hard-reset to the commit
    install   - ensure the virtualenv exists, install requirements
    supervise - free the application port (stop the service first if any)
    start     - start the application detached and report its pid
"""

import re
import shlex
from typing import List, Optional

from shipline.deploy.supervisor import replace_port_script
from shipline.pipeline.domain.models import DeployTarget

STEP_MARKER = "::shipline-step::"
PID_MARKER = "::shipline-pid::"
COMMIT_MARKER = "::shipline-commit::"

STEP_PREPARE = "prepare"
STEP_SYNC = "sync"
STEP_INSTALL = "install"
STEP_SUPERVISE = "supervise"
STEP_START = "start"
REMOTE_STEPS = (STEP_PREPARE, STEP_SYNC, STEP_INSTALL, STEP_SUPERVISE, STEP_START)

# Exit statuses raised by the script itself.
EXIT_NOT_A_CHECKOUT = 65
EXIT_START_FAILED = 66

# Seconds the started process must survive before the deploy counts as started.
START_GRACE_SECONDS = 1

_STEP_RE = re.compile(rf"^{re.escape(STEP_MARKER)}(\w+)\s*$", re.MULTILINE)
_PID_RE = re.compile(rf"^{re.escape(PID_MARKER)}(\d+)\s*$", re.MULTILINE)
_COMMIT_RE = re.compile(rf"^{re.escape(COMMIT_MARKER)}([0-9a-f]{{40,64}})\s*$", re.MULTILINE)
_SHA_RE = re.compile(r"^[0-9a-f]{7,64}$")


def render_deploy_script(target: DeployTarget, commit: str) -> str:
    """
    Render the deploy script for ``target`` at ``commit``.

    Deterministic: the same target and commit always yield the same
    script, and running it twice converges on the same remote state.
    """
    q = shlex.quote
    sudo = "sudo -n " if target.use_sudo else ""
    venv = target.venv.rstrip("/")

    sections = [
        "set -euo pipefail",
        f'step() {{ echo "{STEP_MARKER}$1"; }}',
        "",
        f"step {STEP_PREPARE}",
        f"mkdir -p {q(target.workdir)}",
        f"cd {q(target.workdir)}",
        "",
        f"step {STEP_SYNC}",
        "if [ ! -d .git ]; then",
        '  if [ -n "$(ls -A . 2>/dev/null)" ]; then',
        f'    echo "{target.workdir} exists but is not a git checkout" >&2',
        f"    exit {EXIT_NOT_A_CHECKOUT}",
        "  fi",
        f"  git clone --quiet {q(target.repository)} .",
        "fi",
        f'if [ "$(git config --get remote.origin.url || true)" != {q(target.repository)} ]; then',
        f"  git remote set-url origin {q(target.repository)}",
        "fi",
        "git fetch --quiet --prune origin",
        *_reset_commands(commit),
        f'echo "{COMMIT_MARKER}$(git rev-parse HEAD)"',
        f"git clean -fdq -e {q(venv)} -e {q(target.log_file)}",
        "",
        f"step {STEP_INSTALL}",
        f"if [ ! -x {q(venv + '/bin/python')} ]; then",
        f"  {q(target.python)} -m venv {q(venv)}",
        "fi",
        f"if [ -f {q(target.requirements)} ]; then",
        f"  {q(venv + '/bin/python')} -m pip install --quiet --disable-pip-version-check -r {q(target.requirements)}",
        "else",
        f'  echo "no {target.requirements}, skipping dependency install"',
        "fi",
        "",
        f"step {STEP_SUPERVISE}",
    ]

    if target.service:
        sections.append(f"{sudo}systemctl stop {q(target.service)} || true")
    sections.append(replace_port_script(target.port, use_sudo=target.use_sudo).rstrip("\n"))
    sections += ["", f"step {STEP_START}"]

    if target.service:
        sections += [
            f"{sudo}systemctl start {q(target.service)}",
            f"pid=\"$(systemctl show -p MainPID --value {q(target.service)})\"",
        ]
    else:
        sections += [
            f'export PATH="$PWD/{venv}/bin:$PATH"',
            f"nohup sh -c {q(target.rendered_start_command())} >> {q(target.log_file)} 2>&1 < /dev/null &",
            "pid=$!",
        ]

    sections += [
        f"sleep {START_GRACE_SECONDS}",
        'if [ -z "$pid" ] || [ "$pid" = "0" ] || ! { kill -0 "$pid" 2>/dev/null || [ -d "/proc/$pid" ]; }; then',
        '  echo "application exited right after start" >&2',
        f"  tail -n 20 {q(target.log_file)} >&2 2>/dev/null || true",
        f"  exit {EXIT_START_FAILED}",
        "fi",
        f'echo "{PID_MARKER}$pid"',
        "",
    ]
    return "\n".join(sections)


def _reset_commands(commit: str) -> List[str]:
    """Hard reset to ``commit``. Remote drift is discarded, never merged."""
    q = shlex.quote
    if _SHA_RE.match(commit):
        return [
            f"git cat-file -e {q(commit + '^{commit}')} 2>/dev/null || git fetch --quiet origin {q(commit)}",
            f"git reset --quiet --hard {q(commit)}",
        ]
    # A branch or tag name is read from origin, never from a stale local ref of the same name.
    return [
        f"git fetch --quiet origin {q(commit)}",
        "git reset --quiet --hard FETCH_HEAD",
    ]


def steps_reached(stdout: str) -> List[str]:
    """Step markers in the order the remote script printed them."""
    return _STEP_RE.findall(stdout)


def reported_pid(stdout: str) -> Optional[int]:
    match = _PID_RE.search(stdout)
    return int(match.group(1)) if match else None


def reported_commit(stdout: str) -> Optional[str]:
    """The SHA the remote checkout was reset to."""
    match = _COMMIT_RE.search(stdout)
    return match.group(1) if match else None
