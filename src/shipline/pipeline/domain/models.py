"""
Pipeline domain models.

Core entities for one build, test and deploy run: the run itself, its
fixed stage sequence and per-stage results, plus the static deploy target
configuration and the handle of the application instance a deploy started.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from shipline.pipeline.domain.enums import FailurePolicy, RunStatus, StageName, StageStatus
from shipline.shared.domain.base_model import BaseDomainModel
from shipline.shared.domain.exceptions import RunStateError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PushEvent(BaseDomainModel):
    """A push notification: which branch moved to which commit."""

    branch: str
    commit: str
    source: str = "manual"  # "webhook", "poll" or "manual"
    delivery_id: Optional[str] = None


@dataclass(frozen=True)
class Stage(BaseDomainModel):
    """
    One named unit of pipeline work.

    ``command`` is the shell command for build and test. Checkout and
    deploy are built-in actions and ignore it.
    """

    name: StageName
    policy: FailurePolicy = FailurePolicy.FAIL_FAST
    command: Optional[str] = None
    timeout: Optional[float] = None


DEFAULT_STAGES: Tuple[Stage, ...] = (
    Stage(StageName.CHECKOUT),
    Stage(
        StageName.BUILD,
        command="python3 -m venv .venv && .venv/bin/pip install -r requirements.txt",
    ),
    # Test failures are recorded but never block the deploy.
    Stage(
        StageName.TEST,
        policy=FailurePolicy.CONTINUE_ON_ERROR,
        command=".venv/bin/python -m pytest",
    ),
    Stage(StageName.DEPLOY),
)


@dataclass(frozen=True)
class StageResult(BaseDomainModel):
    """
    Record of one completed stage. Appended to a run, never mutated.

    ``output_path`` references the captured stage output on disk.
    """

    stage: StageName
    status: StageStatus
    duration: float
    exit_code: Optional[int] = None
    output_path: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    fatal: bool = False
    started_at: datetime = field(default_factory=_utcnow)

    @property
    def passed(self) -> bool:
        return self.status is StageStatus.PASSED


@dataclass(frozen=True)
class DeployTarget(BaseDomainModel):
    """
    Static, read-only description of a host the application is deployed to.

    ``credential`` is a path to an SSH private key; None defers to the
    ssh agent and ~/.ssh/config. ``start_command`` may contain ``{port}``.
    """

    name: str
    host: str
    workdir: str
    port: int
    repository: str
    user: Optional[str] = None
    credential: Optional[str] = None
    ssh_port: int = 22
    requirements: str = "requirements.txt"
    venv: str = ".venv"
    python: str = "python3"
    start_command: str = "python app.py"
    log_file: str = "app.log"
    service: Optional[str] = None
    use_sudo: bool = False
    timeout: Optional[float] = None

    @property
    def address(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    def rendered_start_command(self) -> str:
        return self.start_command.replace("{port}", str(self.port))


@dataclass(frozen=True)
class RemoteProcessHandle(BaseDomainModel):
    """
    The application instance a deploy started on the target host.

    Valid for the lifetime of that instance only; each deploy produces a
    new handle rather than updating an old one.
    """

    pid: int
    host: str
    port: int
    commit: str
    started_at: datetime = field(default_factory=_utcnow)
    log_file: Optional[str] = None
    service: Optional[str] = None
    session_log: str = field(default="", repr=False, compare=False, metadata={"json": False})


@dataclass(frozen=True)
class PipelineConfig(BaseDomainModel):
    """
    Pipeline definition loaded from shipline.yaml.

    ``branches`` is the allow-list, mapping each eligible branch to the
    name of the target it deploys to.
    """

    repository: str
    branches: Dict[str, str]
    targets: Dict[str, DeployTarget]
    stages: Tuple[Stage, ...] = DEFAULT_STAGES

    def is_allowed(self, branch: str) -> bool:
        return branch in self.branches

    def target_for(self, branch: str) -> Optional[DeployTarget]:
        name = self.branches.get(branch)
        return self.targets.get(name) if name else None

    def stage(self, name: StageName) -> Stage:
        for stage in self.stages:
            if stage.name is name:
                return stage
        raise KeyError(name)


@dataclass
class PipelineRun(BaseDomainModel):
    """
    One execution of the pipeline for one pushed commit.

    Created pending on trigger receipt, mutated only by the Stage Runner
    through the transition methods below, immutable once terminal.
    """

    branch: str
    commit: str
    target: str
    id: str = field(default_factory=lambda: uuid4().hex[:12])
    status: RunStatus = RunStatus.PENDING
    stage_results: List[StageResult] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: float = 0.0
    error: Optional[str] = None
    handle: Optional[RemoteProcessHandle] = None
    cancel_requested: bool = False
    trigger_source: str = "manual"
    resolved_commit: Optional[str] = None

    @classmethod
    def from_event(cls, event: PushEvent, target: str) -> "PipelineRun":
        return cls(branch=event.branch, commit=event.commit, target=target, trigger_source=event.source)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def exit_code(self) -> int:
        """Process exit status to surface to the triggering system."""
        if self.status is RunStatus.SUCCEEDED:
            return 0
        if self.status is RunStatus.FAILED:
            return 1
        if self.status is RunStatus.CANCELLED:
            return 2
        return 3

    def result_for(self, stage: StageName) -> Optional[StageResult]:
        return next((r for r in self.stage_results if r.stage is stage), None)

    def _ensure_mutable(self, action: str) -> None:
        if self.is_terminal:
            raise RunStateError(
                f"Cannot {action} run {self.id}: already {self.status.value}",
                context={"run_id": self.id, "status": self.status.value},
            )

    def start(self) -> None:
        """Mark run as started."""
        self._ensure_mutable("start")
        if self.status is not RunStatus.PENDING:
            raise RunStateError(f"Run {self.id} already started", context={"run_id": self.id})
        self.status = RunStatus.RUNNING
        self.started_at = _utcnow()

    def record(self, result: StageResult) -> None:
        """Append a stage result. Stages must arrive in pipeline order, once each."""
        self._ensure_mutable("record a stage on")
        if self.status is not RunStatus.RUNNING:
            raise RunStateError(f"Run {self.id} is not running", context={"run_id": self.id})
        order = list(StageName)
        if self.stage_results and order.index(result.stage) <= order.index(self.stage_results[-1].stage):
            raise RunStateError(
                f"Stage {result.stage.value} out of order after {self.stage_results[-1].stage.value}",
                context={"run_id": self.id},
            )
        self.stage_results.append(result)

    def resolve_commit(self, sha: str) -> None:
        """Pin the run to the commit checkout resolved ``commit`` to; later stages use it."""
        self._ensure_mutable("resolve the commit of")
        self.resolved_commit = sha

    @property
    def revision(self) -> str:
        return self.resolved_commit or self.commit

    def attach_handle(self, handle: RemoteProcessHandle) -> None:
        self._ensure_mutable("attach a process handle to")
        self.handle = handle

    def request_cancel(self) -> None:
        """Ask the runner to stop at the next stage boundary."""
        self._ensure_mutable("cancel")
        self.cancel_requested = True

    def succeed(self) -> None:
        """Mark run as succeeded."""
        self._finish(RunStatus.SUCCEEDED)

    def fail(self, error: str) -> None:
        """Mark run as failed."""
        self._finish(RunStatus.FAILED, error)

    def cancel(self) -> None:
        """Mark run as cancelled."""
        self._finish(RunStatus.CANCELLED, "cancelled")

    def _finish(self, status: RunStatus, error: Optional[str] = None) -> None:
        self._ensure_mutable(f"mark {status.value}")
        self.status = status
        self.error = error
        self.completed_at = _utcnow()
        if self.started_at:
            self.duration = (self.completed_at - self.started_at).total_seconds()

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PipelineRun":
        """Rebuild a run (including stage results and handle) from run.json."""

        def when(value: Optional[str]) -> Optional[datetime]:
            return datetime.fromisoformat(value) if value else None

        results = [
            StageResult(
                stage=StageName(item["stage"]),
                status=StageStatus(item["status"]),
                duration=item.get("duration", 0.0),
                exit_code=item.get("exitCode"),
                output_path=item.get("outputPath"),
                error=item.get("error"),
                error_type=item.get("errorType"),
                fatal=item.get("fatal", False),
                started_at=when(item.get("startedAt")) or _utcnow(),
            )
            for item in data.get("stageResults", [])
        ]
        handle_data = data.get("handle")
        handle = None
        if handle_data:
            handle = RemoteProcessHandle(
                pid=handle_data["pid"],
                host=handle_data["host"],
                port=handle_data["port"],
                commit=handle_data["commit"],
                started_at=when(handle_data.get("startedAt")) or _utcnow(),
                log_file=handle_data.get("logFile"),
                service=handle_data.get("service"),
            )
        return cls(
            branch=data["branch"],
            commit=data["commit"],
            target=data["target"],
            id=data["id"],
            status=RunStatus(data["status"]),
            stage_results=results,
            created_at=when(data.get("createdAt")) or _utcnow(),
            started_at=when(data.get("startedAt")),
            completed_at=when(data.get("completedAt")),
            duration=data.get("duration", 0.0),
            error=data.get("error"),
            handle=handle,
            cancel_requested=data.get("cancelRequested", False),
            trigger_source=data.get("triggerSource", "manual"),
            resolved_commit=data.get("resolvedCommit"),
        )
