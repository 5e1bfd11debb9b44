"""Pipeline module - build, test and deploy run orchestration."""

from shipline.pipeline.domain.enums import FailurePolicy, RunStatus, StageName, StageStatus
from shipline.pipeline.domain.models import (
    DeployTarget,
    PipelineConfig,
    PipelineRun,
    PushEvent,
    RemoteProcessHandle,
    Stage,
    StageResult,
)

__all__ = [
    "DeployTarget",
    "FailurePolicy",
    "PipelineConfig",
    "PipelineRun",
    "PushEvent",
    "RemoteProcessHandle",
    "RunStatus",
    "Stage",
    "StageName",
    "StageResult",
    "StageStatus",
]
