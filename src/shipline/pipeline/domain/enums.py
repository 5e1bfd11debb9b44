"""
Pipeline domain enums.

Defines run states, the fixed stage sequence and stage failure policies.
"""

from enum import Enum


class RunStatus(Enum):
    """PipelineRun lifecycle status."""

    PENDING = "pending"  # Created on trigger receipt, queued
    RUNNING = "running"  # Stages executing
    SUCCEEDED = "succeeded"  # Every fatal-policy stage passed
    FAILED = "failed"  # A fail-fast stage failed
    CANCELLED = "cancelled"  # Cancelled at a stage boundary

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


class StageName(Enum):
    """
    Pipeline stages.

    Declaration order is the execution order; it is fixed and total.
    """

    CHECKOUT = "checkout"
    BUILD = "build"
    TEST = "test"
    DEPLOY = "deploy"


class StageStatus(Enum):
    """Outcome of one completed stage."""

    PASSED = "passed"
    FAILED = "failed"


class FailurePolicy(Enum):
    """What a stage failure does to the rest of the run."""

    FAIL_FAST = "fail-fast"  # Halt remaining stages, run fails
    CONTINUE_ON_ERROR = "continue-on-error"  # Record the failure and go on

    @classmethod
    def from_string(cls, value: str) -> "FailurePolicy":
        normalized = value.strip().lower().replace("_", "-")
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise ValueError(f"Unknown failure policy: {value!r} (expected fail-fast or continue-on-error)")
