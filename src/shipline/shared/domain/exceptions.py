"""
Domain exceptions for Shipline.

All application errors inherit from ShiplineError. Stage errors carry the
structured details of the failure (exit code, captured output, remote step)
in ``context`` so the Stage Runner can record them without string parsing.
"""


class ShiplineError(Exception):
    """Base class for all Shipline exceptions."""

    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.context = context or {}


class ConfigurationError(ShiplineError):
    """Raised when settings or the pipeline file are invalid."""

    pass


class RunStateError(ShiplineError):
    """Raised on an illegal PipelineRun transition (e.g. mutating a terminal run)."""

    pass


class WebhookError(ShiplineError):
    """Raised when a webhook delivery is rejected."""

    def __init__(self, message: str, status: int = 400, context: dict = None):
        super().__init__(message, context)
        self.status = status


class StageError(ShiplineError):
    """Base class for failures raised by a pipeline stage."""

    @property
    def exit_code(self) -> int | None:
        return self.context.get("exit_code")

    @property
    def output(self) -> str:
        return self.context.get("output", "")


class CheckoutError(StageError):
    """The commit reference could not be fetched or resolved."""

    pass


class BuildError(StageError):
    """Dependency installation failed."""

    pass


class TestFailure(StageError):
    """The test suite exited non-zero. Recorded, normally not fatal."""

    __test__ = False  # keep pytest from collecting this as a test class


class DeployError(StageError):
    """Remote session or remote command failure."""

    def __init__(self, message: str, step: str, context: dict = None):
        context = dict(context or {})
        context.setdefault("step", step)
        super().__init__(f"[{step}] {message}", context)
        self.step = step


class SupervisorError(DeployError):
    """The target port stayed bound after termination was attempted."""

    def __init__(self, message: str, port: int, context: dict = None):
        context = dict(context or {})
        context.setdefault("port", port)
        super().__init__(message, step="supervise", context=context)
        self.port = port
