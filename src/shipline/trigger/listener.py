"""
Trigger Listener.

Turns a push event into a pending PipelineRun and hands it to the run queue.
Only allow-listed branches start a run; anything else is acknowledged and
dropped. There is no de-duplication: the same commit pushed twice yields two
independent runs, which the idempotent deploy tolerates.
"""

import re
from typing import Optional

from shipline.pipeline.application.run_queue import RunQueue
from shipline.pipeline.domain.models import PipelineConfig, PipelineRun, PushEvent
from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# No leading "-": the reference ends up as a git argument.
_COMMIT_PATTERN = re.compile(r"^(?!-)[\w\-./]{1,256}$")


class TriggerListener:
    """Entry point for every trigger source (webhook, poller, CLI)."""

    def __init__(self, config: PipelineConfig, queue: RunQueue):
        self.config = config
        self.queue = queue

    def on_push(self, event: PushEvent) -> Optional[PipelineRun]:
        """
        Create and queue a run for ``event``.

        Returns:
            The pending run, or None when the branch is not allow-listed

        Raises:
            ValueError: If the event carries no usable branch or commit
        """
        bad_branch = not event.branch or event.branch.startswith("-")
        if bad_branch or not event.commit or not _COMMIT_PATTERN.match(event.commit):
            raise ValueError(f"Invalid push event: branch={event.branch!r} commit={event.commit!r}")

        target = self.config.target_for(event.branch)
        if target is None:
            logger.info("push_ignored", branch=event.branch, commit=event.commit, source=event.source)
            return None

        run = PipelineRun.from_event(event, target=target.name)
        self.queue.submit(run)
        logger.info(
            "push_accepted",
            run_id=run.id,
            branch=event.branch,
            commit=event.commit,
            target=target.name,
            source=event.source,
        )
        return run
