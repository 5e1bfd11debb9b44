"""Run records and stage logs on disk, written atomically."""

import fcntl
import json
import os
from pathlib import Path
from typing import List, Optional

from shipline.pipeline.domain.enums import StageName
from shipline.pipeline.domain.models import PipelineRun
from shipline.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class RunStore:
    """
    Layout::

        <state_dir>/runs/<run_id>/run.json
        <state_dir>/runs/<run_id>/<stage>.log
        <state_dir>/workspaces/<run_id>/
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.runs_dir = self.state_dir / "runs"
        self.workspaces_dir = self.state_dir / "workspaces"

    def run_dir(self, run_id: str) -> Path:
        return self.runs_dir / run_id

    def workspace(self, run_id: str) -> Path:
        return self.workspaces_dir / run_id

    def atomic_write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            f.write(content)
        os.replace(tmp, path)

    def save(self, run: PipelineRun) -> Path:
        path = self.run_dir(run.id) / "run.json"
        self.atomic_write(path, json.dumps(run.to_json(), indent=2))
        return path

    def write_stage_log(self, run_id: str, stage: StageName, output: str) -> Path:
        path = self.run_dir(run_id) / f"{stage.value}.log"
        self.atomic_write(path, output)
        return path

    def load(self, run_id: str) -> Optional[PipelineRun]:
        path = self.run_dir(run_id) / "run.json"
        if not path.exists():
            return None
        return PipelineRun.from_json(json.loads(path.read_text(encoding="utf-8")))

    def list_runs(self, limit: int = 20) -> List[PipelineRun]:
        """Most recent runs first."""
        if not self.runs_dir.exists():
            return []
        runs = []
        for path in self.runs_dir.glob("*/run.json"):
            try:
                runs.append(PipelineRun.from_json(json.loads(path.read_text(encoding="utf-8"))))
            except (ValueError, KeyError) as e:
                logger.warning("run_record_unreadable", path=str(path), error=str(e))
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]
