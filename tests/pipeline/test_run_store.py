"""Tests for RunStore."""

from datetime import datetime, timedelta, timezone

from shipline.pipeline.domain.enums import RunStatus, StageName
from shipline.pipeline.domain.models import PipelineRun


def test_save_and_load(run_store, pending_run):
    path = run_store.save(pending_run)

    assert path == run_store.run_dir(pending_run.id) / "run.json"
    loaded = run_store.load(pending_run.id)
    assert loaded.id == pending_run.id
    assert loaded.branch == "main"
    assert loaded.status == RunStatus.PENDING


def test_save_overwrites_without_leftovers(run_store, pending_run):
    run_store.save(pending_run)
    pending_run.start()
    run_store.save(pending_run)

    assert run_store.load(pending_run.id).status == RunStatus.RUNNING
    assert not list(run_store.run_dir(pending_run.id).glob("*.tmp"))


def test_load_unknown_run(run_store):
    assert run_store.load("missing") is None


def test_stage_log(run_store, pending_run):
    path = run_store.write_stage_log(pending_run.id, StageName.BUILD, "Successfully installed flask\n")

    assert path.name == "build.log"
    assert path.read_text() == "Successfully installed flask\n"


def test_workspace_is_per_run(run_store):
    assert run_store.workspace("a") != run_store.workspace("b")
    assert run_store.workspace("a").parent == run_store.workspaces_dir


def test_list_runs_newest_first(run_store):
    now = datetime.now(timezone.utc)
    older = PipelineRun(branch="main", commit="c1", target="production", created_at=now - timedelta(minutes=5))
    newer = PipelineRun(branch="main", commit="c2", target="production", created_at=now)
    run_store.save(older)
    run_store.save(newer)

    assert [r.id for r in run_store.list_runs()] == [newer.id, older.id]
    assert [r.id for r in run_store.list_runs(limit=1)] == [newer.id]


def test_list_runs_skips_unreadable_records(run_store, pending_run):
    run_store.save(pending_run)
    broken = run_store.run_dir("broken") / "run.json"
    broken.parent.mkdir(parents=True)
    broken.write_text("{not json")

    assert [r.id for r in run_store.list_runs()] == [pending_run.id]


def test_list_runs_without_state_dir(run_store):
    assert run_store.list_runs() == []
