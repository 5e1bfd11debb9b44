"""Shared test fixtures for the Shipline test suite."""

from pathlib import Path

import pytest

from shipline.pipeline.domain.models import DEFAULT_STAGES, DeployTarget, PipelineConfig, PipelineRun
from shipline.pipeline.infrastructure.run_store import RunStore


@pytest.fixture
def deploy_target():
    """A production target with a plain nohup start."""
    return DeployTarget(
        name="production",
        host="203.0.113.10",
        user="deploy",
        credential="/home/ci/.ssh/id_ed25519",
        workdir="/srv/webapp",
        port=5000,
        repository="https://github.com/acme/webapp.git",
        start_command="python app.py --port {port}",
    )


@pytest.fixture
def pipeline_config(deploy_target):
    """main deploys to production; staging is allow-listed too."""
    staging = DeployTarget(
        name="staging",
        host="staging.internal",
        workdir="/srv/webapp-staging",
        port=5001,
        repository="https://github.com/acme/webapp.git",
    )
    return PipelineConfig(
        repository="https://github.com/acme/webapp.git",
        branches={"main": "production", "staging": "staging"},
        targets={"production": deploy_target, "staging": staging},
        stages=DEFAULT_STAGES,
    )


@pytest.fixture
def run_store(tmp_path) -> RunStore:
    return RunStore(tmp_path / ".shipline")


@pytest.fixture
def pending_run():
    return PipelineRun(branch="main", commit="3f9c2e1a", target="production")


@pytest.fixture
def pipeline_yaml(tmp_path) -> Path:
    """A valid shipline.yaml on disk."""
    path = tmp_path / "shipline.yaml"
    path.write_text(
        """
repository: https://github.com/acme/webapp.git
branches:
  main: production
  staging: staging
stages:
  test:
    command: .venv/bin/python -m pytest -q
targets:
  production:
    host: 203.0.113.10
    user: deploy
    workdir: /srv/webapp
    port: 5000
    startCommand: .venv/bin/gunicorn -b 0.0.0.0:{port} app:app
  staging:
    host: staging.internal
    workdir: /srv/webapp-staging
    port: 5001
    service: webapp-staging
    useSudo: true
""",
        encoding="utf-8",
    )
    return path
