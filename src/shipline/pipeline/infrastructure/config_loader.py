"""
Configuration loader for the pipeline definition.

Loads shipline.yaml into a PipelineConfig. Keys may be written in snake_case
or camelCase.

Functions:
- load_pipeline_config: Load and validate configuration from a YAML file
- parse_pipeline_config: Validate an already-parsed mapping
"""

from pathlib import Path
from typing import Any, Dict

import yaml

from shipline.pipeline.domain.enums import FailurePolicy, StageName
from shipline.pipeline.domain.models import DEFAULT_STAGES, DeployTarget, PipelineConfig, Stage
from shipline.shared.domain.base_model import to_snake_case
from shipline.shared.domain.exceptions import ConfigurationError

_TARGET_FIELDS = {
    "host", "user", "credential", "ssh_port", "workdir", "port", "repository",
    "requirements", "venv", "python", "start_command", "log_file", "service",
    "use_sudo", "timeout",
}
_STAGE_FIELDS = {"command", "policy", "timeout"}


def _snake_keys(data: Dict[Any, Any]) -> Dict[Any, Any]:
    """Convert field keys to snake_case. Branch and target names are not touched."""
    return {(to_snake_case(k) if isinstance(k, str) and k else k): v for k, v in data.items()}


def load_pipeline_config(config_path: Path) -> PipelineConfig:
    """
    Load pipeline configuration from a YAML file.

    Args:
        config_path: Path to shipline.yaml

    Returns:
        Validated PipelineConfig

    Raises:
        ConfigurationError: If the file is missing, not YAML, or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Pipeline file not found: {config_path}", context={"path": str(config_path)})

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}", context={"path": str(config_path)})

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping", context={"path": str(config_path)})

    return parse_pipeline_config(data)


def _require_mapping(value: Any, key: str) -> Dict[str, Any]:
    if not isinstance(value, dict) or not value:
        raise ConfigurationError(f"'{key}' must be a non-empty mapping", context={"key": key})
    return value


def _parse_target(name: str, raw: Any, repository: str) -> DeployTarget:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Target '{name}' must be a mapping", context={"key": f"targets.{name}"})
    raw = _snake_keys(raw)

    unknown = set(raw) - _TARGET_FIELDS
    if unknown:
        raise ConfigurationError(
            f"Unknown field(s) in target '{name}': {', '.join(sorted(unknown))}",
            context={"key": f"targets.{name}"},
        )
    for required in ("host", "workdir", "port"):
        if not raw.get(required):
            raise ConfigurationError(
                f"Target '{name}' is missing '{required}'",
                context={"key": f"targets.{name}.{required}"},
            )
    try:
        port = int(raw["port"])
    except (TypeError, ValueError):
        raise ConfigurationError(f"Target '{name}' port must be an integer", context={"key": f"targets.{name}.port"})
    if not 0 < port < 65536:
        raise ConfigurationError(f"Target '{name}' port out of range: {port}", context={"key": f"targets.{name}.port"})

    raw["port"] = port
    if raw.get("timeout") is not None:
        raw["timeout"] = _parse_timeout(raw["timeout"], f"targets.{name}.timeout")
    raw.setdefault("repository", repository)
    if "credential" in raw and raw["credential"]:
        raw["credential"] = str(Path(str(raw["credential"])).expanduser())
    return DeployTarget(name=name, **raw)


def _parse_timeout(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"'{key}' must be a positive number of seconds, got {value!r}", context={"key": key})
    return float(value)


def _parse_stages(raw: Any) -> tuple:
    if raw is None:
        return DEFAULT_STAGES
    raw = _require_mapping(raw, "stages")

    valid = {stage.value for stage in StageName}
    unknown = set(raw) - valid
    if unknown:
        raise ConfigurationError(
            f"Unknown stage(s): {', '.join(sorted(unknown))}. Stages are fixed: checkout, build, test, deploy",
            context={"key": "stages"},
        )

    stages = []
    for default in DEFAULT_STAGES:
        override = raw.get(default.name.value) or {}
        key = f"stages.{default.name.value}"
        if not isinstance(override, dict):
            raise ConfigurationError(f"Stage '{default.name.value}' must be a mapping", context={"key": key})
        override = _snake_keys(override)
        bad = set(override) - _STAGE_FIELDS
        if bad:
            raise ConfigurationError(
                f"Unknown field(s) in stage '{default.name.value}': {', '.join(sorted(bad))}",
                context={"key": key},
            )
        policy = default.policy
        if "policy" in override:
            try:
                policy = FailurePolicy.from_string(str(override["policy"]))
            except ValueError as e:
                raise ConfigurationError(str(e), context={"key": f"{key}.policy"})
        # Only test failures may be swallowed; checkout, build and deploy always end the run.
        if policy is FailurePolicy.CONTINUE_ON_ERROR and default.name is not StageName.TEST:
            raise ConfigurationError(
                f"Stage '{default.name.value}' cannot use {policy.value}; only the test stage may",
                context={"key": f"{key}.policy"},
            )
        stages.append(
            Stage(
                name=default.name,
                policy=policy,
                command=override.get("command", default.command),
                timeout=_parse_timeout(override["timeout"], f"{key}.timeout") if "timeout" in override else default.timeout,
            )
        )
    return tuple(stages)


def parse_pipeline_config(data: Dict[str, Any]) -> PipelineConfig:
    """
    Validate a parsed pipeline mapping.

    Raises:
        ConfigurationError: Naming the offending key
    """
    data = _snake_keys(data)

    repository = data.get("repository")
    if not repository or not isinstance(repository, str):
        raise ConfigurationError("'repository' is required", context={"key": "repository"})

    raw_targets = _require_mapping(data.get("targets"), "targets")
    targets = {name: _parse_target(name, raw, repository) for name, raw in raw_targets.items()}

    raw_branches = data.get("branches")
    if isinstance(raw_branches, list):
        if len(targets) != 1:
            raise ConfigurationError(
                "A branch list needs exactly one target; map branches to targets instead",
                context={"key": "branches"},
            )
        only_target = next(iter(targets))
        branches = {str(branch): only_target for branch in raw_branches}
    else:
        branches = {str(k): str(v) for k, v in _require_mapping(raw_branches, "branches").items()}

    if not branches:
        raise ConfigurationError("'branches' must list at least one branch", context={"key": "branches"})
    for branch, target in branches.items():
        if target not in targets:
            raise ConfigurationError(
                f"Branch '{branch}' references unknown target '{target}'",
                context={"key": f"branches.{branch}"},
            )

    return PipelineConfig(
        repository=repository,
        branches=branches,
        targets=targets,
        stages=_parse_stages(data.get("stages")),
    )
