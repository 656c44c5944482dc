#!/usr/bin/env python3
"""Test pipeline schema validation, loading and stage building."""

import pytest
from pydantic import ValidationError

from bastion.data_models import Severity
from bastion.pipeline.schema import (
    GatePolicy,
    PipelineConfig,
    SourceRule,
    StageConfig,
    StageKind,
)
from bastion.pipeline.loader import PipelineLoader
from bastion.pipeline.builder import StageBuilder
from bastion.pipeline.actions import CommandAction, DeployAction, ScanAction
from bastion.tools.registry import default_registry


def _deploy(stage_id, environment, env_var, depends_on=(), **target):
    target.setdefault("image", "example/app:latest")
    return {
        "id": stage_id,
        "kind": "deploy",
        "depends_on": list(depends_on),
        "target": {
            "name": stage_id,
            "environment": environment,
            "app": f"app-{environment}",
            "credential": {"name": f"{stage_id}-token", "env_var": env_var},
            **target,
        },
    }


def _isolated_pipeline(**overrides):
    stages = [
        {"id": "scan", "kind": "scan", "tools": ["bandit"]},
        _deploy("staging", "staging", "STAGING_TOKEN", ["scan"]),
        {"id": "post-scan", "kind": "scan", "tools": ["nikto"], "depends_on": ["staging"],
         "variables": {"target_url": "http://staging.example"}},
        _deploy("production", "production", "PROD_TOKEN", ["post-scan"]),
    ]
    data = {"name": "isolated", "stages": stages}
    data.update(overrides)
    return data


def test_valid_simple_pipeline():
    """Test creating a valid simple pipeline."""
    config = PipelineConfig(
        name="test_simple",
        stages=[
            StageConfig(id="scan", kind=StageKind.SCAN, tools=["bandit"]),
            StageConfig(id="build", kind=StageKind.COMMAND, commands=[["echo", "hi"]], depends_on=["scan"]),
        ],
    )
    assert config.name == "test_simple"
    assert len(config.stages) == 2
    assert config.branches == ["main"]
    assert config.deploy_retries == 2


def test_invalid_pipeline_no_stages():
    """Test pipeline without stages fails validation."""
    with pytest.raises(ValidationError):
        PipelineConfig(name="invalid", stages=[])


def test_invalid_pipeline_duplicate_stage_ids():
    """Test pipeline with duplicate stage IDs fails validation."""
    with pytest.raises(ValidationError):
        PipelineConfig(
            name="duplicate_ids",
            stages=[
                StageConfig(id="scan", kind=StageKind.SCAN, tools=["bandit"]),
                StageConfig(id="scan", kind=StageKind.SCAN, tools=["semgrep"]),  # Duplicate ID
            ],
        )


def test_unknown_dependency_rejected():
    """Test depends_on must reference declared stages."""
    with pytest.raises(ValidationError, match="unknown stage"):
        PipelineConfig(
            name="dangling",
            stages=[StageConfig(id="scan", kind=StageKind.SCAN, tools=["bandit"], depends_on=["ghost"])],
        )


def test_stage_kind_requirements():
    """Test each stage kind needs its own fields."""
    with pytest.raises(ValidationError):
        StageConfig(id="scan", kind=StageKind.SCAN)  # Missing tools
    with pytest.raises(ValidationError):
        StageConfig(id="build", kind=StageKind.COMMAND)  # Missing commands
    with pytest.raises(ValidationError):
        StageConfig(id="build", kind=StageKind.COMMAND, commands=[[]])  # Empty argv
    with pytest.raises(ValidationError):
        StageConfig(id="deploy", kind=StageKind.DEPLOY)  # Missing target


def test_stage_cannot_depend_on_itself():
    with pytest.raises(ValidationError, match="itself"):
        StageConfig(id="scan", kind=StageKind.SCAN, tools=["bandit"], depends_on=["scan"])


def test_deploy_target_needs_image_or_config():
    """Test a deploy target must name what it deploys."""
    data = _deploy("staging", "staging", "TOKEN")
    del data["target"]["image"]
    with pytest.raises(ValidationError, match="image"):
        StageConfig(**data)


def test_policy_defaults_and_source_rules():
    """Test gate policy defaults and per-source lookups."""
    policy = GatePolicy(sources={"black": SourceRule(advisory=True)})
    assert policy.max_allowed == 0
    assert policy.min_severity == Severity.INFO
    assert policy.rule_for("black").advisory is True
    assert policy.rule_for("bandit").advisory is False

    with pytest.raises(ValidationError):
        GatePolicy(max_allowed=-1)


def test_policy_severity_accepts_lowercase_strings():
    policy = GatePolicy(min_severity="medium", sources={"semgrep": {"min_severity": "high"}})
    assert policy.min_severity == Severity.MEDIUM
    assert policy.rule_for("semgrep").min_severity == Severity.HIGH


# ---------------------------------------------------------------------------
# Production isolation
# ---------------------------------------------------------------------------

def test_production_isolation_valid():
    """Test staging deploy + post-deploy scan upstream of production is accepted."""
    config = PipelineConfig(**_isolated_pipeline())
    assert config.ancestors("production") == {"scan", "staging", "post-scan"}


def test_production_shared_credential_rejected():
    """Test production cannot reuse the staging credential."""
    data = _isolated_pipeline()
    data["stages"][3]["target"]["credential"]["env_var"] = "STAGING_TOKEN"
    with pytest.raises(ValidationError, match="shares a credential"):
        PipelineConfig(**data)


def test_production_without_staging_rejected():
    """Test production must depend on a staging deploy."""
    data = {
        "name": "direct",
        "stages": [
            {"id": "scan", "kind": "scan", "tools": ["bandit"]},
            _deploy("production", "production", "PROD_TOKEN", ["scan"]),
        ],
    }
    with pytest.raises(ValidationError, match="staging deploy"):
        PipelineConfig(**data)


def test_production_without_post_deploy_scan_rejected():
    """Test production must depend on a scan that follows the staging deploy."""
    data = _isolated_pipeline()
    data["stages"][3]["depends_on"] = ["staging"]
    with pytest.raises(ValidationError, match="scan of the staging deploy"):
        PipelineConfig(**data)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def test_load_full_ci_cd_preset():
    """Test the bundled preset loads and keeps the expected chain."""
    loader = PipelineLoader(environ={})
    pipeline = loader.load_preset("full_ci_cd")

    assert pipeline.is_preset is True
    assert [s.id for s in pipeline.stages] == [
        "security-check",
        "build-and-push",
        "deploy-staging",
        "nikto-scan",
        "deploy-production",
    ]
    check = pipeline.get_stage("security-check")
    assert "B104" in check.policy.exclude_categories
    assert check.policy.rule_for("black").advisory is True
    assert check.policy.rule_for("semgrep").min_severity == Severity.HIGH

    staging = pipeline.get_stage("deploy-staging").target
    production = pipeline.get_stage("deploy-production").target
    assert staging.image == "x7m7s7/devops:latest"
    assert staging.credential.env_var == "FLY_API_TOKEN"
    assert production.credential.env_var == "FLY_API_TOKEN2"
    assert production.config_file == "fly.production.toml"

    assert "full_ci_cd" in loader.list_presets()
    assert loader.load_preset("full_ci_cd") is pipeline


def test_preset_image_tag_from_environment():
    loader = PipelineLoader(environ={"BASTION_IMAGE_TAG": "registry.example/app:abc123"})
    pipeline = loader.load_preset("full_ci_cd")
    assert pipeline.get_stage("deploy-staging").target.image == "registry.example/app:abc123"


def test_resolve_env_vars():
    """Test ${VAR} and ${VAR:-default} resolution in nested values."""
    loader = PipelineLoader(environ={"HOST": "staging.example"})
    resolved = loader.resolve_env_vars({
        "url": "http://${HOST}/",
        "list": ["${MISSING:-fallback}", "${MISSING}"],
        "number": 3,
    })
    assert resolved == {"url": "http://staging.example/", "list": ["fallback", ""], "number": 3}


def test_load_from_yaml(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        "name: local\n"
        "stages:\n"
        "  - id: lint\n"
        "    kind: scan\n"
        "    tools: [black]\n",
        encoding="utf-8",
    )
    pipeline = PipelineLoader(environ={}).load_from_yaml(path)
    assert pipeline.name == "local"
    assert pipeline.stages[0].tools == ["black"]


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        PipelineLoader().load_from_yaml(tmp_path / "missing.yaml")


def test_unknown_tool_rejected():
    """Test scan stages may only reference registered tools."""
    with pytest.raises(ValueError, match="not registered"):
        PipelineLoader(environ={}).load_from_dict({
            "name": "bad",
            "stages": [{"id": "scan", "kind": "scan", "tools": ["trivy"]}],
        })


def test_inline_tool_registration():
    """Test pipeline-level tool specs are registered before validation."""
    loader = PipelineLoader(tool_registry=default_registry(), environ={})
    pipeline = loader.load_from_dict({
        "name": "custom",
        "tools": [{"tool_id": "trivy", "command": "trivy", "args": ["fs", "."], "parser": "semgrep"}],
        "stages": [{"id": "scan", "kind": "scan", "tools": ["trivy"]}],
    })
    assert pipeline.stages[0].tools == ["trivy"]
    assert loader.tool_registry.get("trivy").parser_id == "semgrep"


def test_validate_pipeline_warnings():
    loader = PipelineLoader(environ={})
    pipeline = loader.load_from_dict({
        "name": "warnings",
        "stages": [
            {"id": "style", "kind": "scan", "tools": ["black"],
             "policy": {"sources": {"black": {"advisory": True}}}},
            {"id": "other", "kind": "scan", "tools": ["bandit"], "enabled": False},
        ],
    })
    warnings = loader.validate_pipeline(pipeline)
    assert any("only advisory tools" in w for w in warnings)
    assert any("no depends_on" in w for w in warnings)
    assert any("disabled" in w for w in warnings)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def test_builder_creates_actions_per_kind():
    """Test every stage kind maps to its action with dependencies kept."""
    loader = PipelineLoader(environ={})
    pipeline = loader.load_preset("full_ci_cd")
    stages = StageBuilder(tool_registry=loader.tool_registry, image="x7m7s7/devops:latest").build(pipeline)

    by_name = {stage.name: stage for stage in stages}
    assert isinstance(by_name["security-check"].action, ScanAction)
    assert isinstance(by_name["build-and-push"].action, CommandAction)
    assert isinstance(by_name["deploy-staging"].action, DeployAction)
    assert by_name["deploy-production"].depends_on == frozenset({"nikto-scan"})

    scan = by_name["security-check"].action
    assert [tool.tool_id for tool in scan.tools] == ["bandit", "gitleaks", "semgrep", "black"]
    semgrep = next(tool for tool in scan.tools if tool.tool_id == "semgrep")
    assert semgrep.timeout_seconds == 1200

    staging = by_name["deploy-staging"].action
    production = by_name["deploy-production"].action
    assert staging.max_retries == 2
    assert production.max_retries == 0
    assert staging.driver is not production.driver
    assert staging.credentials.env_var == "FLY_API_TOKEN"
    assert production.credentials.env_var == "FLY_API_TOKEN2"
    # Production deploys its config file, not the shared image
    assert production.image is None


def test_builder_deploy_retries_override():
    loader = PipelineLoader(environ={})
    pipeline = loader.load_preset("full_ci_cd")
    stages = StageBuilder(tool_registry=loader.tool_registry, deploy_retries=5).build(pipeline)
    staging = next(stage for stage in stages if stage.name == "deploy-staging")
    assert staging.action.max_retries == 5
