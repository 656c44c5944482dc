"""Pipeline schema definitions using Pydantic for validation.

This module defines the structure of Bastion pipelines, including:
- Gate policies (severity floor, excluded categories, allowance, per-source rules)
- Stages (scan, command, deploy) and their dependency edges
- Deployment targets and the credential handle each one uses
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator

from bastion.data_models import Severity


class StageKind(str, Enum):
    """Type of pipeline stage."""
    SCAN = "scan"          # Run scanners, aggregate findings, apply gate
    COMMAND = "command"    # Run commands in order (build, push)
    DEPLOY = "deploy"      # Deploy an image or config to a target


class Environment(str, Enum):
    """Failure domain of a deployment target."""
    STAGING = "staging"
    PRODUCTION = "production"


class SourceRule(BaseModel):
    """Per-tool refinement of a gate policy.

    Examples:
        # style checker: findings recorded, never blocking
        black: {advisory: true}

        # semgrep: only ERROR-level rules block
        semgrep: {min_severity: high}
    """
    advisory: bool = Field(False, description="Findings are recorded but never block")
    min_severity: Optional[Severity] = Field(None, description="Overrides the policy severity floor")
    exclude_categories: Set[str] = Field(default_factory=set, description="Extra categories to ignore")


class GatePolicy(BaseModel):
    """Decides which findings block a stage and how many are tolerated."""
    exclude_categories: Set[str] = Field(default_factory=set, description="Categories that never block")
    min_severity: Severity = Field(Severity.INFO, description="Findings below this severity never block")
    max_allowed: int = Field(0, ge=0, description="Gate fails iff blocking count exceeds this")
    sources: Dict[str, SourceRule] = Field(default_factory=dict, description="Per-tool rules")

    def rule_for(self, source: str) -> SourceRule:
        return self.sources.get(source) or SourceRule()


class CredentialRef(BaseModel):
    """Reference to a secret supplied through the environment."""
    name: str = Field(..., description="Handle name, unique per target")
    env_var: str = Field(..., description="Environment variable holding the secret")
    inject_as: str = Field("FLY_API_TOKEN", description="Variable name the deploy tool reads")


class DeployTargetConfig(BaseModel):
    """A deployment target (fly.io application)."""
    name: str
    environment: Environment
    app: str = Field(..., description="Remote application name")
    credential: CredentialRef
    image: Optional[str] = Field(None, description="Image reference to deploy")
    config_file: Optional[str] = Field(None, description="Deploy config file (e.g. fly.production.toml)")
    strategy: Optional[str] = Field(None, description="Rollout strategy (rolling, bluegreen, ...)")
    remote_only: bool = True
    command: str = Field("flyctl", description="Deploy CLI executable")
    extra_args: List[str] = Field(default_factory=list)
    timeout_seconds: int = Field(900, gt=0)

    @model_validator(mode="after")
    def validate_source(self):
        if not self.image and not self.config_file:
            raise ValueError(f"Target '{self.name}' needs an 'image' or a 'config_file'")
        return self


class StageConfig(BaseModel):
    """A single stage in a pipeline."""
    id: str = Field(..., description="Unique stage identifier (e.g., 'security-check')")
    kind: StageKind = Field(..., description="Type of stage")
    depends_on: List[str] = Field(default_factory=list, description="Stage IDs this stage depends on")
    enabled: bool = Field(True, description="Disabled stages are not scheduled")

    # kind=scan
    tools: List[str] = Field(default_factory=list, description="Tool IDs to run, in order")
    tool_overrides: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Per-tool spec overrides")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Values for tool argument placeholders")
    policy: GatePolicy = Field(default_factory=GatePolicy)

    # kind=command
    commands: List[List[str]] = Field(default_factory=list, description="argv lists, run in order")

    # kind=deploy
    target: Optional[DeployTargetConfig] = None
    max_retries: Optional[int] = Field(None, ge=0, description="Override pipeline deploy retries")

    working_dir: Optional[str] = Field(None, description="Directory tools run in")
    timeout_seconds: Optional[int] = Field(None, gt=0, description="Override default tool timeout")

    @model_validator(mode="after")
    def validate_stage_kind(self):
        """Validate stage has required fields for its kind."""
        if self.kind == StageKind.SCAN and not self.tools:
            raise ValueError(f"Stage '{self.id}' with kind='scan' must have 'tools'")
        if self.kind == StageKind.COMMAND and not self.commands:
            raise ValueError(f"Stage '{self.id}' with kind='command' must have 'commands'")
        if self.kind == StageKind.COMMAND and any(not argv for argv in self.commands):
            raise ValueError(f"Stage '{self.id}' has an empty command")
        if self.kind == StageKind.DEPLOY and not self.target:
            raise ValueError(f"Stage '{self.id}' with kind='deploy' must have 'target'")
        if self.id in self.depends_on:
            raise ValueError(f"Stage '{self.id}' depends on itself")
        return self


class PipelineConfig(BaseModel):
    """Complete pipeline configuration."""
    name: str = Field(..., description="Pipeline name (e.g., 'full_ci_cd')")
    version: str = Field("1.0", description="Pipeline version for tracking changes")
    description: Optional[str] = None

    stages: List[StageConfig] = Field(..., description="Stages in declaration order")
    tools: List[Dict[str, Any]] = Field(default_factory=list, description="Extra tool specs")

    # Trigger predicate
    branches: List[str] = Field(default_factory=lambda: ["main"])
    events: List[str] = Field(default_factory=lambda: ["push"])

    deploy_retries: int = Field(2, ge=0)
    is_preset: bool = Field(False, description="Whether this is a built-in preset pipeline")

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, stages: List[StageConfig]):
        """Validate stage list has at least one stage and unique IDs."""
        if not stages:
            raise ValueError("Pipeline must have at least one stage")

        stage_ids = [stage.id for stage in stages]
        if len(stage_ids) != len(set(stage_ids)):
            raise ValueError("Stage IDs must be unique")

        return stages

    @model_validator(mode="after")
    def validate_stage_references(self):
        """Validate depends_on references exist."""
        stage_ids = {stage.id for stage in self.stages}
        for stage in self.stages:
            for dep_id in stage.depends_on:
                if dep_id not in stage_ids:
                    raise ValueError(f"Stage '{stage.id}' depends on unknown stage '{dep_id}'")
        return self

    @model_validator(mode="after")
    def validate_production_isolation(self):
        """Production deploys need a passed staging deploy and post-deploy scan upstream."""
        by_id = {stage.id: stage for stage in self.stages}
        deploys = [s for s in self.stages if s.kind == StageKind.DEPLOY]

        staging_creds = {
            s.target.credential.env_var for s in deploys if s.target.environment == Environment.STAGING
        }
        for stage in deploys:
            if stage.target.environment != Environment.PRODUCTION:
                continue
            if stage.target.credential.env_var in staging_creds:
                raise ValueError(
                    f"Production stage '{stage.id}' shares a credential with a staging target"
                )

            ancestors = self.ancestors(stage.id)
            staging = [
                a for a in ancestors
                if by_id[a].kind == StageKind.DEPLOY
                and by_id[a].target.environment == Environment.STAGING
            ]
            if not staging:
                raise ValueError(f"Production stage '{stage.id}' must depend on a staging deploy")
            post_scans = [
                a for a in ancestors
                if by_id[a].kind == StageKind.SCAN
                and any(s in self.ancestors(a) for s in staging)
            ]
            if not post_scans:
                raise ValueError(
                    f"Production stage '{stage.id}' must depend on a scan of the staging deploy"
                )
        return self

    def ancestors(self, stage_id: str) -> Set[str]:
        """All stages ``stage_id`` depends on, directly or transitively."""
        by_id = {stage.id: stage for stage in self.stages}
        seen: Set[str] = set()
        pending = list(by_id[stage_id].depends_on) if stage_id in by_id else []
        while pending:
            current = pending.pop()
            if current in seen or current not in by_id:
                continue
            seen.add(current)
            pending.extend(by_id[current].depends_on)
        return seen

    def get_stage(self, stage_id: str) -> Optional[StageConfig]:
        return next((s for s in self.stages if s.id == stage_id), None)

    def credential_env_vars(self) -> Set[str]:
        """Every variable a deploy credential is read from or injected as."""
        names: Set[str] = set()
        for stage in self.stages:
            if stage.kind == StageKind.DEPLOY and stage.target is not None:
                names.add(stage.target.credential.env_var)
                names.add(stage.target.credential.inject_as)
        return names
