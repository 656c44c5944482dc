"""Turn a validated PipelineConfig into executable stages."""

import logging
from typing import Callable, List, Optional

from bastion.deploy.credentials import CredentialHandle
from bastion.deploy.driver import DeploymentDriver
from bastion.pipeline.actions import CommandAction, DeployAction, ScanAction
from bastion.pipeline.aggregator import ReportAggregator
from bastion.pipeline.executor import Stage
from bastion.pipeline.gating import GateEvaluator
from bastion.pipeline.schema import PipelineConfig, StageConfig, StageKind
from bastion.tools.registry import ToolRegistry, default_registry
from bastion.tools.runner import ToolRunner

logger = logging.getLogger(__name__)


class StageBuilder:
    """Build Stage objects (name, dependencies, action) from stage configs."""

    def __init__(
        self,
        runner: Optional[ToolRunner] = None,
        tool_registry: Optional[ToolRegistry] = None,
        aggregator: Optional[ReportAggregator] = None,
        evaluator: Optional[GateEvaluator] = None,
        driver_factory: Optional[Callable[[], DeploymentDriver]] = None,
        working_dir: Optional[str] = None,
        image: Optional[str] = None,
        deploy_retries: Optional[int] = None,
    ):
        """
        Args:
            runner: Tool runner shared by scan and command stages
            tool_registry: Tool specs available to scan stages
            aggregator: Report aggregator
            evaluator: Gate evaluator
            driver_factory: Creates one DeploymentDriver per deploy stage
            working_dir: Default working directory for tools
            image: Image reference for deploy targets without one
            deploy_retries: Overrides the pipeline's deploy_retries
        """
        self.runner = runner or ToolRunner()
        self.tool_registry = tool_registry or default_registry()
        self.aggregator = aggregator or ReportAggregator()
        self.evaluator = evaluator or GateEvaluator()
        self.driver_factory = driver_factory or (lambda: DeploymentDriver(runner=self.runner))
        self.working_dir = working_dir
        self.image = image
        self.deploy_retries = deploy_retries

    def build(self, pipeline: PipelineConfig) -> List[Stage]:
        """Stages in declaration order."""
        return [self.build_stage(stage, pipeline) for stage in pipeline.stages]

    def build_stage(self, stage: StageConfig, pipeline: PipelineConfig) -> Stage:
        working_dir = stage.working_dir or self.working_dir
        # No child process sees another target's deploy secret
        secrets = frozenset(pipeline.credential_env_vars())

        if stage.kind == StageKind.SCAN:
            tools = []
            for tool_id in stage.tools:
                spec = self.tool_registry.get(tool_id)
                if spec is None:
                    raise ValueError(f"Stage '{stage.id}': tool '{tool_id}' is not registered")
                tools.append(spec.with_overrides(stage.tool_overrides.get(tool_id)))
            action = ScanAction(
                tools=tools,
                policy=stage.policy,
                runner=self.runner,
                aggregator=self.aggregator,
                evaluator=self.evaluator,
                working_dir=working_dir,
                variables={k: str(v) for k, v in stage.variables.items()},
                timeout=stage.timeout_seconds,
                env_remove=secrets,
            )

        elif stage.kind == StageKind.COMMAND:
            action = CommandAction(
                commands=stage.commands,
                runner=self.runner,
                aggregator=self.aggregator,
                working_dir=working_dir,
                timeout=stage.timeout_seconds,
                env_remove=secrets,
            )

        elif stage.kind == StageKind.DEPLOY:
            target = stage.target
            retries = stage.max_retries
            if retries is None:
                retries = self.deploy_retries if self.deploy_retries is not None else pipeline.deploy_retries
            action = DeployAction(
                target=target,
                driver=self.driver_factory(),
                credentials=CredentialHandle.from_ref(target.credential, target.environment),
                max_retries=retries,
                image=target.image or (self.image if not target.config_file else None),
                env_remove=secrets,
            )

        else:
            raise ValueError(f"Unknown stage kind: {stage.kind}")

        logger.debug(f"Built {stage.kind.value} stage '{stage.id}' (depends on {stage.depends_on})")
        return Stage(name=stage.id, action=action, depends_on=frozenset(stage.depends_on), enabled=stage.enabled)
