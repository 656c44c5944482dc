"""Stage actions: scan, command and deploy.

Each action is a callable taking a StageContext and returning a StageResult,
so the executor treats all stage kinds alike.
"""

import logging
from pathlib import Path
from typing import AbstractSet, Dict, List, Optional, Sequence

from bastion.data_models import StageResult, StageStatus
from bastion.deploy.credentials import CredentialHandle
from bastion.deploy.driver import DeploymentDriver
from bastion.errors import ExecutionError, GateFailure
from bastion.pipeline.aggregator import ReportAggregator
from bastion.pipeline.executor import StageContext
from bastion.pipeline.gating import GateEvaluator
from bastion.pipeline.schema import DeployTargetConfig, GatePolicy
from bastion.tools.registry import ToolSpec
from bastion.tools.runner import ToolResult, ToolRunner, read_output_file

logger = logging.getLogger(__name__)


class ScanAction:
    """Run scanners in order, aggregate their findings and apply the gate."""

    def __init__(
        self,
        tools: Sequence[ToolSpec],
        policy: GatePolicy,
        runner: Optional[ToolRunner] = None,
        aggregator: Optional[ReportAggregator] = None,
        evaluator: Optional[GateEvaluator] = None,
        working_dir: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        env_remove: AbstractSet[str] = frozenset(),
    ):
        self.tools = list(tools)
        self.policy = policy
        self.runner = runner or ToolRunner()
        self.aggregator = aggregator or ReportAggregator()
        self.evaluator = evaluator or GateEvaluator()
        self.working_dir = working_dir
        self.variables = variables or {}
        self.timeout = timeout
        self.env_remove = env_remove

    def __call__(self, context: StageContext) -> StageResult:
        raw_outputs: Dict[str, str] = {}
        try:
            for spec in self.tools:
                raw_outputs[spec.tool_id] = self._run_tool(spec, context)
        except ExecutionError as e:
            # Keep what already ran; the stage is failed either way
            report = self.aggregator.aggregate(
                context.run_id,
                context.stage_name,
                raw_outputs,
                parsers={s.tool_id: s.parser_id for s in self.tools},
                warnings=[str(e)],
            )
            return StageResult(
                stage_name=context.stage_name,
                status=StageStatus.FAILED,
                report=report,
                attempts=1,
                error=str(e),
            )

        report = self.aggregator.aggregate(
            context.run_id,
            context.stage_name,
            raw_outputs,
            parsers={s.tool_id: s.parser_id for s in self.tools},
        )
        for warning in report.warnings:
            context.emitter.warning(warning, {"stage": context.stage_name})

        gate = self.evaluator.evaluate(report, self.policy)
        error = None
        if not gate.passed:
            error = str(GateFailure(context.stage_name, gate.blocking_count, self.policy.max_allowed))

        return StageResult(
            stage_name=context.stage_name,
            status=StageStatus.PASSED if gate.passed else StageStatus.FAILED,
            report=report,
            gate=gate,
            attempts=1,
            error=error,
        )

    def _run_tool(self, spec: ToolSpec, context: StageContext) -> str:
        if spec.output_file:
            # A report left over from an earlier run must not be read back
            stale = Path(spec.output_file)
            if self.working_dir and not stale.is_absolute():
                stale = Path(self.working_dir) / stale
            stale.unlink(missing_ok=True)

        result = self.runner.run(
            spec.command,
            spec.render_args(self.variables),
            working_dir=self.working_dir,
            timeout=spec.timeout_seconds or self.timeout,
            env_remove=self.env_remove,
        )
        context.emitter.tool_completed(context.stage_name, spec.tool_id, result.exit_code, result.duration_ms)

        if not spec.accepts(result.exit_code):
            stderr = (result.stderr or "").strip()[-500:]
            raise ExecutionError(
                f"{spec.tool_id} failed with exit code {result.exit_code}: {stderr}",
                command=result.command,
            )

        if spec.output_file:
            return read_output_file(spec.output_file, self.working_dir)
        return result.stdout


class CommandAction:
    """Run commands in order; the first non-zero exit fails the stage."""

    def __init__(
        self,
        commands: Sequence[Sequence[str]],
        runner: Optional[ToolRunner] = None,
        aggregator: Optional[ReportAggregator] = None,
        working_dir: Optional[str] = None,
        timeout: Optional[int] = None,
        env: Optional[Dict[str, str]] = None,
        env_remove: AbstractSet[str] = frozenset(),
    ):
        self.commands: List[List[str]] = [list(argv) for argv in commands]
        self.runner = runner or ToolRunner()
        self.aggregator = aggregator or ReportAggregator()
        self.working_dir = working_dir
        self.timeout = timeout
        self.env = env
        self.env_remove = env_remove

    def __call__(self, context: StageContext) -> StageResult:
        outputs: Dict[str, str] = {}
        error = None

        for index, argv in enumerate(self.commands, start=1):
            key = f"step{index}-{argv[0]}"
            try:
                result = self.runner.run(
                    argv[0],
                    argv[1:],
                    working_dir=self.working_dir,
                    timeout=self.timeout,
                    env=self.env,
                    env_remove=self.env_remove,
                )
            except ExecutionError as e:
                outputs[key] = str(e)
                error = str(e)
                break

            outputs[key] = _format_output(result)
            context.emitter.tool_completed(context.stage_name, argv[0], result.exit_code, result.duration_ms)
            if result.exit_code != 0:
                error = f"'{result.command}' exited with code {result.exit_code}"
                break

        report = self.aggregator.merge([], run_id=context.run_id, stage_name=context.stage_name, raw_outputs=outputs)
        return StageResult(
            stage_name=context.stage_name,
            status=StageStatus.FAILED if error else StageStatus.PASSED,
            report=report,
            attempts=1,
            error=error,
        )


class DeployAction:
    """Deploy to one target through its own driver and credential handle."""

    def __init__(
        self,
        target: DeployTargetConfig,
        driver: DeploymentDriver,
        credentials: CredentialHandle,
        max_retries: int,
        image: Optional[str] = None,
        env_remove: AbstractSet[str] = frozenset(),
    ):
        self.target = target
        self.driver = driver
        self.credentials = credentials
        self.max_retries = max_retries
        self.image = image
        self.env_remove = env_remove

    def __call__(self, context: StageContext) -> StageResult:
        return self.driver.deploy(
            self.target,
            self.image,
            self.credentials,
            self.max_retries,
            stage_name=context.stage_name,
            run_id=context.run_id,
            emitter=context.emitter,
            env_remove=self.env_remove,
        )


def _format_output(result: ToolResult) -> str:
    return "\n".join(
        part for part in (f"$ {result.command}", result.stdout, result.stderr) if part
    )
