"""Stage executor: run one stage's action, publish its artifact, report status.

A stage is skipped without invoking its action when any dependency did not
pass. Every executed stage publishes exactly one artifact, including stages
whose action failed or raised.
"""

import dataclasses
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Mapping, Optional

from bastion.artifacts import ArtifactStore
from bastion.data_models import Report, StageResult, StageStatus
from bastion.errors import ArtifactError, BastionError
from bastion.events import EventBus, EventEmitter

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    """What a stage action can see while it runs."""
    run_id: str
    stage_name: str
    upstream: Mapping[str, StageResult]
    emitter: EventEmitter


@dataclass(frozen=True)
class Stage:
    """A named unit of work with declared dependencies."""
    name: str
    action: Callable[[StageContext], StageResult]
    depends_on: FrozenSet[str] = field(default_factory=frozenset)
    enabled: bool = True

    def __post_init__(self):
        # Accept any iterable of names
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))


class StageExecutor:
    """Execute single stages against an artifact store."""

    def __init__(self, artifact_store: Optional[ArtifactStore] = None, event_bus: Optional[EventBus] = None):
        """
        Initialize stage executor.

        Args:
            artifact_store: Where executed stages publish their reports
            event_bus: Event bus for stage events (defaults to the global bus)
        """
        self.artifact_store = artifact_store or ArtifactStore()
        self.event_bus = event_bus

    def execute(
        self,
        stage: Stage,
        upstream_results: Mapping[str, StageResult],
        run_id: Optional[str] = None,
    ) -> StageResult:
        """
        Execute a stage.

        Args:
            stage: Stage to run
            upstream_results: Results of already-finished stages, by name
            run_id: Run identifier (generated if not provided)

        Returns:
            Skipped if a dependency did not pass, otherwise Passed/Failed
        """
        run_id = run_id or str(uuid.uuid4())
        emitter = EventEmitter(run_id, self.event_bus)

        blocked = sorted(
            dep for dep in stage.depends_on
            if upstream_results.get(dep) is None or upstream_results[dep].status != StageStatus.PASSED
        )
        if blocked or not stage.enabled:
            reason = f"dependencies not passed: {', '.join(blocked)}" if blocked else "stage disabled"
            logger.info(f"[{run_id}] Skipping stage '{stage.name}' ({reason})")
            emitter.stage_skipped(stage.name, reason)
            return StageResult(stage_name=stage.name, status=StageStatus.SKIPPED, attempts=0)

        logger.info(f"[{run_id}] Starting stage '{stage.name}'")
        emitter.stage_started(stage.name)
        start = time.time()

        context = StageContext(
            run_id=run_id,
            stage_name=stage.name,
            upstream=dict(upstream_results),
            emitter=emitter,
        )
        try:
            result = stage.action(context)
            if not isinstance(result, StageResult):
                raise TypeError(f"action returned {type(result).__name__}, expected StageResult")
        except BastionError as e:
            logger.error(f"[{run_id}] Stage '{stage.name}' failed: {e}")
            result = StageResult(stage_name=stage.name, status=StageStatus.FAILED, attempts=1, error=str(e))
        except Exception as e:
            logger.exception(f"[{run_id}] Stage '{stage.name}' raised unexpectedly")
            result = StageResult(
                stage_name=stage.name,
                status=StageStatus.FAILED,
                attempts=1,
                error=f"{type(e).__name__}: {e}",
            )

        report = result.report or Report(
            run_id=run_id,
            stage_name=stage.name,
            warnings=(result.error,) if result.error else (),
        )
        result = dataclasses.replace(
            result,
            stage_name=stage.name,
            report=report,
            attempts=max(result.attempts, 1),
            duration_ms=int((time.time() - start) * 1000),
        )

        try:
            self.artifact_store.publish(run_id, stage.name, report, result.gate)
            emitter.artifact_published(stage.name, len(report.findings))
        except ArtifactError as e:
            logger.error(f"[{run_id}] Could not publish artifacts for '{stage.name}': {e}")
            result = dataclasses.replace(result, status=StageStatus.FAILED, error=str(e))

        if result.status == StageStatus.PASSED:
            emitter.stage_completed(stage.name, len(report.findings), result.duration_ms)
        else:
            emitter.stage_failed(stage.name, result.error or "failed")
        logger.info(
            f"[{run_id}] Stage '{stage.name}' {result.status.value} "
            f"({len(report.findings)} finding(s), {result.attempts} attempt(s), {result.duration_ms}ms)"
        )
        return result
