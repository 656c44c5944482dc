"""Pipeline graph: dependency validation and scheduling of stages.

Stages whose dependencies have all finished are submitted to a thread pool
in declaration order. A failed stage does not stop the run: its dependents
are skipped by the executor while independent branches keep going.
"""

import logging
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from bastion.data_models import PipelineRun, StageResult, StageStatus
from bastion.errors import CycleError
from bastion.events import EventEmitter
from bastion.pipeline.executor import Stage, StageExecutor

logger = logging.getLogger(__name__)


def find_cycle(stages: Sequence[Stage]) -> Optional[List[str]]:
    """Return one dependency cycle as a list of names (first == last), or None."""
    by_name = {stage.name: stage for stage in stages}
    visiting: List[str] = []
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done

    def visit(name: str) -> Optional[List[str]]:
        state[name] = 1
        visiting.append(name)
        for dep in sorted(by_name[name].depends_on):
            if state.get(dep) == 1:
                return visiting[visiting.index(dep):] + [dep]
            if dep not in state:
                cycle = visit(dep)
                if cycle:
                    return cycle
        visiting.pop()
        state[name] = 2
        return None

    for stage in stages:
        if stage.name not in state:
            cycle = visit(stage.name)
            if cycle:
                return cycle
    return None


class PipelineGraph:
    """A validated DAG of stages."""

    def __init__(
        self,
        stages: Sequence[Stage],
        executor: Optional[StageExecutor] = None,
        name: str = "pipeline",
        max_workers: int = 4,
    ):
        """
        Validate the stage graph.

        Args:
            stages: Stages in declaration order
            executor: Stage executor (a default one with an in-memory store if omitted)
            name: Pipeline name recorded on runs
            max_workers: Maximum stages running at once

        Raises:
            ValueError: Duplicate stage names or unknown dependencies
            CycleError: If the dependencies contain a cycle
        """
        names = [stage.name for stage in stages]
        if len(names) != len(set(names)):
            raise ValueError("Stage names must be unique")
        known = set(names)
        for stage in stages:
            unknown = sorted(stage.depends_on - known)
            if unknown:
                raise ValueError(f"Stage '{stage.name}' depends on unknown stage(s): {', '.join(unknown)}")

        cycle = find_cycle(stages)
        if cycle:
            raise CycleError(cycle)

        self.stages: List[Stage] = list(stages)
        self.executor = executor or StageExecutor()
        self.name = name
        self.max_workers = max(1, max_workers)
        self._order = {name: index for index, name in enumerate(names)}

    @property
    def terminal_stages(self) -> List[str]:
        """Stages nothing depends on."""
        required = set()
        for stage in self.stages:
            required.update(stage.depends_on)
        return [stage.name for stage in self.stages if stage.name not in required]

    def dependents(self, stage_name: str) -> List[str]:
        """Stages depending on ``stage_name`` directly or transitively, in declaration order."""
        found = {stage_name}
        changed = True
        while changed:
            changed = False
            for stage in self.stages:
                if stage.name not in found and stage.depends_on & found:
                    found.add(stage.name)
                    changed = True
        found.discard(stage_name)
        return [stage.name for stage in self.stages if stage.name in found]

    def run(
        self,
        run_id: Optional[str] = None,
        revision: Optional[str] = None,
        run_url: Optional[str] = None,
    ) -> PipelineRun:
        """
        Execute every stage once, honoring dependencies.

        Args:
            run_id: Run identifier (generated if not provided)
            revision: Source revision that triggered the run
            run_url: Link to the run for notifications

        Returns:
            PipelineRun with results in completion order and the final verdict
        """
        run_id = run_id or str(uuid.uuid4())
        emitter = EventEmitter(run_id, self.executor.event_bus)
        pipeline_run = PipelineRun(
            run_id=run_id,
            pipeline_name=self.name,
            revision=revision,
            run_url=run_url,
            terminal_stages=self.terminal_stages,
        )

        logger.info(f"[{run_id}] Running pipeline '{self.name}' ({len(self.stages)} stages)")
        emitter.pipeline_started(self.name, len(self.stages))
        start_time = time.time()

        results: Dict[str, StageResult] = {}
        pending: List[Stage] = list(self.stages)
        running: Dict[Future, Stage] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="stage") as pool:
            while pending or running:
                ready = [s for s in pending if all(dep in results for dep in s.depends_on)]
                for stage in ready:
                    pending.remove(stage)
                    upstream = {dep: results[dep] for dep in stage.depends_on}
                    future = pool.submit(self.executor.execute, stage, upstream, run_id)
                    running[future] = stage

                if not running:
                    # Unreachable for a validated DAG
                    raise RuntimeError(f"No runnable stages left: {[s.name for s in pending]}")

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: self._order[running[f].name]):
                    stage = running.pop(future)
                    try:
                        result = future.result()
                    except Exception as e:
                        logger.exception(f"[{run_id}] Executor crashed on stage '{stage.name}'")
                        result = StageResult(
                            stage_name=stage.name,
                            status=StageStatus.FAILED,
                            attempts=1,
                            error=f"{type(e).__name__}: {e}",
                        )
                    results[stage.name] = result
                    pipeline_run.results.append(result)

        pipeline_run.completed_at = datetime.utcnow()
        duration_ms = int((time.time() - start_time) * 1000)
        emitter.pipeline_completed(pipeline_run.verdict.value, pipeline_run.status_counts(), duration_ms)
        logger.info(
            f"[{run_id}] Pipeline '{self.name}' finished: {pipeline_run.verdict.value} "
            f"{pipeline_run.status_counts()} in {duration_ms}ms"
        )
        return pipeline_run
