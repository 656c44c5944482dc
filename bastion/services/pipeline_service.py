"""Pipeline orchestration service: trigger check, build, run, notify."""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from bastion.artifacts import ArtifactStore
from bastion.config import Config
from bastion.data_models import PipelineRun
from bastion.deploy.driver import DeploymentDriver
from bastion.events import EventBus
from bastion.notifier import LogNotifier, Notifier, TelegramNotifier
from bastion.pipeline.builder import StageBuilder
from bastion.pipeline.executor import StageExecutor
from bastion.pipeline.graph import PipelineGraph
from bastion.pipeline.loader import PipelineLoader
from bastion.pipeline.schema import PipelineConfig
from bastion.tools.runner import ToolRunner
from bastion.trigger import BranchTrigger, TriggerEvent

logger = logging.getLogger(__name__)


@dataclass
class RunState:
    """Completed runs kept in memory, by run id."""
    runs: Dict[str, PipelineRun] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def store(self, run: PipelineRun) -> None:
        with self._lock:
            self.runs[run.run_id] = run

    def get(self, run_id: str) -> Optional[PipelineRun]:
        with self._lock:
            return self.runs.get(run_id)

    def list(self) -> List[PipelineRun]:
        with self._lock:
            return list(self.runs.values())


class PipelineService:
    """Runs a configured pipeline for a trigger event."""

    def __init__(
        self,
        config: Optional[Config] = None,
        loader: Optional[PipelineLoader] = None,
        artifact_store: Optional[ArtifactStore] = None,
        notifier: Optional[Notifier] = None,
        runner: Optional[ToolRunner] = None,
        driver_factory: Optional[Callable[[], DeploymentDriver]] = None,
        event_bus: Optional[EventBus] = None,
        run_state: Optional[RunState] = None,
    ):
        self.config = config or Config()
        self.loader = loader or PipelineLoader()
        self.artifact_store = artifact_store or ArtifactStore(root_dir=self.config.ARTIFACT_DIR)
        self.event_bus = event_bus
        self.notifier = notifier or self._default_notifier()
        self.runner = runner or ToolRunner()
        self.driver_factory = driver_factory
        self.run_state = run_state or RunState()

    def _default_notifier(self) -> Notifier:
        if self.config.telegram_enabled:
            return TelegramNotifier(
                self.config.TELEGRAM_BOT_TOKEN,
                self.config.TELEGRAM_CHAT_ID,
                event_bus=self.event_bus,
            )
        logger.info("Telegram not configured, notifications go to the log")
        return LogNotifier(event_bus=self.event_bus)

    def load_pipeline(self, name_or_path: Optional[str] = None) -> PipelineConfig:
        """Load a preset by name, or a YAML file by path."""
        name_or_path = name_or_path or self.config.PIPELINE
        path = Path(name_or_path)
        if path.suffix in (".yaml", ".yml") or path.exists():
            return self.loader.load_from_yaml(path)
        return self.loader.load_preset(name_or_path)

    def should_run(self, pipeline: PipelineConfig, trigger: TriggerEvent) -> bool:
        branches = self.config.BRANCHES or pipeline.branches
        return BranchTrigger(branches, pipeline.events).matches(trigger)

    def build_graph(self, pipeline: PipelineConfig) -> PipelineGraph:
        """
        Build the stage graph for a pipeline.

        Raises:
            CycleError: If stage dependencies contain a cycle
        """
        builder = StageBuilder(
            runner=self.runner,
            tool_registry=self.loader.tool_registry,
            driver_factory=self.driver_factory,
            working_dir=self.config.WORKING_DIR,
            image=self.config.IMAGE_TAG,
            deploy_retries=self.config.DEPLOY_RETRIES,
        )
        return PipelineGraph(
            builder.build(pipeline),
            executor=StageExecutor(self.artifact_store, event_bus=self.event_bus),
            name=pipeline.name,
            max_workers=self.config.MAX_WORKERS,
        )

    def run(
        self,
        trigger: Optional[TriggerEvent] = None,
        pipeline: Optional[PipelineConfig] = None,
    ) -> Optional[PipelineRun]:
        """
        Run the pipeline once for a trigger event.

        Args:
            trigger: Trigger event (read from the environment if omitted)
            pipeline: Pipeline to run (the configured one if omitted)

        Returns:
            The completed run, or None when the trigger does not match

        Raises:
            CycleError: Before any stage runs, if the graph is cyclic
        """
        trigger = trigger or TriggerEvent.from_env()
        pipeline = pipeline or self.load_pipeline()

        if not self.should_run(pipeline, trigger):
            logger.info(
                f"[{trigger.run_id}] Trigger {trigger.event_name} on {trigger.branch} "
                f"does not match pipeline '{pipeline.name}', not running"
            )
            return None

        graph = self.build_graph(pipeline)
        run = graph.run(
            run_id=trigger.run_id,
            revision=trigger.revision,
            run_url=self.config.RUN_URL or trigger.run_url,
        )
        self.run_state.store(run)

        # Always notify, whatever the verdict
        self.notifier.notify(run)
        return run
