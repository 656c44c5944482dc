"""Services for orchestrating pipeline runs."""

from bastion.services.pipeline_service import PipelineService, RunState

__all__ = [
    "PipelineService",
    "RunState",
]
