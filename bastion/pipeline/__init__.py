"""Pipeline execution framework for Bastion.

This package provides:
- Pipeline schema definitions (schema.py)
- Pipeline loader and validator (loader.py)
- Report aggregation across tools (aggregator.py)
- Gate evaluation (gating.py)
- Stage execution (executor.py) and stage actions (actions.py)
- Dependency graph scheduling (graph.py)
- Config-to-stage building (builder.py)

actions.py and builder.py are not re-exported here because they import the
deploy package, which itself depends on schema.py.
"""

from bastion.pipeline.schema import (
    DeployTargetConfig,
    CredentialRef,
    Environment,
    GatePolicy,
    PipelineConfig,
    SourceRule,
    StageConfig,
    StageKind,
)
from bastion.pipeline.loader import PipelineLoader
from bastion.pipeline.aggregator import ReportAggregator
from bastion.pipeline.gating import GateEvaluator, summarize_findings
from bastion.pipeline.executor import Stage, StageContext, StageExecutor
from bastion.pipeline.graph import PipelineGraph, find_cycle

__all__ = [
    "DeployTargetConfig",
    "CredentialRef",
    "Environment",
    "GatePolicy",
    "PipelineConfig",
    "SourceRule",
    "StageConfig",
    "StageKind",
    "PipelineLoader",
    "ReportAggregator",
    "GateEvaluator",
    "summarize_findings",
    "Stage",
    "StageContext",
    "StageExecutor",
    "PipelineGraph",
    "find_cycle",
]
