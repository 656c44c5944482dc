"""Data models for pipeline runs, reports and gate decisions."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Severity(str, Enum):
    """Normalized finding severity."""
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER[self]

    @classmethod
    def parse(cls, value: Any, default: "Severity" = None) -> "Severity":
        """Parse a tool-specific severity label ("HIGH", "warning", ...)."""
        if isinstance(value, Severity):
            return value
        label = str(value or "").strip().lower()
        try:
            return cls(label)
        except ValueError:
            if label in _SEVERITY_ALIASES:
                return _SEVERITY_ALIASES[label]
            if default is not None:
                return default
            raise


_SEVERITY_ORDER = {
    Severity.INFO: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}

_SEVERITY_ALIASES = {
    "error": Severity.HIGH,
    "warning": Severity.MEDIUM,
    "warn": Severity.MEDIUM,
    "note": Severity.LOW,
    "informational": Severity.INFO,
    "undefined": Severity.INFO,
}


class StageStatus(str, Enum):
    """Terminal status of a stage."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Finding:
    """One normalized issue reported by a scanning tool."""
    source: str
    severity: Severity
    category: str
    message: str
    location: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source": self.source,
            "severity": self.severity.value,
            "category": self.category,
            "message": self.message,
            "location": self.location,
        }


@dataclass(frozen=True)
class Report:
    """Merged findings and raw tool outputs of one stage."""
    run_id: str
    stage_name: str
    findings: Tuple[Finding, ...] = ()
    raw_outputs: Dict[str, str] = field(default_factory=dict)  # tool_id -> raw text
    warnings: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=datetime.utcnow)

    def findings_for(self, source: str) -> List[Finding]:
        return [f for f in self.findings if f.source == source]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (raw outputs are exported separately)."""
        return {
            "run_id": self.run_id,
            "stage_name": self.stage_name,
            "findings": [f.to_dict() for f in self.findings],
            "tools": sorted(self.raw_outputs.keys()),
            "warnings": list(self.warnings),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class GateResult:
    """Pass/fail decision for a stage, derived from a Report and a policy."""
    stage_name: str
    passed: bool
    blocking_findings: Tuple[Finding, ...]
    evaluated_at: datetime
    max_allowed: int = 0
    counts_by_source: Dict[str, int] = field(default_factory=dict)
    counts_by_severity: Dict[str, int] = field(default_factory=dict)

    @property
    def blocking_count(self) -> int:
        return len(self.blocking_findings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "passed": self.passed,
            "blocking_findings": [f.to_dict() for f in self.blocking_findings],
            "blocking_count": self.blocking_count,
            "max_allowed": self.max_allowed,
            "counts_by_source": dict(self.counts_by_source),
            "counts_by_severity": dict(self.counts_by_severity),
            "evaluated_at": self.evaluated_at.isoformat(),
        }


@dataclass(frozen=True)
class StageResult:
    """Terminal outcome of one stage."""
    stage_name: str
    status: StageStatus
    report: Optional[Report] = None
    gate: Optional[GateResult] = None
    attempts: int = 0
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def passed(self) -> bool:
        return self.status == StageStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "findings_count": len(self.report.findings) if self.report else 0,
            "gate": self.gate.to_dict() if self.gate else None,
        }


@dataclass
class PipelineRun:
    """All stage results of one triggered run plus its verdict."""
    run_id: str
    pipeline_name: str
    revision: Optional[str] = None
    run_url: Optional[str] = None
    results: List[StageResult] = field(default_factory=list)
    terminal_stages: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def result_for(self, stage_name: str) -> Optional[StageResult]:
        for result in self.results:
            if result.stage_name == stage_name:
                return result
        return None

    @property
    def statuses(self) -> Dict[str, StageStatus]:
        return {r.stage_name: r.status for r in self.results}

    @property
    def passed(self) -> bool:
        """Passed iff every terminal stage passed."""
        if not self.terminal_stages:
            return False
        statuses = self.statuses
        return all(statuses.get(name) == StageStatus.PASSED for name in self.terminal_stages)

    @property
    def verdict(self) -> StageStatus:
        return StageStatus.PASSED if self.passed else StageStatus.FAILED

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in StageStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    def blocking_counts(self) -> Dict[str, int]:
        """Blocking findings per source tool across all gated stages."""
        counts: Dict[str, int] = {}
        for result in self.results:
            if not result.gate:
                continue
            for source, count in result.gate.counts_by_source.items():
                counts[source] = counts.get(source, 0) + count
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline_name": self.pipeline_name,
            "revision": self.revision,
            "run_url": self.run_url,
            "verdict": self.verdict.value,
            "status_counts": self.status_counts(),
            "blocking_counts": self.blocking_counts(),
            "stages": [r.to_dict() for r in self.results],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
