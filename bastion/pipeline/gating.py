"""Gate evaluation: decide pass/fail for a stage from its Report.

Provides:
- GateEvaluator: apply a GatePolicy to a Report
- summarize_findings: severity/source counts for summaries and notifications
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from bastion.data_models import Finding, GateResult, Report, Severity
from bastion.pipeline.schema import GatePolicy

logger = logging.getLogger(__name__)


def summarize_findings(findings: Iterable[Finding]) -> Dict[str, Dict[str, int]]:
    """Count findings by source and by severity (keys in first-seen/rank order)."""
    by_source: Dict[str, int] = OrderedDict()
    by_severity: Dict[str, int] = OrderedDict((s.value, 0) for s in Severity)
    for finding in findings:
        by_source[finding.source] = by_source.get(finding.source, 0) + 1
        by_severity[finding.severity.value] += 1
    return {"by_source": dict(by_source), "by_severity": dict(by_severity)}


class GateEvaluator:
    """Evaluate gate policies against stage reports.

    Evaluation is pure: the same Report and GatePolicy always produce an
    equal GateResult, including ``evaluated_at`` (which defaults to the
    report's creation time).
    """

    def is_blocking(self, finding: Finding, policy: GatePolicy) -> bool:
        """
        Decide whether one finding counts against the gate.

        A finding does not block when its source is advisory, its category is
        excluded (globally or for its source), or its severity is below the
        applicable floor (source override, else policy).
        """
        rule = policy.rule_for(finding.source)
        if rule.advisory:
            return False
        if finding.category in policy.exclude_categories or finding.category in rule.exclude_categories:
            return False
        floor = rule.min_severity or policy.min_severity
        return finding.severity.rank >= floor.rank

    def evaluate(
        self,
        report: Report,
        policy: GatePolicy,
        evaluated_at: Optional[datetime] = None,
    ) -> GateResult:
        """
        Apply a policy to a report.

        Args:
            report: Merged stage report
            policy: Gate policy for the stage
            evaluated_at: Timestamp to record (defaults to report.created_at)

        Returns:
            GateResult; ``passed`` is False iff blocking findings exceed max_allowed
        """
        blocking: List[Finding] = [f for f in report.findings if self.is_blocking(f, policy)]
        passed = len(blocking) <= policy.max_allowed
        summary = summarize_findings(blocking)

        if passed:
            logger.debug(
                f"Gate '{report.stage_name}' passed: {len(blocking)} blocking, {policy.max_allowed} allowed"
            )
        else:
            logger.info(
                f"Gate '{report.stage_name}' failed: {len(blocking)} blocking, "
                f"{policy.max_allowed} allowed ({summary['by_source']})"
            )

        return GateResult(
            stage_name=report.stage_name,
            passed=passed,
            blocking_findings=tuple(blocking),
            evaluated_at=evaluated_at or report.created_at,
            max_allowed=policy.max_allowed,
            counts_by_source=summary["by_source"],
            counts_by_severity=summary["by_severity"],
        )
