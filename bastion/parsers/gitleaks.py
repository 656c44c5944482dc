"""Parser for Gitleaks secret-scan JSON reports."""

from typing import List

from bastion.data_models import Finding, Severity
from bastion.parsers.base import JSONToolParser


class GitleaksParser(JSONToolParser):
    """
    Parse ``gitleaks detect --report-format=json`` output.

    Gitleaks writes a JSON list of leaks. The placeholder document
    ``{"results": []}`` is also accepted. Every leak is CRITICAL; the secret
    value itself is never copied into the finding.
    """

    tool_id = "gitleaks"

    def parse(self, raw_output: str) -> List[Finding]:
        data = self.load_json(raw_output)
        if data is None:
            return []

        if isinstance(data, dict):
            data = data.get("results", data.get("leaks"))
        if not isinstance(data, list):
            raise self.fail("expected a list of leaks")

        findings: List[Finding] = []
        for leak in data:
            if not isinstance(leak, dict):
                raise self.fail(f"unexpected leak entry: {leak!r}")
            rule_id = leak.get("RuleID") or leak.get("rule") or "secret"
            description = leak.get("Description") or f"Secret matched rule {rule_id}"
            commit = leak.get("Commit")
            if commit:
                description = f"{description} (commit {commit[:12]})"
            findings.append(
                Finding(
                    source=self.tool_id,
                    severity=Severity.CRITICAL,
                    category=str(rule_id),
                    message=description,
                    location=self.location(leak.get("File"), leak.get("StartLine")),
                )
            )
        return findings
