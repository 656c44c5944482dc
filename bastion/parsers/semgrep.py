"""Parser for Semgrep JSON reports."""

from typing import List

from bastion.data_models import Finding, Severity
from bastion.parsers.base import JSONToolParser

# Semgrep rule levels
SEMGREP_SEVERITY = {
    "ERROR": Severity.HIGH,
    "WARNING": Severity.MEDIUM,
    "INFO": Severity.INFO,
}


class SemgrepParser(JSONToolParser):
    """Parse ``semgrep --json`` output (``results`` list, ``errors`` ignored)."""

    tool_id = "semgrep"

    def parse(self, raw_output: str) -> List[Finding]:
        data = self.load_json(raw_output)
        if data is None:
            return []
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise self.fail("expected an object with a 'results' list")

        findings: List[Finding] = []
        for item in data["results"]:
            if not isinstance(item, dict):
                raise self.fail(f"unexpected result entry: {item!r}")
            extra = item.get("extra") or {}
            level = str(extra.get("severity", "WARNING")).upper()
            start = item.get("start") or {}
            findings.append(
                Finding(
                    source=self.tool_id,
                    severity=SEMGREP_SEVERITY.get(level, Severity.MEDIUM),
                    category=str(item.get("check_id", "semgrep")),
                    message=str(extra.get("message", "")).strip(),
                    location=self.location(item.get("path"), start.get("line")),
                )
            )
        return findings
