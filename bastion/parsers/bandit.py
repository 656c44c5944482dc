"""Parser for Bandit (Python SAST) JSON reports."""

from typing import List

from bastion.data_models import Finding, Severity
from bastion.parsers.base import JSONToolParser


class BanditParser(JSONToolParser):
    """
    Parse ``bandit -f json`` output.

    Expected format:
    {
      "results": [
        {
          "test_id": "B105",
          "issue_severity": "LOW",
          "issue_text": "Possible hardcoded password",
          "filename": "./app.py",
          "line_number": 12
        }
      ]
    }
    """

    tool_id = "bandit"

    def parse(self, raw_output: str) -> List[Finding]:
        data = self.load_json(raw_output)
        if data is None:
            return []

        # A pre-filtered report is a bare list of results
        if isinstance(data, dict):
            results = data.get("results")
        else:
            results = data
        if not isinstance(results, list):
            raise self.fail("expected a 'results' list")

        findings: List[Finding] = []
        for item in results:
            if not isinstance(item, dict):
                raise self.fail(f"unexpected result entry: {item!r}")
            findings.append(
                Finding(
                    source=self.tool_id,
                    severity=Severity.parse(item.get("issue_severity"), default=Severity.MEDIUM),
                    category=str(item.get("test_id") or item.get("test_name") or "bandit"),
                    message=str(item.get("issue_text", "")),
                    location=self.location(item.get("filename"), item.get("line_number")),
                )
            )
        return findings
