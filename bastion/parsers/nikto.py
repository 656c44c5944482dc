"""Parser for Nikto web scanner JSON reports."""

from typing import Any, Dict, List

from bastion.data_models import Finding, Severity
from bastion.parsers.base import JSONToolParser


class NiktoParser(JSONToolParser):
    """
    Parse ``nikto -Format json`` output.

    Nikto writes one object per scanned host, either alone or in a list:
    {"host": "...", "port": "443", "vulnerabilities": [{"id": "999986", "url": "/", "msg": "..."}]}
    """

    tool_id = "nikto"

    def parse(self, raw_output: str) -> List[Finding]:
        data = self.load_json(raw_output)
        if data is None:
            return []

        hosts = data if isinstance(data, list) else [data]
        findings: List[Finding] = []
        for host in hosts:
            if not isinstance(host, dict):
                raise self.fail(f"unexpected host entry: {host!r}")
            vulnerabilities = host.get("vulnerabilities", [])
            if not isinstance(vulnerabilities, list):
                raise self.fail("'vulnerabilities' must be a list")
            for vuln in vulnerabilities:
                findings.append(self._to_finding(host, vuln))
        return findings

    def _to_finding(self, host: Dict[str, Any], vuln: Any) -> Finding:
        if not isinstance(vuln, dict):
            raise self.fail(f"unexpected vulnerability entry: {vuln!r}")
        target = host.get("host") or host.get("ip") or ""
        url = vuln.get("url") or ""
        return Finding(
            source=self.tool_id,
            severity=Severity.parse(self.config.get("severity"), default=Severity.MEDIUM),
            category=str(vuln.get("id") or vuln.get("OSVDB") or "nikto"),
            message=str(vuln.get("msg", "")),
            location=f"{target}{url}" if target or url else None,
        )
