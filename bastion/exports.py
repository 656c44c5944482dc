"""Export functionality for SARIF and CSV."""
import csv
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bastion.data_models import Finding, Report, Severity

SARIF_SCHEMA = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json"


def export_sarif(reports: Iterable[Report], base_uri: str = "file:///") -> Dict[str, Any]:
    """Export a run's reports to SARIF, one SARIF run per source tool."""
    by_source: Dict[str, List[Finding]] = {}
    for report in reports:
        for finding in report.findings:
            by_source.setdefault(finding.source, []).append(finding)

    # SARIF version 2.1.0
    return {
        "version": "2.1.0",
        "$schema": SARIF_SCHEMA,
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": source,
                        "rules": _build_sarif_rules(findings),
                    }
                },
                "results": _build_sarif_results(findings, base_uri),
            }
            for source, findings in by_source.items()
        ],
    }


def _build_sarif_rules(findings: List[Finding]) -> List[Dict[str, Any]]:
    """Build SARIF rules from findings (one per category)."""
    rules_dict: Dict[str, Dict[str, Any]] = {}

    for finding in findings:
        if finding.category not in rules_dict:
            rules_dict[finding.category] = {
                "id": finding.category,
                "shortDescription": {
                    "text": finding.message[:200]
                },
                "properties": {
                    "severity": finding.severity.value,
                },
            }

    return list(rules_dict.values())


def _build_sarif_results(findings: List[Finding], base_uri: str) -> List[Dict[str, Any]]:
    """Build SARIF results from findings."""
    results = []

    for finding in findings:
        result: Dict[str, Any] = {
            "ruleId": finding.category,
            "level": _severity_to_sarif_level(finding.severity),
            "message": {
                "text": finding.message
            },
        }
        path, line = _split_location(finding.location)
        if path:
            region = {"startLine": line} if line else {}
            result["locations"] = [
                {
                    "physicalLocation": {
                        "artifactLocation": {
                            "uri": path.replace(base_uri, "") if base_uri in path else path,
                            "uriBaseId": "ROOT"
                        },
                        **({"region": region} if region else {}),
                    }
                }
            ]
        results.append(result)

    return results


def _split_location(location: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
    """'path:line' -> (path, line); URLs and bare paths have no line."""
    if not location:
        return None, None
    if "://" in location:
        return location, None
    path, sep, line = location.rpartition(":")
    if sep and line.isdigit():
        return path, int(line)
    return location, None


def _severity_to_sarif_level(severity: Severity) -> str:
    """Convert severity to SARIF level."""
    mapping = {
        Severity.CRITICAL: "error",
        Severity.HIGH: "error",
        Severity.MEDIUM: "warning",
        Severity.LOW: "note",
        Severity.INFO: "note",
    }
    return mapping.get(severity, "warning")


def export_csv(findings: Iterable[Finding], output_path: str):
    """Export findings to CSV file."""
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Source", "Severity", "Category", "Location", "Message"])

        for finding in findings:
            writer.writerow([
                finding.source,
                finding.severity.value,
                finding.category,
                finding.location or "",
                finding.message,
            ])
