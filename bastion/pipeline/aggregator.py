"""Normalize raw tool outputs into findings and merge them into a Report."""

import dataclasses
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from bastion.data_models import Finding, Report
from bastion.errors import ParseError
from bastion.parsers import get_parser

logger = logging.getLogger(__name__)


class ReportAggregator:
    """Turn per-tool raw output into one structured Report per stage."""

    def __init__(self, parser_config: Optional[Dict[str, Dict]] = None):
        """
        Args:
            parser_config: Optional per-parser configuration (parser_id -> config)
        """
        self.parser_config = parser_config or {}

    def normalize(self, tool_id: str, raw_output: str, parser_id: Optional[str] = None) -> List[Finding]:
        """
        Parse one tool's raw output.

        Args:
            tool_id: Tool identity; also selects the parser unless parser_id is given
            raw_output: Raw text the tool produced
            parser_id: Registered parser to use instead of the tool's own

        Returns:
            Findings attributed to ``tool_id``

        Raises:
            ParseError: If the output is malformed or no parser is registered
        """
        parser_id = parser_id or tool_id
        parser = get_parser(parser_id, self.parser_config.get(parser_id))
        findings = parser.parse(raw_output)
        return [
            f if f.source == tool_id else dataclasses.replace(f, source=tool_id)
            for f in findings
        ]

    def merge(
        self,
        finding_lists: Iterable[Sequence[Finding]],
        run_id: str = "",
        stage_name: str = "",
        raw_outputs: Optional[Mapping[str, str]] = None,
        warnings: Optional[Sequence[str]] = None,
    ) -> Report:
        """
        Concatenate finding lists into a Report.

        Per-tool order is preserved and nothing is deduplicated across
        tools: the same line flagged by two tools yields two findings.
        """
        merged: List[Finding] = []
        for findings in finding_lists:
            merged.extend(findings)

        return Report(
            run_id=run_id,
            stage_name=stage_name,
            findings=tuple(merged),
            raw_outputs=dict(raw_outputs or {}),
            warnings=tuple(warnings or ()),
        )

    def aggregate(
        self,
        run_id: str,
        stage_name: str,
        raw_outputs: Mapping[str, str],
        parsers: Optional[Mapping[str, str]] = None,
        warnings: Optional[Sequence[str]] = None,
    ) -> Report:
        """
        Normalize every tool's output and merge the results.

        A ParseError for one tool does not abort the others: that tool
        contributes no findings and a warning is recorded on the Report.

        Args:
            run_id: Run the report belongs to
            stage_name: Stage the report belongs to
            raw_outputs: tool_id -> raw output, in execution order
            parsers: Optional tool_id -> parser_id mapping
            warnings: Warnings collected before aggregation

        Returns:
            Report for the stage
        """
        parsers = parsers or {}
        collected_warnings = list(warnings or [])
        per_tool: List[List[Finding]] = []

        for tool_id, raw in raw_outputs.items():
            try:
                findings = self.normalize(tool_id, raw, parsers.get(tool_id))
            except ParseError as e:
                logger.warning(f"[{stage_name}] {e}; treating {tool_id} as having no findings")
                collected_warnings.append(str(e))
                findings = []
            logger.debug(f"[{stage_name}] {tool_id}: {len(findings)} finding(s)")
            per_tool.append(findings)

        return self.merge(
            per_tool,
            run_id=run_id,
            stage_name=stage_name,
            raw_outputs=raw_outputs,
            warnings=collected_warnings,
        )
