"""Fallback parser used when no parser is registered for a tool."""

from typing import List

from bastion.data_models import Finding
from bastion.parsers.base import BaseParser


class FallbackParser(BaseParser):
    """Parser used when no parsing strategy is registered."""

    def __init__(self, tool_id: str, config=None):
        super().__init__(config)
        self.tool_id = tool_id

    def parse(self, raw_output: str) -> List[Finding]:
        raise self.fail("No parser registered for this tool")
