"""Base parser interface for tool outputs."""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from bastion.data_models import Finding
from bastion.errors import ParseError


class BaseParser(ABC):
    """
    Abstract base class for tool output parsers.

    Parsers convert one tool's raw output into normalized Findings. A parser
    raises ParseError when the output does not have the tool's expected shape;
    it never returns partial results for malformed input.
    """

    tool_id: str = "tool"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize parser with optional configuration.

        Args:
            config: Parser-specific configuration
        """
        self.config = config or {}

    @abstractmethod
    def parse(self, raw_output: str) -> List[Finding]:
        """
        Parse raw tool output into findings.

        Args:
            raw_output: Raw stdout (or report file content) of the tool

        Returns:
            Findings in the order the tool reported them

        Raises:
            ParseError: If the output is malformed
        """

    def validate_output_size(self, raw_output: str, max_length: int = 10_000_000) -> bool:
        """
        Validate output size to prevent pathological inputs.

        Args:
            raw_output: Raw output string
            max_length: Maximum allowed length

        Returns:
            True if valid, False otherwise
        """
        if isinstance(raw_output, str) and len(raw_output) > max_length:
            return False
        return True

    def fail(self, message: str) -> ParseError:
        return ParseError(self.tool_id, message)


class JSONToolParser(BaseParser):
    """Base for tools emitting a single JSON document."""

    def load_json(self, raw_output: str) -> Optional[Any]:
        """Decode the document; empty output means the tool reported nothing."""
        if raw_output is None or not str(raw_output).strip():
            return None

        max_len = self.config.get("max_length", 10_000_000)
        if not self.validate_output_size(raw_output, max_length=max_len):
            raise self.fail(f"Output too large (> {max_len} chars)")

        try:
            return json.loads(raw_output)
        except json.JSONDecodeError as e:
            raise self.fail(f"JSON parse error: {e}")

    @staticmethod
    def location(path: Optional[str], line: Any = None) -> Optional[str]:
        if not path:
            return None
        if line in (None, "", 0):
            return str(path)
        return f"{path}:{line}"
