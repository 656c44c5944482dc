"""Registry of external tool specifications."""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class ToolSpec(BaseModel):
    """How to invoke one external tool and read its result.

    ``ok_exit_codes`` lists the exit codes meaning the tool ran to completion,
    with or without findings. Any other exit code is a tool failure.
    """
    tool_id: str = Field(..., description="Tool identity, also the default parser id")
    command: str = Field(..., description="Executable name or path")
    args: List[str] = Field(default_factory=list, description="Arguments, may hold {placeholders}")
    parser: Optional[str] = Field(None, description="Parser id (defaults to tool_id)")
    ok_exit_codes: List[int] = Field(default_factory=lambda: [0])
    output_file: Optional[str] = Field(None, description="Report file to read instead of stdout")
    timeout_seconds: Optional[int] = Field(None, description="Override default tool timeout")

    @field_validator("ok_exit_codes")
    @classmethod
    def validate_exit_codes(cls, codes: List[int]):
        if not codes:
            raise ValueError("ok_exit_codes must not be empty")
        return codes

    @property
    def parser_id(self) -> str:
        return self.parser or self.tool_id

    def accepts(self, exit_code: int) -> bool:
        return exit_code in self.ok_exit_codes

    def render_args(self, variables: Optional[Dict[str, Any]] = None) -> List[str]:
        """Fill ``{name}`` placeholders in args from stage variables."""
        variables = variables or {}
        rendered = []
        for arg in self.args:
            try:
                rendered.append(arg.format(**variables))
            except KeyError as e:
                raise ValueError(f"Tool '{self.tool_id}' argument '{arg}' needs variable {e}")
        return rendered

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "ToolSpec":
        if not overrides:
            return self
        return self.model_copy(update=overrides)


BUILTIN_TOOLS: List[ToolSpec] = [
    ToolSpec(
        tool_id="bandit",
        command="bandit",
        args=["-r", ".", "-f", "json", "-q"],
        ok_exit_codes=[0, 1],
    ),
    ToolSpec(
        tool_id="gitleaks",
        command="gitleaks",
        args=[
            "detect",
            "--source=.",
            "--gitleaks-ignore-path=.scannerignore",
            "--report-format=json",
            "--report-path=gitleaks_report.json",
        ],
        ok_exit_codes=[0, 1],
        output_file="gitleaks_report.json",
    ),
    ToolSpec(
        tool_id="semgrep",
        command="semgrep",
        args=["--config=p/ci", "--json"],
        ok_exit_codes=[0, 1],
    ),
    ToolSpec(
        tool_id="black",
        command="black",
        args=[".", "--check", "--diff"],
        ok_exit_codes=[0, 1],
    ),
    ToolSpec(
        tool_id="nikto",
        command="nikto",
        args=["-h", "{target_url}", "-Format", "json", "-o", "nikto_report.json"],
        ok_exit_codes=[0, 1],
        output_file="nikto_report.json",
    ),
]


class ToolRegistry:
    """Holds tool specifications by ID."""

    def __init__(self, tools: Optional[List[ToolSpec]] = None) -> None:
        self._tools: Dict[str, ToolSpec] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolSpec) -> None:
        if tool.tool_id in self._tools:
            logger.debug(f"Replacing tool spec '{tool.tool_id}'")
        self._tools[tool.tool_id] = tool

    def register_dict(self, config: Dict[str, Any]) -> ToolSpec:
        tool = ToolSpec(**config)
        self.register(tool)
        return tool

    def get(self, tool_id: str) -> Optional[ToolSpec]:
        return self._tools.get(tool_id)

    def list_tools(self) -> Dict[str, ToolSpec]:
        return dict(self._tools)


def default_registry() -> ToolRegistry:
    """A fresh registry holding the built-in tool specs."""
    return ToolRegistry(BUILTIN_TOOLS)
