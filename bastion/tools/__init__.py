"""External tool invocation."""

from bastion.tools.runner import ToolResult, ToolRunner, read_output_file
from bastion.tools.registry import BUILTIN_TOOLS, ToolRegistry, ToolSpec, default_registry

__all__ = [
    "ToolResult",
    "ToolRunner",
    "read_output_file",
    "BUILTIN_TOOLS",
    "ToolRegistry",
    "ToolSpec",
    "default_registry",
]
