"""Error taxonomy for pipeline execution."""

from typing import List, Optional


class BastionError(Exception):
    """Base class for all engine errors."""


class ExecutionError(BastionError):
    """A tool could not be launched, or it did not finish in time."""

    def __init__(self, message: str, command: Optional[str] = None, timed_out: bool = False):
        super().__init__(message)
        self.command = command
        self.timed_out = timed_out


class ParseError(BastionError):
    """Raw tool output is not well-formed for the tool's expected shape."""

    def __init__(self, tool_id: str, message: str):
        super().__init__(f"{tool_id}: {message}")
        self.tool_id = tool_id


class GateFailure(BastionError):
    """Findings exceeded the stage's gate policy."""

    def __init__(self, stage_name: str, blocking_count: int, max_allowed: int):
        super().__init__(
            f"Stage '{stage_name}' gate failed: {blocking_count} blocking finding(s), "
            f"{max_allowed} allowed"
        )
        self.stage_name = stage_name
        self.blocking_count = blocking_count
        self.max_allowed = max_allowed


class CycleError(BastionError, ValueError):
    """The stage dependency set is not a DAG."""

    def __init__(self, cycle: List[str]):
        super().__init__("Dependency cycle detected: " + " -> ".join(cycle))
        self.cycle = cycle


class DeploymentError(BastionError):
    """A deployment attempt failed.

    ``retryable`` separates transient failures (network, remote builder
    hiccups) from fatal ones such as rejected credentials.
    """

    def __init__(self, message: str, retryable: bool = True, exit_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.exit_code = exit_code


class ArtifactError(BastionError):
    """Invalid artifact store operation (double publication, unknown run)."""


class NotificationError(BastionError):
    """A notification could not be delivered."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel
