"""Subprocess runner for external scanning, build and deploy tools."""

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from bastion.errors import ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600


@dataclass(frozen=True)
class ToolResult:
    """Exit status and captured output of one tool invocation."""
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ToolRunner:
    """Run one external tool per call and capture its output.

    A non-zero exit status is data, not an error: it is returned in the
    ToolResult. ExecutionError is raised only when the executable cannot be
    launched or the timeout elapses. There are no retries at this layer.
    """

    def __init__(self, default_timeout: int = DEFAULT_TIMEOUT_SECONDS):
        self.default_timeout = default_timeout

    def run(
        self,
        command: str,
        args: Optional[Sequence[str]] = None,
        working_dir: Optional[str] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        env_remove: Optional[Iterable[str]] = None,
    ) -> ToolResult:
        """
        Run ``command args...`` and wait for it.

        Args:
            command: Executable name or path
            args: CLI-style arguments
            working_dir: Directory to run in (defaults to the current one)
            timeout: Seconds before the process is killed
            env: Variables overlaid on the current environment
            env_remove: Variables withheld from the child before ``env`` is applied

        Returns:
            ToolResult with exit code, stdout and stderr

        Raises:
            ExecutionError: If the tool cannot be launched or times out
        """
        argv: List[str] = [command, *(args or [])]
        display = " ".join(shlex.quote(part) for part in argv)
        timeout = timeout if timeout is not None else self.default_timeout

        full_env: Optional[Dict[str, str]] = None
        if env or env_remove:
            full_env = dict(os.environ)
            for name in env_remove or ():
                full_env.pop(name, None)
            full_env.update(env or {})

        logger.info(f"Running: {display} (cwd={working_dir or '.'}, timeout={timeout}s)")
        start = time.time()
        try:
            proc = subprocess.run(
                argv,
                cwd=working_dir,
                env=full_env,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except (FileNotFoundError, NotADirectoryError) as e:
            raise ExecutionError(f"Cannot launch '{command}': {e}", command=display)
        except PermissionError as e:
            raise ExecutionError(f"'{command}' is not executable: {e}", command=display)
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"'{command}' timed out after {timeout}s", command=display, timed_out=True
            )

        duration_ms = int((time.time() - start) * 1000)
        if proc.returncode != 0:
            logger.info(f"'{command}' exited with code {proc.returncode} in {duration_ms}ms")
        else:
            logger.debug(f"'{command}' succeeded in {duration_ms}ms")

        return ToolResult(
            command=display,
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_ms=duration_ms,
        )


def read_output_file(path: str, working_dir: Optional[str] = None) -> str:
    """Read a report file a tool wrote instead of printing to stdout.

    A missing file means the tool wrote no report.
    """
    report_path = Path(path)
    if working_dir and not report_path.is_absolute():
        report_path = Path(working_dir) / report_path
    if not report_path.exists():
        logger.debug(f"Report file {report_path} not found")
        return ""
    return report_path.read_text(encoding="utf-8", errors="replace")
