"""Deployment driver with bounded retry.

Wraps one deploy CLI invocation (``flyctl deploy``) per attempt. Failures are
classified as retryable (transient: remote builder, network, rollout timing)
or fatal (rejected credentials, missing executable). Fatal failures are never
retried.
"""

import logging
import re
import time
from typing import AbstractSet, Callable, Dict, List, Optional

from bastion.data_models import Report, StageResult, StageStatus
from bastion.deploy.credentials import CredentialHandle
from bastion.errors import DeploymentError, ExecutionError
from bastion.events import EventEmitter
from bastion.pipeline.schema import DeployTargetConfig
from bastion.tools.runner import ToolResult, ToolRunner
from bastion.utils.retry import RetryConfig, retry_sync

logger = logging.getLogger(__name__)

# Shell conventions: 126 = not executable, 127 = command not found
FATAL_EXIT_CODES = {126, 127}

AUTH_FAILURE_PATTERN = re.compile(
    r"unauthori[sz]ed|authentication|not authori[sz]ed|invalid token|"
    r"access denied|permission denied|\b401\b|\b403\b",
    re.IGNORECASE,
)


class DeploymentDriver:
    """Deploy an image or config to one target with bounded retry."""

    def __init__(
        self,
        runner: Optional[ToolRunner] = None,
        base_delay: float = 5.0,
        max_delay: float = 60.0,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        emitter: Optional[EventEmitter] = None,
    ):
        """
        Initialize deployment driver.

        Args:
            runner: Tool runner used to invoke the deploy CLI
            base_delay: Backoff before the first retry, in seconds
            max_delay: Backoff ceiling, in seconds
            jitter: Randomize backoff by +/- 25%
            sleep: Sleep function (injectable for tests)
            emitter: Optional event emitter for attempt events
        """
        self.runner = runner or ToolRunner()
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.sleep = sleep
        self.emitter = emitter

    def build_args(self, target: DeployTargetConfig, image: Optional[str]) -> List[str]:
        """CLI arguments for ``<target.command> deploy``."""
        args = ["deploy"]
        image = image or target.image
        if image:
            args.extend(["--image", image])
        if target.config_file:
            args.extend(["-c", target.config_file])
        args.extend(["--app", target.app])
        if target.remote_only:
            args.append("--remote-only")
        if target.strategy:
            args.extend(["--strategy", target.strategy])
        args.extend(target.extra_args)
        return args

    def classify(self, result: ToolResult) -> DeploymentError:
        """Turn a failed attempt into a retryable or fatal DeploymentError."""
        stderr = (result.stderr or "").strip()
        detail = stderr[-500:] or (result.stdout or "").strip()[-500:]
        if result.exit_code in FATAL_EXIT_CODES:
            return DeploymentError(
                f"Deploy tool unavailable (exit {result.exit_code}): {detail}",
                retryable=False,
                exit_code=result.exit_code,
            )
        if AUTH_FAILURE_PATTERN.search(stderr):
            return DeploymentError(
                f"Deploy authentication failed (exit {result.exit_code}): {detail}",
                retryable=False,
                exit_code=result.exit_code,
            )
        return DeploymentError(
            f"Deploy failed (exit {result.exit_code}): {detail}",
            retryable=True,
            exit_code=result.exit_code,
        )

    def deploy(
        self,
        target: DeployTargetConfig,
        image: Optional[str],
        credentials: CredentialHandle,
        max_retries: int,
        stage_name: Optional[str] = None,
        run_id: str = "",
        emitter: Optional[EventEmitter] = None,
        env_remove: AbstractSet[str] = frozenset(),
    ) -> StageResult:
        """
        Deploy to a target, retrying transient failures.

        Args:
            target: Deployment target
            image: Image reference (falls back to target.image; may be None with a config file)
            credentials: Handle scoped to the target's environment
            max_retries: Retries after the first attempt
            stage_name: Stage the result belongs to (defaults to target.name)
            run_id: Run identifier recorded on the report
            emitter: Event emitter for attempt events (defaults to the driver's)
            env_remove: Credential variables withheld from the deploy tool; only this
                target's secret is injected back

        Returns:
            StageResult with ``attempts`` set; never raises for deploy failures
        """
        stage_name = stage_name or target.name
        emitter = emitter or self.emitter
        outputs: Dict[str, str] = {}
        attempts = 0

        def attempt() -> ToolResult:
            nonlocal attempts
            attempts += 1
            if credentials.scope != target.environment:
                raise DeploymentError(
                    f"Credential '{credentials.name}' is scoped to {credentials.scope.value}, "
                    f"not {target.environment.value}",
                    retryable=False,
                )
            env = credentials.as_env()
            try:
                result = self.runner.run(
                    target.command,
                    self.build_args(target, image),
                    timeout=target.timeout_seconds,
                    env=env,
                    env_remove=env_remove,
                )
            except ExecutionError as e:
                outputs[f"attempt-{attempts}"] = str(e)
                _emit_attempt(emitter, target, attempts, False, str(e))
                raise DeploymentError(str(e), retryable=e.timed_out)

            outputs[f"attempt-{attempts}"] = _combined_output(result)
            if result.exit_code != 0:
                error = self.classify(result)
                _emit_attempt(emitter, target, attempts, False, str(error))
                raise error

            _emit_attempt(emitter, target, attempts, True)
            return result

        config = RetryConfig(
            max_retries=max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            retryable_exceptions=(DeploymentError,),
        )

        logger.info(
            f"Deploying to {target.name} ({target.environment.value}, app={target.app}) "
            f"with up to {max_retries} retries"
        )
        status = StageStatus.PASSED
        error_message = None
        try:
            retry_sync(attempt, config=config, should_retry=lambda e: e.retryable, sleep=self.sleep)
            logger.info(f"Deploy to {target.name} succeeded after {attempts} attempt(s)")
        except DeploymentError as e:
            status = StageStatus.FAILED
            error_message = str(e)
            kind = "retryable" if e.retryable else "fatal"
            logger.error(f"Deploy to {target.name} failed ({kind}) after {attempts} attempt(s): {e}")

        report = Report(run_id=run_id, stage_name=stage_name, raw_outputs=outputs)
        return StageResult(
            stage_name=stage_name,
            status=status,
            report=report,
            attempts=attempts,
            error=error_message,
        )

    def rollback(self, target: DeployTargetConfig, credentials: CredentialHandle) -> StageResult:
        """Extension point: restoring the previous release is not supported."""
        raise NotImplementedError(f"Rollback is not implemented for target '{target.name}'")

def _emit_attempt(
    emitter: Optional[EventEmitter],
    target: DeployTargetConfig,
    attempt: int,
    success: bool,
    error: Optional[str] = None,
):
    if emitter:
        emitter.deploy_attempt(target.name, attempt, success, error)


def _combined_output(result: ToolResult) -> str:
    parts = [f"$ {result.command}", f"exit code: {result.exit_code}"]
    if result.stdout:
        parts.append(result.stdout)
    if result.stderr:
        parts.append(result.stderr)
    return "\n".join(parts)
