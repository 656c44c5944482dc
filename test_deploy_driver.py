#!/usr/bin/env python3
"""Test the deployment driver, its retry policy and credential handles."""

import sys

import pytest

from bastion.data_models import StageStatus
from bastion.deploy import CredentialHandle, DeploymentDriver
from bastion.errors import DeploymentError, ExecutionError
from bastion.events import EventBus, EventEmitter, EventType
from bastion.pipeline.actions import CommandAction
from bastion.pipeline.builder import StageBuilder
from bastion.pipeline.executor import StageContext
from bastion.pipeline.loader import PipelineLoader
from bastion.pipeline.schema import CredentialRef, DeployTargetConfig, Environment
from bastion.tools.runner import ToolResult, ToolRunner
from bastion.utils.retry import RetryConfig, retry_sync


class FakeRunner:
    """Returns scripted results (or raises scripted errors) in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def run(self, command, args=None, working_dir=None, timeout=None, env=None, env_remove=None):
        self.calls.append({
            "command": command,
            "args": list(args or []),
            "env": dict(env or {}),
            "env_remove": set(env_remove or ()),
        })
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        exit_code, stderr = outcome
        return ToolResult(
            command=f"{command} {' '.join(args or [])}",
            exit_code=exit_code,
            stdout="",
            stderr=stderr,
            duration_ms=1,
        )


def _target(environment=Environment.STAGING, **overrides):
    data = {
        "name": environment.value,
        "environment": environment,
        "app": f"devops-{environment.value}",
        "credential": {"name": "fly", "env_var": "TEST_FLY_TOKEN"},
        "image": "x7m7s7/devops:latest",
        "strategy": "rolling",
    }
    data.update(overrides)
    return DeployTargetConfig(**data)


def _handle(environment=Environment.STAGING, env_var="TEST_FLY_TOKEN"):
    return CredentialHandle(name="fly", env_var=env_var, scope=environment)


def _driver(runner, **kwargs):
    delays = []
    driver = DeploymentDriver(runner=runner, jitter=False, sleep=delays.append, **kwargs)
    return driver, delays


@pytest.fixture(autouse=True)
def fly_token(monkeypatch):
    monkeypatch.setenv("TEST_FLY_TOKEN", "secret-token")


def test_retryable_failures_then_success():
    """Test two transient failures with maxRetries=2 still pass on attempt 3."""
    runner = FakeRunner((1, "remote builder unavailable"), (1, "connection reset"), (0, ""))
    driver, delays = _driver(runner, base_delay=5.0)

    result = driver.deploy(_target(), None, _handle(), max_retries=2, stage_name="deploy-staging")
    assert result.status == StageStatus.PASSED
    assert result.attempts == 3
    assert result.error is None
    assert delays == [5.0, 10.0]
    assert list(result.report.raw_outputs) == ["attempt-1", "attempt-2", "attempt-3"]


def test_retries_exhausted():
    runner = FakeRunner((1, "boom"), (1, "boom"), (1, "boom"))
    driver, _ = _driver(runner)

    result = driver.deploy(_target(), None, _handle(), max_retries=2)
    assert result.status == StageStatus.FAILED
    assert result.attempts == 3
    assert "Deploy failed (exit 1)" in result.error


def test_zero_retries_means_single_attempt():
    runner = FakeRunner((1, "boom"))
    driver, delays = _driver(runner)
    result = driver.deploy(_target(), None, _handle(), max_retries=0)
    assert result.attempts == 1
    assert delays == []


def test_auth_failure_is_not_retried():
    """Test a rejected credential fails on the first attempt."""
    runner = FakeRunner((1, "Error: unauthorized: invalid token"), (0, ""))
    driver, delays = _driver(runner)

    result = driver.deploy(_target(), None, _handle(), max_retries=2)
    assert result.status == StageStatus.FAILED
    assert result.attempts == 1
    assert delays == []
    assert "authentication failed" in result.error


def test_command_not_found_is_fatal():
    runner = FakeRunner((127, "flyctl: command not found"))
    driver, _ = _driver(runner)
    result = driver.deploy(_target(), None, _handle(), max_retries=2)
    assert result.attempts == 1
    assert result.status == StageStatus.FAILED


def test_launch_failure_and_timeout():
    """Test a missing binary is fatal while a timeout is retried."""
    runner = FakeRunner(ExecutionError("Cannot launch 'flyctl'"))
    driver, _ = _driver(runner)
    assert driver.deploy(_target(), None, _handle(), max_retries=2).attempts == 1

    runner = FakeRunner(ExecutionError("timed out", timed_out=True), (0, ""))
    driver, _ = _driver(runner)
    result = driver.deploy(_target(), None, _handle(), max_retries=2)
    assert result.status == StageStatus.PASSED
    assert result.attempts == 2


def test_missing_credential_fails_without_running(monkeypatch):
    monkeypatch.delenv("TEST_FLY_TOKEN")
    runner = FakeRunner((0, ""))
    driver, _ = _driver(runner)

    result = driver.deploy(_target(), None, _handle(), max_retries=2)
    assert result.status == StageStatus.FAILED
    assert "TEST_FLY_TOKEN" in result.error
    assert runner.calls == []


def test_credential_scope_must_match_environment():
    """Test a staging credential cannot be used for a production target."""
    runner = FakeRunner((0, ""))
    driver, _ = _driver(runner)
    target = _target(Environment.PRODUCTION, image=None, config_file="fly.production.toml")

    result = driver.deploy(target, None, _handle(Environment.STAGING), max_retries=2)
    assert result.status == StageStatus.FAILED
    assert "scoped to staging" in result.error
    assert runner.calls == []


def test_token_injected_into_subprocess_env():
    runner = FakeRunner((0, ""))
    driver, _ = _driver(runner)
    driver.deploy(_target(), None, _handle(), max_retries=0)
    assert runner.calls[0]["env"] == {"FLY_API_TOKEN": "secret-token"}


def test_build_args():
    driver = DeploymentDriver(runner=FakeRunner())
    assert driver.build_args(_target(), "registry/app:1") == [
        "deploy", "--image", "registry/app:1", "--app", "devops-staging", "--remote-only", "--strategy", "rolling",
    ]

    production = _target(Environment.PRODUCTION, image=None, config_file="fly.production.toml", strategy=None)
    assert driver.build_args(production, None) == [
        "deploy", "-c", "fly.production.toml", "--app", "devops-production", "--remote-only",
    ]


def test_deploy_attempt_events():
    bus = EventBus()
    runner = FakeRunner((1, "flaky"), (0, ""))
    driver, _ = _driver(runner)
    driver.deploy(_target(), None, _handle(), max_retries=1, run_id="run-1", emitter=EventEmitter("run-1", bus))

    attempts = bus.get_history(run_id="run-1", event_type=EventType.DEPLOY_ATTEMPT)
    assert [(e.data["attempt"], e.data["success"]) for e in attempts] == [(1, False), (2, True)]


def test_rollback_not_supported():
    with pytest.raises(NotImplementedError):
        DeploymentDriver(runner=FakeRunner()).rollback(_target(), _handle())


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def test_credential_handle_hides_secret():
    handle = CredentialHandle.from_ref(CredentialRef(name="fly", env_var="TEST_FLY_TOKEN"), Environment.STAGING)
    assert handle.resolve() == "secret-token"
    assert "secret-token" not in repr(handle)


def test_credential_handle_missing_value():
    handle = _handle(env_var="TEST_FLY_TOKEN_UNSET")
    with pytest.raises(DeploymentError) as exc_info:
        handle.resolve({})
    assert exc_info.value.retryable is False


# ---------------------------------------------------------------------------
# Credential isolation
# ---------------------------------------------------------------------------

def _fake_flyctl(tmp_path):
    script = tmp_path / "fakefly"
    script.write_text(
        f"#!{sys.executable}\n"
        "import os\n"
        "print(\"PROD=\" + os.environ.get(\"FLY_API_TOKEN2\", \"\"))\n"
        "print(\"INJECTED=\" + os.environ.get(\"FLY_API_TOKEN\", \"\"))\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    return str(script)


def _preset_stages():
    pipeline = PipelineLoader(environ={}).load_preset("full_ci_cd")
    return pipeline, {stage.name: stage for stage in StageBuilder(runner=ToolRunner()).build(pipeline)}


def test_staging_deploy_never_sees_production_token(tmp_path, monkeypatch):
    """Test the staging flyctl process gets only the staging secret."""
    monkeypatch.setenv("FLY_API_TOKEN", "staging-secret")
    monkeypatch.setenv("FLY_API_TOKEN2", "production-secret")
    _, stages = _preset_stages()

    action = stages["deploy-staging"].action
    action.target = action.target.model_copy(update={"command": _fake_flyctl(tmp_path)})
    result = action(StageContext("run-1", "deploy-staging", {}, EventEmitter("run-1", EventBus())))

    assert result.status == StageStatus.PASSED
    out = result.report.raw_outputs["attempt-1"]
    assert "INJECTED=staging-secret" in out
    assert "production-secret" not in out


def test_production_deploy_gets_its_own_token_as_fly_api_token(tmp_path, monkeypatch):
    monkeypatch.setenv("FLY_API_TOKEN", "staging-secret")
    monkeypatch.setenv("FLY_API_TOKEN2", "production-secret")
    _, stages = _preset_stages()

    action = stages["deploy-production"].action
    action.target = action.target.model_copy(update={"command": _fake_flyctl(tmp_path)})
    result = action(StageContext("run-1", "deploy-production", {}, EventEmitter("run-1", EventBus())))

    out = result.report.raw_outputs["attempt-1"]
    assert "INJECTED=production-secret" in out
    assert "staging-secret" not in out


def test_command_stages_see_no_deploy_tokens(monkeypatch):
    monkeypatch.setenv("FLY_API_TOKEN", "staging-secret")
    monkeypatch.setenv("FLY_API_TOKEN2", "production-secret")
    pipeline, _ = _preset_stages()

    code = "import os; print(os.environ.get(\"FLY_API_TOKEN\", \"-\"), os.environ.get(\"FLY_API_TOKEN2\", \"-\"))"
    action = CommandAction([[sys.executable, "-c", code]], env_remove=frozenset(pipeline.credential_env_vars()))
    result = action(StageContext("run-1", "build", {}, EventEmitter("run-1", EventBus())))

    assert result.status == StageStatus.PASSED
    assert "secret" not in result.report.raw_outputs["step1-" + sys.executable]


def test_driver_passes_withheld_variables_to_runner():
    runner = FakeRunner((0, ""))
    driver, _ = _driver(runner)
    driver.deploy(_target(), None, _handle(), max_retries=0, env_remove={"TEST_FLY_TOKEN", "OTHER_TOKEN"})
    assert runner.calls[0]["env_remove"] == {"TEST_FLY_TOKEN", "OTHER_TOKEN"}
    assert runner.calls[0]["env"] == {"FLY_API_TOKEN": "secret-token"}


# ---------------------------------------------------------------------------
# Retry helper
# ---------------------------------------------------------------------------

def test_retry_config_delay():
    config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)
    assert [config.calculate_delay(i) for i in range(4)] == [1.0, 2.0, 3.0, 3.0]


def test_retry_sync_stops_on_rejected_exception():
    calls = []

    def flaky():
        calls.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        retry_sync(flaky, config=RetryConfig(max_retries=3), should_retry=lambda e: False, sleep=lambda s: None)
    assert len(calls) == 1
