#!/usr/bin/env python3
"""Test run notifications."""

from datetime import datetime

import pytest
import requests

from bastion import notifier as notifier_module
from bastion.data_models import Finding, GateResult, PipelineRun, Severity, StageResult, StageStatus
from bastion.events import EventBus, EventType
from bastion.notifier import LogNotifier, TelegramNotifier, build_message


class DummyResp:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


def _failed_run():
    blocking = (Finding("bandit", Severity.HIGH, "B602", "shell=True"),)
    gate = GateResult(
        stage_name="security-check",
        passed=False,
        blocking_findings=blocking,
        evaluated_at=datetime(2024, 1, 1),
        counts_by_source={"bandit": 1},
    )
    return PipelineRun(
        run_id="42",
        pipeline_name="full_ci_cd",
        revision="abc123",
        run_url="https://github.com/acme/devops/actions/runs/42",
        results=[
            StageResult("security-check", StageStatus.FAILED, gate=gate, attempts=1, error="gate failed"),
            StageResult("build-and-push", StageStatus.SKIPPED),
        ],
        terminal_stages=["build-and-push"],
    )


def test_build_message_failed_run():
    message = build_message(_failed_run())
    assert message.startswith("Pipeline Failed: full_ci_cd")
    assert "- Failed: 1" in message
    assert "- Skipped: 1" in message
    assert "- bandit: 1" in message
    assert "security-check (gate failed)" in message
    assert "View Workflow: https://github.com/acme/devops/actions/runs/42" in message


def test_build_message_names_run_without_url():
    """Test a local run without a workflow link is still identifiable."""
    run = PipelineRun(
        run_id="run-42",
        pipeline_name="full_ci_cd",
        results=[StageResult("security-check", StageStatus.PASSED, attempts=1)],
        terminal_stages=["security-check"],
    )
    message = build_message(run)
    assert "Run: run-42" in message
    assert "View Workflow" not in message


def test_telegram_notifier_posts_message(monkeypatch):
    """Test the Bot API is called exactly once with the summary."""
    calls = []

    def fake_post(url, data=None, timeout=None):
        calls.append({"url": url, "data": data, "timeout": timeout})
        return DummyResp()

    monkeypatch.setattr(notifier_module.requests, "post", fake_post)
    bus = EventBus()

    delivered = TelegramNotifier("TOKEN123", "5234453428", event_bus=bus).notify(_failed_run())
    assert delivered is True
    assert len(calls) == 1
    assert calls[0]["url"] == "https://api.telegram.org/botTOKEN123/sendMessage"
    assert calls[0]["data"]["chat_id"] == "5234453428"
    assert calls[0]["data"]["text"].startswith("Pipeline Failed")

    events = bus.get_history(run_id="42", event_type=EventType.NOTIFICATION_SENT)
    assert events[0].data == {"channel": "telegram", "delivered": True}


def test_delivery_failure_is_swallowed(monkeypatch):
    """Test an unreachable channel is logged, never raised."""
    def fake_post(url, data=None, timeout=None):
        raise requests.ConnectionError(f"cannot reach {url}")

    monkeypatch.setattr(notifier_module.requests, "post", fake_post)
    bus = EventBus()

    delivered = TelegramNotifier("TOKEN123", "1", event_bus=bus).notify(_failed_run())
    assert delivered is False
    events = bus.get_history(run_id="42", event_type=EventType.NOTIFICATION_SENT)
    assert events[0].data["delivered"] is False


def test_http_error_is_swallowed(monkeypatch):
    monkeypatch.setattr(notifier_module.requests, "post", lambda *a, **k: DummyResp(401))
    assert TelegramNotifier("TOKEN123", "1").notify(_failed_run()) is False


def test_telegram_requires_credentials():
    with pytest.raises(ValueError):
        TelegramNotifier("", "1")
    assert "TOKEN123" not in repr(TelegramNotifier("TOKEN123", "1"))


def test_log_notifier(caplog):
    caplog.set_level("INFO")
    assert LogNotifier(event_bus=EventBus()).notify(_failed_run()) is True
    assert "Pipeline Failed" in caplog.text
