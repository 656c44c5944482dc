#!/usr/bin/env python3
"""Test the tool runner and the scan/command stage actions."""

import json
import sys

import pytest

from bastion.data_models import StageStatus
from bastion.errors import ExecutionError
from bastion.events import EventBus, EventEmitter
from bastion.pipeline.actions import CommandAction, ScanAction
from bastion.pipeline.executor import StageContext
from bastion.pipeline.schema import GatePolicy, SourceRule
from bastion.tools.registry import ToolSpec
from bastion.tools.runner import ToolRunner, read_output_file


def _context(stage_name="stage"):
    return StageContext(
        run_id="run-1",
        stage_name=stage_name,
        upstream={},
        emitter=EventEmitter("run-1", EventBus()),
    )


def _python_tool(tool_id, code, parser=None, ok_exit_codes=(0, 1), output_file=None):
    return ToolSpec(
        tool_id=tool_id,
        command=sys.executable,
        args=["-c", code],
        parser=parser,
        ok_exit_codes=list(ok_exit_codes),
        output_file=output_file,
    )


BANDIT_HIGH = json.dumps({"results": [
    {"test_id": "B602", "issue_severity": "HIGH", "issue_text": "shell=True", "filename": "a.py", "line_number": 1}
]})
BANDIT_B104 = json.dumps({"results": [
    {"test_id": "B104", "issue_severity": "MEDIUM", "issue_text": "bind all", "filename": "a.py", "line_number": 2}
]})


# ---------------------------------------------------------------------------
# ToolRunner
# ---------------------------------------------------------------------------

def test_run_captures_output_and_exit_code():
    result = ToolRunner().run(
        sys.executable,
        ["-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"],
    )
    assert result.exit_code == 3
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert result.ok is False


def test_run_overlays_environment():
    result = ToolRunner().run(
        sys.executable,
        ["-c", "import os; print(os.environ['BASTION_TEST_VALUE'])"],
        env={"BASTION_TEST_VALUE": "injected"},
    )
    assert result.ok
    assert result.stdout.strip() == "injected"


def test_run_missing_executable():
    with pytest.raises(ExecutionError, match="Cannot launch"):
        ToolRunner().run("definitely-not-a-real-tool-xyz", ["--version"])


def test_run_timeout():
    with pytest.raises(ExecutionError) as exc_info:
        ToolRunner().run(sys.executable, ["-c", "import time; time.sleep(5)"], timeout=0.5)
    assert exc_info.value.timed_out is True


def test_read_output_file(tmp_path):
    (tmp_path / "report.json").write_text("[]", encoding="utf-8")
    assert read_output_file("report.json", str(tmp_path)) == "[]"
    assert read_output_file("missing.json", str(tmp_path)) == ""


# ---------------------------------------------------------------------------
# ScanAction
# ---------------------------------------------------------------------------

def test_scan_action_gate_fails_on_high_finding():
    """Test a HIGH bandit finding fails the stage with a gate result attached."""
    code = f"import sys; print({BANDIT_HIGH!r}); sys.exit(1)"
    action = ScanAction([_python_tool("bandit", code)], GatePolicy())

    result = action(_context("security-check"))
    assert result.status == StageStatus.FAILED
    assert result.gate is not None and result.gate.blocking_count == 1
    assert "gate failed: 1 blocking" in result.error
    assert len(result.report.findings) == 1


def test_scan_action_excluded_category_passes():
    code = f"print({BANDIT_B104!r})"
    policy = GatePolicy(exclude_categories={"B104"})
    result = ScanAction([_python_tool("bandit", code)], policy)(_context())

    assert result.status == StageStatus.PASSED
    assert result.gate.passed is True
    assert len(result.report.findings) == 1


def test_scan_action_unexpected_exit_code_fails_stage():
    """Test a crashed scanner is never read as 'no findings'."""
    tools = [
        _python_tool("bandit", f"print({BANDIT_B104!r})"),
        _python_tool("semgrep", "import sys; sys.exit(2)"),
        _python_tool("black", "print('never runs')"),
    ]
    result = ScanAction(tools, GatePolicy(exclude_categories={"B104"}))(_context())

    assert result.status == StageStatus.FAILED
    assert "semgrep" in result.error
    assert result.gate is None
    # Partial report keeps what already ran
    assert list(result.report.raw_outputs) == ["bandit"]


def test_scan_action_parse_error_is_a_warning():
    tools = [
        _python_tool("bandit", f"print({BANDIT_B104!r})"),
        _python_tool("semgrep", "print('<html>gateway timeout</html>')"),
    ]
    result = ScanAction(tools, GatePolicy(exclude_categories={"B104"}))(_context())

    assert result.status == StageStatus.PASSED
    assert len(result.report.warnings) == 1
    assert "semgrep" in result.report.warnings[0]


def test_scan_action_advisory_tool():
    diff = "--- a.py\\n+++ a.py\\n-x=1\\n+x = 1\\n"
    tools = [_python_tool("black", f"print('{diff}'); raise SystemExit(1)")]
    policy = GatePolicy(sources={"black": SourceRule(advisory=True)})
    result = ScanAction(tools, policy)(_context())

    assert result.status == StageStatus.PASSED
    assert len(result.report.findings) == 1


def test_scan_action_reads_output_file_and_removes_stale(tmp_path):
    """Test report files are read from the working dir, never from an earlier run."""
    (tmp_path / "gitleaks_report.json").write_text(
        json.dumps([{"RuleID": "stale", "File": "old.py"}]), encoding="utf-8"
    )
    code = "import json; json.dump([], open('gitleaks_report.json', 'w'))"
    tool = _python_tool("gitleaks", code, output_file="gitleaks_report.json")

    result = ScanAction([tool], GatePolicy(), working_dir=str(tmp_path))(_context())
    assert result.status == StageStatus.PASSED
    assert result.report.findings == ()

    # Tool that writes nothing: the stale file is gone, so no findings either
    silent = _python_tool("gitleaks", "pass", output_file="gitleaks_report.json")
    (tmp_path / "gitleaks_report.json").write_text(
        json.dumps([{"RuleID": "stale", "File": "old.py"}]), encoding="utf-8"
    )
    result = ScanAction([silent], GatePolicy(), working_dir=str(tmp_path))(_context())
    assert result.report.findings == ()


def test_scan_action_renders_variables():
    tool = ToolSpec(
        tool_id="nikto",
        command=sys.executable,
        args=["-c", "import sys, json; print(json.dumps(dict(host=sys.argv[1], vulnerabilities=[])))",
              "{target_url}"],
    )
    result = ScanAction([tool], GatePolicy(), variables={"target_url": "http://staging.example"})(_context())
    assert result.status == StageStatus.PASSED
    assert "http://staging.example" in result.report.raw_outputs["nikto"]


# ---------------------------------------------------------------------------
# CommandAction
# ---------------------------------------------------------------------------

def test_command_action_runs_in_order():
    action = CommandAction([
        [sys.executable, "-c", "print('build')"],
        [sys.executable, "-c", "print('push')"],
    ])
    result = action(_context("build-and-push"))
    assert result.status == StageStatus.PASSED
    outputs = list(result.report.raw_outputs.values())
    assert "build" in outputs[0]
    assert "push" in outputs[1]


def test_command_action_stops_at_first_failure():
    action = CommandAction([
        [sys.executable, "-c", "import sys; sys.exit(4)"],
        [sys.executable, "-c", "print('never')"],
    ])
    result = action(_context())
    assert result.status == StageStatus.FAILED
    assert "exited with code 4" in result.error
    assert len(result.report.raw_outputs) == 1


def test_command_action_missing_executable():
    result = CommandAction([["definitely-not-a-real-tool-xyz"]])(_context())
    assert result.status == StageStatus.FAILED
    assert "Cannot launch" in result.error
