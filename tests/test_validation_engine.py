"""Tests for post-deletion validation."""

import shlex
import sys

from sweepgraph.validation_engine import ValidationEngine, ValidationResult


def _python(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def test_no_command_passes(scenario_tree):
    result = ValidationEngine().validate(scenario_tree)
    assert result.passed
    assert not result.ran_command
    assert result.structural_issues == []


def test_exit_status_decides(scenario_tree):
    assert ValidationEngine(_python("raise SystemExit(0)")).validate(scenario_tree).passed
    failed = ValidationEngine(_python("raise SystemExit(3)")).validate(scenario_tree)
    assert not failed.passed
    assert failed.returncode == 3


def test_command_runs_in_tree(scenario_tree):
    engine = ValidationEngine(_python("import os, sys; sys.exit(0 if os.path.exists('A.gs') else 1)"))
    assert engine.run_command(scenario_tree).passed


def test_missing_executable_is_a_failure(scenario_tree):
    result = ValidationEngine("definitely-not-a-real-binary-xyz --check").run_command(scenario_tree)
    assert not result.passed
    assert result.error


def test_structural_issues_are_diagnostic(make_tree):
    root = make_tree({
        "Good.gs": "function ok() { return '}'; }\n",
        "Bad.gs": "function broken() {\n  if (x) {\n}\n",
        "Page.html": "<p>{ not code</p>\n<script>function f() { g(); }</script>\n",
    })
    result = ValidationEngine().validate(root)
    assert result.passed
    assert [(i["file"], i["type"]) for i in result.structural_issues] == [("Bad.gs", "DelimiterImbalance")]
    assert "+1" in result.structural_issues[0]["error"]


def test_only_touched_files_are_checked(make_tree):
    root = make_tree({"Bad.gs": "function broken() {\n", "Other.gs": "function ok() {}\n"})
    engine = ValidationEngine()
    assert engine.validate(root, touched=["Other.gs"]).structural_issues == []
    assert len(engine.validate(root, touched=["Bad.gs"]).structural_issues) == 1


def test_summarize():
    summary = ValidationEngine.summarize(ValidationResult(command="make", returncode=1))
    assert summary == {
        "command": "make",
        "returncode": 1,
        "passed": False,
        "structural_issues": 0,
        "error": None,
    }
