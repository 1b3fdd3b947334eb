"""Tests for the cleanup pipeline state machine."""

import json
from pathlib import Path

import pytest

from sweepgraph.backup import DELETION_LOG_FILE, BackupManager
from sweepgraph.errors import SweepError
from sweepgraph.models import RiskLevel
from sweepgraph.orchestrator import CleanupOptions, CleanupOrchestrator, PipelineState
from sweepgraph.validation_engine import ValidationEngine, ValidationResult

S = PipelineState


class Prompt:
    """Records prompts and returns a fixed answer."""

    def __init__(self, answer):
        self.answer = answer
        self.prompts = []

    def __call__(self, text):
        self.prompts.append(text)
        return self.answer


class FailingValidator(ValidationEngine):
    def __init__(self):
        super().__init__("make check")

    def validate(self, root, touched=None):
        return ValidationResult(command=self.command, returncode=2)


def _run(root, confirm=None, **options):
    orchestrator = CleanupOrchestrator(root, options=CleanupOptions(**options), confirm=confirm)
    return orchestrator.run()


def test_dry_run_changes_nothing(scenario_tree, tree_contents, sweep_home):
    before = tree_contents(scenario_tree)
    prompt = Prompt(True)
    outcome = _run(scenario_tree, confirm=prompt, dry_run=True)
    assert outcome.state == S.DONE
    assert outcome.history == [S.IDLE, S.ANALYZING, S.REPORTING, S.DONE]
    assert tree_contents(scenario_tree) == before
    assert not sweep_home.exists()
    assert prompt.prompts == []
    assert outcome.reports == {}
    assert [(r.path, r.symbol, r.dry_run) for r in outcome.records] == [("B.gs", "orphan", True)]
    assert "-function orphan() {" in outcome.preview


def test_dry_run_writes_reports_only_when_asked(scenario_tree, tmp_path):
    outcome = _run(scenario_tree, dry_run=True, report_dir=tmp_path / "out")
    assert set(outcome.reports) == {"detailed", "summary", "tree", "csv", "graph", "actions"}
    assert all(p.parent == tmp_path / "out" for p in outcome.reports.values())


def test_declined_confirmation_aborts_before_any_write(scenario_tree, tree_contents):
    before = tree_contents(scenario_tree)
    prompt = Prompt(False)
    outcome = _run(scenario_tree, confirm=prompt)
    assert outcome.state == S.ABORTED
    assert outcome.declined
    assert outcome.failed_phase == S.AWAITING_CONFIRMATION
    assert outcome.snapshot is None
    assert tree_contents(scenario_tree) == before
    assert len(prompt.prompts) == 1
    assert "function: orphan (B.gs)" in prompt.prompts[0]


def test_confirmed_run_deletes_under_a_snapshot(scenario_tree):
    outcome = _run(scenario_tree, confirm=Prompt(True))
    assert outcome.succeeded
    assert outcome.history == [
        S.IDLE, S.ANALYZING, S.REPORTING, S.AWAITING_CONFIRMATION,
        S.BACKING_UP, S.MUTATING, S.VALIDATING, S.DONE,
    ]
    text = (scenario_tree / "B.gs").read_text()
    assert "orphan" not in text and "function helper()" in text
    assert outcome.snapshot is not None
    log = json.loads((Path(outcome.snapshot.path) / DELETION_LOG_FILE).read_text())
    assert log["deletions"][0]["symbol"] == "orphan"
    assert outcome.snapshot.snapshot_id in log["rollback_command"]
    assert outcome.reports["summary"].is_file()


def test_non_interactive_never_prompts(scenario_tree):
    prompt = Prompt(False)
    outcome = _run(scenario_tree, confirm=prompt, non_interactive=True)
    assert outcome.succeeded
    assert prompt.prompts == []
    assert S.AWAITING_CONFIRMATION not in outcome.history


def test_backup_failure_leaves_tree_untouched(scenario_tree, tree_contents):
    before = tree_contents(scenario_tree)
    orchestrator = CleanupOrchestrator(
        scenario_tree,
        options=CleanupOptions(non_interactive=True),
        backup_manager=BackupManager(scenario_tree / ".backups"),
    )
    outcome = orchestrator.run()
    assert outcome.state == S.ABORTED
    assert outcome.failed_phase == S.BACKING_UP
    assert not outcome.declined
    assert tree_contents(scenario_tree) == before


def test_validation_failure_reports_rollback_without_applying_it(scenario_tree):
    orchestrator = CleanupOrchestrator(
        scenario_tree,
        options=CleanupOptions(non_interactive=True),
        validator=FailingValidator(),
    )
    outcome = orchestrator.run()
    assert outcome.state == S.ABORTED
    assert outcome.failed_phase == S.VALIDATING
    assert outcome.snapshot.snapshot_id in outcome.rollback_hint
    assert "orphan" not in (scenario_tree / "B.gs").read_text()


def test_risk_threshold_widens_the_plan(make_tree):
    root = make_tree({
        "A.gs": "function doGet() {\n  return helper();\n}\n",
        "B.gs": "function helper() {}\nfunction orphan() {}\nfunction setupSheet() {}\n",
    })
    outcome = _run(root, non_interactive=True, risk_level=RiskLevel.MEDIUM)
    assert outcome.succeeded
    assert sorted(r.symbol for r in outcome.records) == ["orphan", "setupSheet"]
    assert (root / "B.gs").read_text() == "function helper() {}\n"


def test_nothing_to_delete(make_tree):
    root = make_tree({"Code.gs": "function doGet() {}\n"})
    outcome = _run(root, confirm=Prompt(True))
    assert outcome.succeeded
    assert outcome.history[-2:] == [S.REPORTING, S.DONE]
    assert outcome.snapshot is None


def test_auto_mode_prunes(scenario_tree):
    outcome = _run(scenario_tree, auto=True)
    assert outcome.succeeded
    assert outcome.pruned == []


def test_illegal_transition_is_rejected(scenario_tree):
    orchestrator = CleanupOrchestrator(scenario_tree)
    with pytest.raises(SweepError):
        orchestrator._enter(S.MUTATING)
    assert orchestrator.state == S.IDLE
