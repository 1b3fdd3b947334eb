"""Cleanup pipeline: analyze, report, confirm, back up, mutate, validate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .backup import BackupManager, rollback_command
from .config_manager import SweepSettings
from .errors import BackupError, SweepError
from .models import AnalysisResult, DeletionRecord, RiskAssessment, RiskLevel, Snapshot
from .reachability import analyze_tree
from .report import ReportGenerator
from .risk import RiskClassifier, RiskPolicy
from .safe_delete import DeletionPlan, SafeDeleter
from .validation_engine import ValidationEngine, ValidationResult

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    REPORTING = "reporting"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    BACKING_UP = "backing-up"
    MUTATING = "mutating"
    VALIDATING = "validating"
    DONE = "done"
    ABORTED = "aborted"


_TRANSITIONS: Dict[PipelineState, set] = {
    PipelineState.IDLE: {PipelineState.ANALYZING},
    PipelineState.ANALYZING: {PipelineState.REPORTING, PipelineState.ABORTED},
    PipelineState.REPORTING: {
        PipelineState.AWAITING_CONFIRMATION,
        PipelineState.BACKING_UP,
        PipelineState.DONE,
        PipelineState.ABORTED,
    },
    PipelineState.AWAITING_CONFIRMATION: {PipelineState.BACKING_UP, PipelineState.ABORTED},
    PipelineState.BACKING_UP: {PipelineState.MUTATING, PipelineState.ABORTED},
    PipelineState.MUTATING: {PipelineState.VALIDATING, PipelineState.DONE},
    PipelineState.VALIDATING: {PipelineState.DONE, PipelineState.ABORTED},
    PipelineState.DONE: set(),
    PipelineState.ABORTED: set(),
}


@dataclass
class CleanupOptions:
    dry_run: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    non_interactive: bool = False
    auto: bool = False
    validation_command: Optional[str] = None
    report_dir: Optional[Path] = None
    write_reports: bool = True

    @property
    def needs_confirmation(self) -> bool:
        return not (self.dry_run or self.non_interactive or self.auto)


@dataclass
class PipelineOutcome:
    state: PipelineState
    history: List[PipelineState] = field(default_factory=list)
    failed_phase: Optional[PipelineState] = None
    message: str = ""
    declined: bool = False
    result: Optional[AnalysisResult] = None
    assessment: Optional[RiskAssessment] = None
    report: Optional[ReportGenerator] = None
    plan: Optional[DeletionPlan] = None
    reports: Dict[str, Path] = field(default_factory=dict)
    snapshot: Optional[Snapshot] = None
    records: List[DeletionRecord] = field(default_factory=list)
    failures: List[dict] = field(default_factory=list)
    deletion_summary: Dict[str, object] = field(default_factory=dict)
    preview: str = ""
    validation: Optional[ValidationResult] = None
    rollback_hint: Optional[str] = None
    pruned: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.DONE


def _always_decline(_prompt: str) -> bool:
    return False


class CleanupOrchestrator:
    """Sequential state machine over the analysis and sweep components.

    ``confirm`` is called once, with a description of the approved plan, when
    the run is interactive. Nothing under *root* is written before it returns
    True, and nothing is written at all in dry-run mode.
    """

    def __init__(
        self,
        root: Path,
        settings: Optional[SweepSettings] = None,
        options: Optional[CleanupOptions] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        backup_manager: Optional[BackupManager] = None,
        validator: Optional[ValidationEngine] = None,
    ):
        self.root = root.resolve()
        self.settings = settings or SweepSettings()
        self.options = options or CleanupOptions()
        self.confirm = confirm or _always_decline
        self.backup_manager = backup_manager or BackupManager(self.settings.resolved_backup_dir())
        command = self.options.validation_command or self.settings.validation_command
        self.validator = validator or ValidationEngine(command)
        self.outcome = PipelineOutcome(state=PipelineState.IDLE, history=[PipelineState.IDLE])

    @property
    def state(self) -> PipelineState:
        return self.outcome.state

    def _enter(self, state: PipelineState) -> None:
        current = self.outcome.state
        if state not in _TRANSITIONS[current]:
            raise SweepError(f"Illegal pipeline transition {current.value} -> {state.value}")
        logger.info("Pipeline: %s -> %s", current.value, state.value)
        self.outcome.state = state
        self.outcome.history.append(state)

    def _abort(self, message: str, rollback_hint: Optional[str] = None) -> PipelineOutcome:
        self.outcome.failed_phase = self.outcome.state
        self.outcome.message = message
        self.outcome.rollback_hint = rollback_hint
        self._enter(PipelineState.ABORTED)
        logger.warning("Pipeline aborted in %s: %s", self.outcome.failed_phase.value, message)
        return self.outcome

    def _finish(self, message: str) -> PipelineOutcome:
        self.outcome.message = message
        self._enter(PipelineState.DONE)
        return self.outcome

    def describe_plan(self, plan: DeletionPlan) -> str:
        lines = [
            f"Delete {len(plan.files)} file(s) and {len(plan.functions)} function(s) "
            f"at risk level <= {self.options.risk_level.value} under {self.root}?"
        ]
        lines += [f"  file: {p}" for p in plan.files]
        lines += [f"  function: {n} ({p})" for p, n in plan.functions]
        return "\n".join(lines)

    def run(self) -> PipelineOutcome:
        out = self.outcome

        self._enter(PipelineState.ANALYZING)
        try:
            out.result = analyze_tree(self.root, self.settings)
        except (OSError, SweepError) as exc:
            return self._abort(f"Analysis failed: {exc}")
        out.assessment = RiskClassifier(RiskPolicy.from_settings(self.settings)).assess(out.result)

        self._enter(PipelineState.REPORTING)
        out.report = ReportGenerator(
            out.result,
            out.assessment,
            self.root,
            validation_command=self.validator.command,
        )
        report_dir = self.options.report_dir
        if report_dir is None and not self.options.dry_run:
            report_dir = self.settings.resolved_report_dir()
        if self.options.write_reports and report_dir is not None:
            try:
                out.reports = out.report.write_all(report_dir)
            except OSError as exc:
                return self._abort(f"Could not write reports to {report_dir}: {exc}")
        out.plan = DeletionPlan.from_analysis(out.result, out.assessment, self.options.risk_level)

        if self.options.dry_run:
            deleter = SafeDeleter(self.root, dry_run=True)
            out.records = deleter.apply(out.plan)
            out.failures = list(deleter.failures)
            out.deletion_summary = deleter.summary()
            out.preview = deleter.preview()
            return self._finish("Dry run complete; no files were changed")

        if out.plan.is_empty:
            return self._finish(f"Nothing to delete at risk level <= {self.options.risk_level.value}")

        if self.options.needs_confirmation:
            self._enter(PipelineState.AWAITING_CONFIRMATION)
            if not self.confirm(self.describe_plan(out.plan)):
                out.declined = True
                return self._abort("Cancelled by operator; nothing was changed")

        self._enter(PipelineState.BACKING_UP)
        try:
            out.snapshot = self.backup_manager.create_backup(self.root, purpose="cleanup")
        except BackupError as exc:
            return self._abort(f"Backup failed, no files were changed: {exc}")

        self._enter(PipelineState.MUTATING)
        deleter = SafeDeleter(self.root)
        deleter.bind_snapshot(out.snapshot)
        out.records = deleter.apply(out.plan)
        out.failures = list(deleter.failures)
        out.deletion_summary = deleter.summary()
        hint = rollback_command(out.snapshot.snapshot_id, self.root)
        out.deletion_summary["rollback_command"] = hint
        try:
            self.backup_manager.write_deletion_log(out.snapshot, out.records, out.deletion_summary)
        except BackupError as exc:
            logger.warning("%s", exc)

        self._enter(PipelineState.VALIDATING)
        touched = sorted({r.path for r in out.records if r.kind == "function"})
        out.validation = self.validator.validate(self.root, touched)
        if not out.validation.passed:
            return self._abort("Validation failed after deletion", rollback_hint=hint)

        if self.options.auto:
            out.pruned = self.backup_manager.prune(self.settings.retention_days)

        return self._finish(
            f"Deleted {out.deletion_summary['files_deleted']} file(s) and "
            f"{out.deletion_summary['functions_deleted']} function(s); "
            f"{len(out.failures)} failure(s)"
        )
