"""Typer-based CLI for SweepGraph dead-code analysis and cleanup."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .backup import BackupManager
from .cli_backup import backup_app
from .config_manager import SweepSettings, load_settings
from .errors import SweepError
from .logging_setup import configure_logging
from .models import RiskLevel
from .orchestrator import CleanupOptions, CleanupOrchestrator, PipelineOutcome, PipelineState
from .reachability import analyze_tree
from .report import ReportGenerator
from .risk import RiskClassifier, RiskPolicy
from .safe_delete import SafeDeleter
from .validation_engine import ValidationEngine

console = Console()

app = typer.Typer(
    help="SweepGraph: find and safely remove dead code in Apps Script style projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(backup_app, name="backup")

_RISK_STYLE = {RiskLevel.LOW: "green", RiskLevel.MEDIUM: "yellow", RiskLevel.HIGH: "red"}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"SweepGraph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show debug logging."),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this file."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Static reachability analysis with snapshot-protected deletion."""
    configure_logging(verbose=verbose, log_file=log_file)


def _load(root: Optional[Path], config_file: Optional[Path] = None) -> SweepSettings:
    try:
        return load_settings(root, config_file)
    except SweepError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)


def _parse_risk(value: str) -> RiskLevel:
    try:
        return RiskLevel.parse(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))


@app.command("analyze")
def analyze(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Source tree to analyse."),
    as_json: bool = typer.Option(False, "--json", help="Print the structured report as JSON."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
    show_unresolved: bool = typer.Option(False, "--unresolved", help="List unresolved references."),
):
    """Mark used and unused files and symbols, with risk ratings."""
    settings = _load(root, config_file)
    result = analyze_tree(root, settings)
    assessment = RiskClassifier(RiskPolicy.from_settings(settings)).assess(result)
    generator = ReportGenerator(result, assessment, root.resolve(), settings.validation_command)

    if as_json:
        typer.echo(generator.render_json())
        return

    summary = result.summary()
    console.print(
        Panel.fit(
            f"Files: {summary['used_files']} used / {summary['unused_files']} unused\n"
            f"Symbols: {summary['used_symbols']} used / {summary['unused_symbols']} unused\n"
            f"Unresolved references: {summary['unresolved_references']}",
            title="[bold]Reachability[/bold]",
        )
    )
    if not result.unused_files and not result.unused_symbols:
        typer.echo("No unused code found.")
    else:
        table = Table(title="Unused code", show_header=True)
        table.add_column("Type", style="cyan")
        table.add_column("Name")
        table.add_column("Location")
        table.add_column("Risk")
        table.add_column("Why")
        for f in result.unused_files:
            rating = assessment.for_file(f)
            style = _RISK_STYLE[rating.level]
            table.add_row("file", f.path, f"{f.size} bytes", f"[{style}]{rating.level.value}[/{style}]", rating.rationale)
        for s in result.unused_symbols:
            rating = assessment.for_symbol(s)
            style = _RISK_STYLE[rating.level]
            where = ", ".join(f"{d.unit_path}:{d.start_line}" for d in s.definitions)
            table.add_row("function", s.name, where, f"[{style}]{rating.level.value}[/{style}]", rating.rationale)
        console.print(table)

    if show_unresolved and result.unresolved:
        typer.echo("\nUnresolved references:")
        for u in result.unresolved:
            typer.echo(f"  {u.unit_path}:{u.line} {u.name} ({u.kind.value})")


@app.command("report")
def report(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Source tree to analyse."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Directory for report files."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
):
    """Write the detailed, summary, tree, CSV, DOT and script reports."""
    settings = _load(root, config_file)
    result = analyze_tree(root, settings)
    assessment = RiskClassifier(RiskPolicy.from_settings(settings)).assess(result)
    generator = ReportGenerator(result, assessment, root.resolve(), settings.validation_command)
    written = generator.write_all(output or settings.resolved_report_dir())
    typer.echo(f"Unused files: {len(result.unused_files)} | Unused symbols: {len(result.unused_symbols)}")
    for form, path in written.items():
        typer.echo(f"  {form}: {path}")


def _print_outcome(outcome: PipelineOutcome) -> None:
    if outcome.result is not None:
        typer.echo(
            f"Unused files: {len(outcome.result.unused_files)} | "
            f"Unused symbols: {len(outcome.result.unused_symbols)}"
        )
    for form, path in outcome.reports.items():
        typer.echo(f"  report {form}: {path}")
    if outcome.preview:
        typer.echo("\nPlanned changes (dry run):")
        typer.echo(outcome.preview)
    for failure in outcome.failures:
        target = f"{failure['path']}::{failure['symbol']}" if failure.get("symbol") else failure["path"]
        console.print(f"[yellow]![/yellow] {target}: {failure['error']}")
    if outcome.validation is not None:
        for issue in outcome.validation.structural_issues:
            console.print(f"[yellow]![/yellow] {issue['file']}: {issue['error']}")

    if outcome.state == PipelineState.DONE:
        console.print(f"[green]✓[/green] {outcome.message}")
        if outcome.snapshot is not None:
            typer.echo(f"Snapshot: {outcome.snapshot.snapshot_id}")
    else:
        phase = outcome.failed_phase.value if outcome.failed_phase else "unknown"
        console.print(f"[red]✗ Aborted during {phase}:[/red] {outcome.message}")
        if outcome.rollback_hint:
            typer.echo(f"To roll back run: {outcome.rollback_hint}")


@app.command("clean")
def clean(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Source tree to clean."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Analyse and report only; change nothing."),
    risk_level: str = typer.Option("", "--risk-level", "-r", help="Highest risk to delete: low, medium, high."),
    non_interactive: bool = typer.Option(False, "--non-interactive", help="Skip the confirmation prompt."),
    auto: bool = typer.Option(False, "--auto", help="Non-interactive, and prune old snapshots afterwards."),
    validate: Optional[str] = typer.Option(None, "--validate", help="Validation command run after deletion."),
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Snapshot directory."),
    report_dir: Optional[Path] = typer.Option(None, "--report-dir", help="Directory for report files."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
):
    """Run the full pipeline: analyse, report, confirm, snapshot, delete, validate."""
    settings = _load(root, config_file)
    options = CleanupOptions(
        dry_run=dry_run,
        risk_level=_parse_risk(risk_level or settings.risk_level),
        non_interactive=non_interactive,
        auto=auto,
        validation_command=validate,
        report_dir=report_dir,
    )
    orchestrator = CleanupOrchestrator(
        root,
        settings,
        options,
        confirm=lambda prompt: typer.confirm(prompt, default=False),
        backup_manager=BackupManager(backup_dir) if backup_dir else None,
    )
    outcome = orchestrator.run()
    _print_outcome(outcome)
    if outcome.state == PipelineState.ABORTED and not outcome.declined:
        raise typer.Exit(1)


@app.command("remove-symbol")
def remove_symbol(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Source tree."),
    file: str = typer.Argument(..., help="File path relative to ROOT."),
    name: str = typer.Argument(..., help="Function to remove."),
    snapshot_id: Optional[str] = typer.Option(None, "--snapshot", help="Existing snapshot to record against."),
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Snapshot directory."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Remove without confirmation."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
):
    """Remove one function from one file, under a snapshot."""
    settings = _load(root, config_file)
    if not yes and not typer.confirm(f"Remove function '{name}' from {file}?", default=False):
        typer.echo("Cancelled.")
        raise typer.Exit(0)
    manager, deleter = _bound_deleter(root, settings, backup_dir, snapshot_id, f"remove-symbol:{name}")
    record = deleter.delete_function(file, name)
    if record is None:
        error = deleter.failures[-1]["error"] if deleter.failures else "unknown error"
        console.print(f"[red]✗[/red] {name} in {file}: {error}")
        raise typer.Exit(1)
    _log_deletion(manager, deleter)
    console.print(
        f"[green]✓[/green] Removed {name} from {file} "
        f"(lines {record.span[0]}-{record.span[1]}, {record.bytes_freed} bytes)"
    )
    typer.echo(f"Snapshot: {deleter.snapshot.snapshot_id}")


@app.command("remove-file")
def remove_file(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Source tree."),
    file: str = typer.Argument(..., help="File path relative to ROOT."),
    snapshot_id: Optional[str] = typer.Option(None, "--snapshot", help="Existing snapshot to record against."),
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Snapshot directory."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Remove without confirmation."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
):
    """Delete one whole file, under a snapshot."""
    settings = _load(root, config_file)
    if not yes and not typer.confirm(f"Delete {file}?", default=False):
        typer.echo("Cancelled.")
        raise typer.Exit(0)
    manager, deleter = _bound_deleter(root, settings, backup_dir, snapshot_id, f"remove-file:{file}")
    record = deleter.delete_file(file)
    if record is None:
        error = deleter.failures[-1]["error"] if deleter.failures else "unknown error"
        console.print(f"[red]✗[/red] {file}: {error}")
        raise typer.Exit(1)
    _log_deletion(manager, deleter)
    console.print(f"[green]✓[/green] Deleted {file} ({record.bytes_freed} bytes)")
    typer.echo(f"Snapshot: {deleter.snapshot.snapshot_id}")


def _bound_deleter(
    root: Path,
    settings: SweepSettings,
    backup_dir: Optional[Path],
    snapshot_id: Optional[str],
    purpose: str,
) -> Tuple[BackupManager, SafeDeleter]:
    """Load the named snapshot, or take a new one, and bind a deleter to it."""
    manager = BackupManager(backup_dir or settings.resolved_backup_dir())
    try:
        if snapshot_id:
            snapshot = manager.load_snapshot(snapshot_id)
        else:
            snapshot = manager.create_backup(root, purpose=purpose)
    except SweepError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)
    deleter = SafeDeleter(root)
    deleter.bind_snapshot(snapshot)
    return manager, deleter


def _log_deletion(manager: BackupManager, deleter: SafeDeleter) -> None:
    try:
        manager.append_deletion_log(deleter.snapshot, deleter.records)
    except SweepError as exc:
        console.print(f"[yellow]![/yellow] {exc}")


@app.command("validate")
def validate(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Source tree to validate."),
    command: Optional[str] = typer.Option(None, "--command", help="External validation command."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
):
    """Check delimiter balance and run the validation command; exit 1 on failure."""
    settings = _load(root, config_file)
    engine = ValidationEngine(command or settings.validation_command)
    result = engine.validate(root.resolve())
    for issue in result.structural_issues:
        console.print(f"[yellow]![/yellow] {issue['file']}: {issue['error']}")
    if result.error:
        console.print(f"[red]✗[/red] {result.error}")
    if not result.ran_command and not result.error:
        typer.echo("No validation command configured; structural check only.")
    if not result.passed:
        console.print("[red]✗ Validation failed[/red]")
        raise typer.Exit(1)
    console.print("[green]✓[/green] Validation passed")


@app.command("show-config")
def show_config(
    root: Optional[Path] = typer.Argument(None, help="Tree whose sweepgraph.toml should be applied."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
):
    """Print the effective settings as TOML."""
    settings = _load(root, config_file)
    typer.echo(settings.to_toml())


@app.command("graph")
def graph(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Source tree to analyse."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write DOT to this file."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Explicit sweepgraph.toml."),
):
    """Export the dependency graph in Graphviz DOT format."""
    settings = _load(root, config_file)
    result = analyze_tree(root, settings)
    assessment = RiskClassifier(RiskPolicy.from_settings(settings)).assess(result)
    dot = ReportGenerator(result, assessment, root.resolve()).render_dot()
    if output is None:
        typer.echo(dot)
        return
    output.write_text(dot, encoding="utf-8")
    typer.echo(f"Wrote {output}")
    typer.echo(json.dumps(result.graph.stats() if result.graph is not None else {}))
