"""Snapshot management commands: create, list, rollback, prune."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .backup import BackupManager
from .config_manager import load_settings
from .errors import RollbackError, SweepError

console = Console()

backup_app = typer.Typer(help="Create, list and restore snapshots of a source tree")


def _settings(tree_root: Optional[Path] = None):
    try:
        return load_settings(tree_root)
    except SweepError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)


def _manager(backup_dir: Optional[Path], tree_root: Optional[Path] = None) -> BackupManager:
    if backup_dir is not None:
        return BackupManager(backup_dir)
    return BackupManager(_settings(tree_root).resolved_backup_dir())


@backup_app.command("create")
def create(
    root: Path = typer.Argument(..., exists=True, file_okay=False, help="Tree to snapshot."),
    purpose: str = typer.Option("manual", "--purpose", "-p", help="Purpose tag stored in metadata."),
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Snapshot directory."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Print only the snapshot id."),
):
    """Take a snapshot of ROOT."""
    try:
        snapshot = _manager(backup_dir, root).create_backup(root, purpose=purpose)
    except SweepError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)
    if quiet:
        typer.echo(snapshot.snapshot_id)
        return
    console.print(f"[green]✓[/green] Snapshot [bold]{snapshot.snapshot_id}[/bold] ({snapshot.file_count} files)")
    console.print(f"  Location: {snapshot.path}")
    if snapshot.git_revision:
        console.print(f"  Git revision: {snapshot.git_revision}")


@backup_app.command("list")
def list_snapshots(
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Snapshot directory."),
):
    """List available snapshots, newest first."""
    manager = _manager(backup_dir)
    snapshots = manager.list_snapshots()
    if not snapshots:
        typer.echo("No snapshots found.")
        return

    table = Table(title="Snapshots", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Created")
    table.add_column("Purpose")
    table.add_column("Files", justify="right")
    table.add_column("Deletions", justify="right")
    table.add_column("Origin")
    for snap in snapshots:
        log = manager.load_deletion_log(snap.snapshot_id)
        deletions = str(len(log["deletions"])) if log else "-"
        table.add_row(
            snap.snapshot_id, snap.created_at, snap.purpose,
            str(snap.file_count), deletions, snap.origin_path,
        )
    console.print(table)


@backup_app.command("rollback")
def rollback(
    snapshot_id: str = typer.Argument(..., help="Snapshot to restore."),
    target: Optional[Path] = typer.Option(None, "--target", "-t", help="Directory to restore into (default: origin)."),
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Snapshot directory."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Restore without confirmation."),
):
    """Restore a snapshot; the current state is snapshotted first."""
    settings = _settings(target)
    manager = BackupManager(backup_dir) if backup_dir else BackupManager(settings.resolved_backup_dir())
    try:
        snapshot = manager.load_snapshot(snapshot_id)
    except SweepError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    destination = target or Path(snapshot.origin_path)
    if not yes and not typer.confirm(
        f"Replace the contents of {destination} with snapshot {snapshot_id}?", default=False
    ):
        typer.echo("Rollback cancelled.")
        raise typer.Exit(0)

    try:
        result = manager.rollback(
            snapshot_id,
            destination,
            required_files=settings.required_files,
            required_symbols=settings.required_symbols,
        )
    except RollbackError as exc:
        console.print(f"[red]✗ Rollback failed:[/red] {exc}")
        console.print(f"[yellow]{exc.recovery_hint()}[/yellow]")
        raise typer.Exit(1)
    except SweepError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Restored {result.files_restored} files from {snapshot_id}")
    console.print(f"  Safety snapshot of the previous state: {result.safety_snapshot.snapshot_id}")
    for check in result.checks:
        mark = "[green]✓[/green]" if check.passed else "[yellow]![/yellow]"
        console.print(f"  {mark} {check.kind} {check.name} {check.detail}")
    if not result.verified:
        console.print("[yellow]Some post-restore checks failed; inspect the tree before continuing.[/yellow]")


@backup_app.command("prune")
def prune(
    days: Optional[int] = typer.Option(None, "--days", "-d", min=0, help="Retention window in days."),
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Snapshot directory."),
):
    """Delete snapshots older than the retention window."""
    settings = _settings()
    manager = BackupManager(backup_dir) if backup_dir else BackupManager(settings.resolved_backup_dir())
    retention = settings.retention_days if days is None else days
    removed = manager.prune(retention)
    typer.echo(f"Removed {len(removed)} snapshot(s) older than {retention} day(s).")
    for snapshot_id in removed:
        typer.echo(f"  {snapshot_id}")
