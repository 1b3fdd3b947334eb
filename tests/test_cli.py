"""Integration tests for the sweep command line."""

import json
import shlex
import sys
from pathlib import Path

from typer.testing import CliRunner

from sweepgraph import __version__
from sweepgraph.backup import BackupManager
from sweepgraph.cli import app

runner = CliRunner()


def _fail_command() -> str:
    return f"{shlex.quote(sys.executable)} -c 'raise SystemExit(1)'"


class TestAnalysis:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"SweepGraph v{__version__}" in result.output

    def test_analyze_json(self, sample_project_path: Path):
        result = runner.invoke(app, ["analyze", str(sample_project_path), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [f["path"] for f in data["unused_files"]] == ["Orphan.gs"]
        assert data["summary"]["unused_symbols"] == 3

    def test_analyze_table(self, sample_project_path: Path):
        result = runner.invoke(app, ["analyze", str(sample_project_path)])
        assert result.exit_code == 0
        assert "Reachability" in result.output
        assert "1 unused" in result.output

    def test_analyze_clean_tree(self, make_tree):
        root = make_tree({"Code.gs": "function doGet() {}\n"})
        result = runner.invoke(app, ["analyze", str(root)])
        assert result.exit_code == 0
        assert "No unused code found." in result.output

    def test_analyze_missing_path(self, tmp_path: Path):
        result = runner.invoke(app, ["analyze", str(tmp_path / "nope")])
        assert result.exit_code != 0

    def test_analyze_bad_config(self, make_tree):
        root = make_tree({"Code.gs": "", "sweepgraph.toml": "[risk]\nlarge_file_bytes = \"x\"\n"})
        result = runner.invoke(app, ["analyze", str(root)])
        assert result.exit_code == 1

    def test_report(self, sample_project_path: Path, tmp_path: Path):
        out = tmp_path / "reports"
        result = runner.invoke(app, ["report", str(sample_project_path), "-o", str(out)])
        assert result.exit_code == 0
        assert "Unused files: 1 | Unused symbols: 3" in result.output
        assert len(list(out.iterdir())) == 6

    def test_graph(self, scenario_tree: Path):
        result = runner.invoke(app, ["graph", str(scenario_tree)])
        assert result.exit_code == 0
        assert "digraph SweepGraph {" in result.output
        assert '"symbol:doGet" -> "symbol:helper"' in result.output

    def test_show_config(self, make_tree):
        root = make_tree({"sweepgraph.toml": "[risk]\nlevel = \"medium\"\n"})
        result = runner.invoke(app, ["show-config", str(root)])
        assert result.exit_code == 0
        assert 'level = "medium"' in result.output


class TestClean:
    def test_dry_run(self, sample_project: Path, tree_contents):
        before = tree_contents(sample_project)
        result = runner.invoke(app, ["clean", str(sample_project), "--dry-run"])
        assert result.exit_code == 0
        assert "Dry run complete" in result.output
        assert "deleted: Orphan.gs" in result.output
        assert tree_contents(sample_project) == before

    def test_non_interactive(self, sample_project: Path, tmp_path: Path):
        result = runner.invoke(app, [
            "clean", str(sample_project), "--non-interactive",
            "--backup-dir", str(tmp_path / "snaps"),
            "--report-dir", str(tmp_path / "reports"),
        ])
        assert result.exit_code == 0
        assert "Snapshot:" in result.output
        assert not (sample_project / "Orphan.gs").exists()
        assert "legacyExport" not in (sample_project / "Data.gs").read_text()
        assert len(list((tmp_path / "snaps").iterdir())) == 1

    def test_declined(self, sample_project: Path, tree_contents):
        before = tree_contents(sample_project)
        result = runner.invoke(app, ["clean", str(sample_project)], input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert tree_contents(sample_project) == before

    def test_validation_failure_exits_nonzero(self, scenario_tree: Path, tmp_path: Path):
        result = runner.invoke(app, [
            "clean", str(scenario_tree), "--non-interactive",
            "--validate", _fail_command(),
            "--backup-dir", str(tmp_path / "snaps"),
        ])
        assert result.exit_code == 1
        assert "To roll back run: sweep backup rollback" in result.output

    def test_bad_risk_level(self, scenario_tree: Path):
        result = runner.invoke(app, ["clean", str(scenario_tree), "--risk-level", "extreme"])
        assert result.exit_code != 0


class TestSymbolsAndValidation:
    def test_remove_symbol(self, scenario_tree: Path, tmp_path: Path):
        result = runner.invoke(app, [
            "remove-symbol", str(scenario_tree), "B.gs", "orphan",
            "--backup-dir", str(tmp_path / "snaps"), "--yes",
        ])
        assert result.exit_code == 0
        assert "Removed orphan" in result.output
        assert "orphan" not in (scenario_tree / "B.gs").read_text()

    def test_removals_are_logged_against_shared_snapshot(self, scenario_tree: Path, tmp_path: Path):
        snaps = tmp_path / "snaps"
        created = runner.invoke(app, ["backup", "create", str(scenario_tree), "--backup-dir", str(snaps), "--quiet"])
        snapshot_id = created.output.strip()

        removed = runner.invoke(app, [
            "remove-symbol", str(scenario_tree), "B.gs", "orphan",
            "--snapshot", snapshot_id, "--backup-dir", str(snaps), "--yes",
        ])
        assert removed.exit_code == 0
        deleted = runner.invoke(app, [
            "remove-file", str(scenario_tree), "B.gs",
            "--snapshot", snapshot_id, "--backup-dir", str(snaps), "--yes",
        ])
        assert deleted.exit_code == 0
        assert "Deleted B.gs" in deleted.output
        assert not (scenario_tree / "B.gs").exists()

        log = BackupManager(snaps).load_deletion_log(snapshot_id)
        assert [(d["kind"], d["path"], d["symbol"]) for d in log["deletions"]] == [
            ("function", "B.gs", "orphan"),
            ("file", "B.gs", None),
        ]
        assert all(d["snapshot_id"] == snapshot_id for d in log["deletions"])

    def test_remove_missing_file(self, scenario_tree: Path, tmp_path: Path):
        result = runner.invoke(app, [
            "remove-file", str(scenario_tree), "Nope.gs",
            "--backup-dir", str(tmp_path / "snaps"), "--yes",
        ])
        assert result.exit_code == 1

    def test_remove_missing_symbol(self, scenario_tree: Path, tmp_path: Path):
        result = runner.invoke(app, [
            "remove-symbol", str(scenario_tree), "B.gs", "ghost",
            "--backup-dir", str(tmp_path / "snaps"), "--yes",
        ])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_validate(self, scenario_tree: Path):
        result = runner.invoke(app, ["validate", str(scenario_tree)])
        assert result.exit_code == 0
        assert "Validation passed" in result.output

    def test_validate_reads_explicit_config(self, scenario_tree: Path, tmp_path: Path):
        config_file = tmp_path / "custom.toml"
        config_file.write_text(f"[validation]\ncommand = {json.dumps(_fail_command())}\n")
        result = runner.invoke(app, ["validate", str(scenario_tree), "--config", str(config_file)])
        assert result.exit_code == 1
        assert "Validation failed" in result.output

    def test_graph_rejects_bad_explicit_config(self, scenario_tree: Path, tmp_path: Path):
        result = runner.invoke(app, ["graph", str(scenario_tree), "-c", str(tmp_path / "missing.toml")])
        assert result.exit_code == 1

    def test_validate_failing_command(self, scenario_tree: Path):
        result = runner.invoke(app, ["validate", str(scenario_tree), "--command", _fail_command()])
        assert result.exit_code == 1
        assert "Validation failed" in result.output


class TestBackupCommands:
    def test_create_list_rollback(self, scenario_tree: Path, tmp_path: Path, tree_contents):
        snaps = str(tmp_path / "snaps")
        before = tree_contents(scenario_tree)

        created = runner.invoke(app, ["backup", "create", str(scenario_tree), "--backup-dir", snaps, "--quiet"])
        assert created.exit_code == 0
        snapshot_id = created.output.strip()

        listed = runner.invoke(app, ["backup", "list", "--backup-dir", snaps])
        assert listed.exit_code == 0
        assert "Snapshots" in listed.output

        (scenario_tree / "B.gs").unlink()
        restored = runner.invoke(app, ["backup", "rollback", snapshot_id, "--backup-dir", snaps, "--yes"])
        assert restored.exit_code == 0
        assert "Restored" in restored.output
        assert tree_contents(scenario_tree) == before

    def test_list_empty(self, tmp_path: Path):
        result = runner.invoke(app, ["backup", "list", "--backup-dir", str(tmp_path / "none")])
        assert result.exit_code == 0
        assert "No snapshots found." in result.output

    def test_rollback_unknown_id(self, tmp_path: Path):
        result = runner.invoke(app, ["backup", "rollback", "nope", "--backup-dir", str(tmp_path), "--yes"])
        assert result.exit_code == 1

    def test_prune(self, scenario_tree: Path, tmp_path: Path):
        snaps = str(tmp_path / "snaps")
        runner.invoke(app, ["backup", "create", str(scenario_tree), "--backup-dir", snaps])
        result = runner.invoke(app, ["backup", "prune", "--days", "0", "--backup-dir", snaps])
        assert result.exit_code == 0
        assert "Removed" in result.output
