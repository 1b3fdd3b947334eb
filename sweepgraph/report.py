"""Render one analysis result into JSON, Markdown, tree, CSV, DOT and a shell script.

Every form is produced from the same :class:`AnalysisResult` and
:class:`RiskAssessment`; nothing here re-runs analysis, so counts and member
sets agree across forms.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import shlex
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from . import __version__
from .models import AnalysisResult, EdgeKind, RiskAssessment, RiskLevel, RiskRating, file_node_id
from .safe_delete import DeletionPlan

logger = logging.getLogger(__name__)

_RISK_MARK = {RiskLevel.LOW: "[low]", RiskLevel.MEDIUM: "[medium]", RiskLevel.HIGH: "[HIGH]"}

CLEANUP_PLAN = {
    "phase1": "Delete low-risk files and functions",
    "phase2": "Run the validation command and check the application",
    "phase3": "Review medium-risk items one by one",
    "phase4": "Verify high-risk items manually; usually keep them",
    "rollback_plan": "Every mutation is preceded by a snapshot; use 'sweep backup rollback'",
}


def recommendation(rating: RiskRating, kind: str) -> str:
    if rating.level == RiskLevel.HIGH:
        return "Keep; verify manually before touching"
    if rating.level == RiskLevel.MEDIUM:
        return "Review manually, then delete if confirmed unused"
    return "Safe to delete file" if kind == "file" else "Safe to remove function"


def _esc(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class ReportGenerator:
    """Deterministic renderers over a fixed (result, assessment) pair."""

    def __init__(
        self,
        result: AnalysisResult,
        assessment: RiskAssessment,
        root: Path,
        validation_command: Optional[str] = None,
        generated_at: Optional[str] = None,
    ):
        self.result = result
        self.assessment = assessment
        self.root = root
        self.validation_command = validation_command
        self.generated_at = generated_at or datetime.now().isoformat(timespec="seconds")

    # -- shared views ----------------------------------------------------

    def low_risk_plan(self) -> DeletionPlan:
        return DeletionPlan.from_analysis(self.result, self.assessment, RiskLevel.LOW)

    def _file_links(self, path: str) -> Dict[str, List[str]]:
        """File-level dependencies: includes plus owners of referenced symbols."""
        graph = self.result.graph
        if graph is None:
            return {"depends_on": [], "used_by": [], "defines": []}
        node = file_node_id(path)
        defines = graph.successors(node, [EdgeKind.DEFINES])
        sources = [node] + defines

        depends: Set[str] = set()
        for src in sources:
            for edge in graph.edges_from(src):
                if edge.kind == EdgeKind.INCLUDES:
                    depends.add(edge.dst[len("file:"):])
                elif edge.kind == EdgeKind.REFERENCES:
                    depends.update(graph.symbols[edge.dst[len("symbol:"):]].defining_units)
        used_by: Set[str] = set()
        for dst in sources:
            for edge in graph.edges_to(dst):
                if edge.kind == EdgeKind.INCLUDES:
                    used_by.add(edge.src[len("file:"):])
                elif edge.kind == EdgeKind.REFERENCES:
                    if edge.src.startswith("file:"):
                        used_by.add(edge.src[len("file:"):])
                    else:
                        used_by.update(graph.symbols[edge.src[len("symbol:"):]].defining_units)
        depends.discard(path)
        used_by.discard(path)
        return {
            "depends_on": sorted(depends),
            "used_by": sorted(used_by),
            "defines": [d[len("symbol:"):] for d in defines],
        }

    # -- structured ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        result = self.result
        unused_files = []
        for f in result.unused_files:
            rating = self.assessment.for_file(f)
            unused_files.append({
                **f.to_dict(),
                "full_path": str(self.root / f.path),
                "risk": rating.level.value,
                "rationale": rating.rationale,
                "recommended_action": recommendation(rating, "file"),
            })
        unused_symbols = []
        for s in result.unused_symbols:
            rating = self.assessment.for_symbol(s)
            unused_symbols.append({
                **s.to_dict(),
                "risk": rating.level.value,
                "rationale": rating.rationale,
                "recommended_action": recommendation(rating, "function"),
            })

        graph_payload: Dict[str, Any] = {"nodes": [], "edges": []}
        if result.graph is not None:
            graph_payload = {
                "nodes": result.graph.node_ids(),
                "edges": [
                    {"src": e.src, "dst": e.dst, "kind": e.kind.value}
                    for e in result.graph.edges
                ],
            }

        return {
            "metadata": {
                "generated_at": self.generated_at,
                "root": str(self.root),
                "tool": f"sweepgraph {__version__}",
            },
            "summary": result.summary(),
            "entry_points": list(result.root_names),
            "root_files": list(result.root_files),
            "used_files": list(result.used_files),
            "used_symbols": list(result.used_symbols),
            "unused_files": unused_files,
            "unused_symbols": unused_symbols,
            "unresolved_references": [
                {"path": u.unit_path, "name": u.name, "line": u.line, "kind": u.kind.value}
                for u in result.unresolved
            ],
            "dependency_graph": graph_payload,
            "risk_assessment": self.assessment.breakdown(result),
            "cleanup_plan": dict(CLEANUP_PLAN),
            "low_risk_deletions": self.low_risk_plan().to_dict(),
        }

    def render_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    # -- human readable --------------------------------------------------

    def render_summary(self) -> str:
        result = self.result
        summary = result.summary()

        def pct(part: int, whole: int) -> str:
            return f"{(part / whole * 100):.1f}%" if whole else "0.0%"

        lines = [
            "# Unused Code Report",
            "",
            "## Overview",
            "",
            f"- **Generated**: {self.generated_at}",
            f"- **Root**: `{self.root}`",
            f"- **Total files**: {summary['total_files']}",
            f"- **Unused files**: {summary['unused_files']} ({pct(summary['unused_files'], summary['total_files'])})",
            f"- **Total symbols**: {summary['total_symbols']}",
            f"- **Unused symbols**: {summary['unused_symbols']} ({pct(summary['unused_symbols'], summary['total_symbols'])})",
            f"- **Unresolved references**: {summary['unresolved_references']}",
            "",
            "## Unused files",
            "",
        ]
        if result.unused_files:
            for f in result.unused_files:
                rating = self.assessment.for_file(f)
                lines.append(
                    f"- {_RISK_MARK[rating.level]} `{f.path}` ({f.size} bytes, {f.kind.value}): {rating.rationale}"
                )
        else:
            lines.append("No unused files.")
        lines += ["", "## Unused symbols", ""]
        if result.unused_symbols:
            for s in result.unused_symbols:
                rating = self.assessment.for_symbol(s)
                lines.append(
                    f"- {_RISK_MARK[rating.level]} `{s.name}` (defined in {', '.join(s.defined_in)}): {rating.rationale}"
                )
        else:
            lines.append("No unused symbols.")

        breakdown = self.assessment.breakdown(result)
        lines += [
            "",
            "## Risk breakdown",
            "",
            "| | low | medium | high |",
            "|---|---|---|---|",
            f"| files | {breakdown['files']['low']} | {breakdown['files']['medium']} | {breakdown['files']['high']} |",
            f"| symbols | {breakdown['symbols']['low']} | {breakdown['symbols']['medium']} | {breakdown['symbols']['high']} |",
            "",
            "## Before deleting",
            "",
            "1. Create a snapshot (`sweep backup create`).",
            "2. Start with low-risk items only.",
            "3. Run the validation command after every batch.",
            "",
        ]
        return "\n".join(lines)

    def render_tree(self) -> str:
        result = self.result
        lines = [f"Dependency tree for {self.root}", "", "Entry points:"]
        lines += [f"  * {name}" for name in result.root_names] or ["  (none)"]
        lines += ["", f"Used files ({len(result.used_files)}):"]
        for path in result.used_files:
            kind = result.graph.units[path].kind.value if result.graph is not None else "?"
            links = self._file_links(path)
            lines.append(f"  {path} [{kind}]")
            if links["defines"]:
                lines.append(f"    defines: {', '.join(links['defines'])}")
            for dep in links["depends_on"]:
                lines.append(f"    -> {dep}")
            for dependent in links["used_by"]:
                lines.append(f"    <- {dependent}")
        lines += ["", f"Unused files ({len(result.unused_files)}):"]
        lines += [f"  x {f.path}" for f in result.unused_files]
        lines += ["", f"Unused symbols ({len(result.unused_symbols)}):"]
        for s in result.unused_symbols:
            where = ", ".join(f"{d.unit_path}:{d.start_line}-{d.end_line}" for d in s.definitions)
            lines.append(f"  x {s.name} ({where})")
        lines.append("")
        return "\n".join(lines)

    def render_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(["Type", "Name", "Path", "Size", "Risk", "Recommendation"])
        for f in self.result.unused_files:
            rating = self.assessment.for_file(f)
            writer.writerow(["File", f.path, f.path, f.size, rating.level.value, recommendation(rating, "file")])
        for s in self.result.unused_symbols:
            rating = self.assessment.for_symbol(s)
            writer.writerow([
                "Function", s.name, ";".join(s.defined_in), "",
                rating.level.value, recommendation(rating, "function"),
            ])
        return buf.getvalue()

    def render_dot(self) -> str:
        graph = self.result.graph
        lines = ["digraph SweepGraph {", "  rankdir=LR;"]
        if graph is not None:
            unused = {f.node_id for f in self.result.unused_files}
            unused.update(s.node_id for s in self.result.unused_symbols)
            for node_id in graph.node_ids():
                shape = "box" if node_id.startswith("file:") else "ellipse"
                style = ', style="dashed", color="red"' if node_id in unused else ""
                lines.append(f'  "{_esc(node_id)}" [shape={shape}{style}];')
            for edge in graph.edges:
                lines.append(f'  "{_esc(edge.src)}" -> "{_esc(edge.dst)}" [label="{edge.kind.value}"];')
        lines.append("}")
        return "\n".join(lines) + "\n"

    def render_script(self) -> str:
        """Bash script deleting only low-risk items, gated on an explicit answer."""
        plan = self.low_risk_plan()
        root = shlex.quote(str(self.root))
        lines = [
            "#!/bin/bash",
            f"# Generated by sweepgraph {__version__} at {self.generated_at}",
            "# Deletes LOW-risk items only. Read the summary report before running.",
            "set -euo pipefail",
            "",
            f"ROOT={root}",
            f'echo "About to delete {len(plan.files)} low-risk file(s) and '
            f'{len(plan.functions)} low-risk function(s) under $ROOT"',
            'read -p "A snapshot will be taken first. Proceed? (y/N): " confirm',
            'if [[ ! "$confirm" =~ ^[Yy]$ ]]; then',
            '    echo "Aborted; nothing was changed"',
            "    exit 1",
            "fi",
            "",
            'SNAPSHOT_ID=$(sweep backup create "$ROOT" --purpose remediation-script --quiet)',
            'echo "Snapshot: $SNAPSHOT_ID"',
            "",
        ]
        if plan.functions:
            lines.append("# low-risk functions")
            for path, name in plan.functions:
                lines.append(
                    f'sweep remove-symbol "$ROOT" {shlex.quote(path)} {shlex.quote(name)} '
                    f'--snapshot "$SNAPSHOT_ID" --yes'
                )
            lines.append("")
        if plan.files:
            lines.append("# low-risk files")
            for path in plan.files:
                lines.append(
                    f'sweep remove-file "$ROOT" {shlex.quote(path)} --snapshot "$SNAPSHOT_ID" --yes'
                )
            lines.append("")
        if plan.is_empty:
            lines += ['echo "No low-risk deletions to apply"', ""]

        validate = "sweep validate \"$ROOT\""
        if self.validation_command:
            validate += f" --command {shlex.quote(self.validation_command)}"
        lines += [
            f"if {validate}; then",
            '    echo "Validation passed"',
            "else",
            '    echo "Validation FAILED. To restore the previous state run:"',
            '    echo "  sweep backup rollback $SNAPSHOT_ID --target \\"$ROOT\\""',
            "    exit 1",
            "fi",
            "",
        ]
        higher = [
            f.path for f in self.result.unused_files
            if not self.assessment.for_file(f).level.within(RiskLevel.LOW)
        ] + [
            s.name for s in self.result.unused_symbols
            if not self.assessment.for_symbol(s).level.within(RiskLevel.LOW)
        ]
        if higher:
            lines.append('echo "Still to review manually:"')
            lines += [f"echo {shlex.quote('  ' + item)}" for item in higher]
        lines.append('echo "Done"')
        return "\n".join(lines) + "\n"

    # -- files -----------------------------------------------------------

    def write_all(self, output_dir: Path, base_name: Optional[str] = None) -> Dict[str, Path]:
        """Write every form to *output_dir*; returns form name -> path."""
        output_dir.mkdir(parents=True, exist_ok=True)
        stamp = base_name or "cleanup-report-" + self.generated_at.replace(":", "-")
        outputs = {
            "detailed": (f"{stamp}-detailed.json", self.render_json()),
            "summary": (f"{stamp}-summary.md", self.render_summary()),
            "tree": (f"{stamp}-tree.txt", self.render_tree()),
            "csv": (f"{stamp}.csv", self.render_csv()),
            "graph": (f"{stamp}-graph.dot", self.render_dot()),
            "actions": (f"{stamp}-actions.sh", self.render_script()),
        }
        written: Dict[str, Path] = {}
        for form, (name, content) in outputs.items():
            path = output_dir / name
            path.write_text(content, encoding="utf-8")
            written[form] = path
        written["actions"].chmod(0o755)
        logger.info("Wrote %d report files to %s", len(written), output_dir)
        return written
