"""Post-mutation validation: an opaque external command plus a structural check."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from . import config
from .lexer import delimiter_balance, mask_source
from .parser import html_code_view

logger = logging.getLogger(__name__)

_CHECKED_SUFFIXES = config.BACKEND_EXTENSIONS | config.FRONTEND_EXTENSIONS


@dataclass
class ValidationResult:
    """Outcome of one validation pass. Only ``returncode`` decides pass/fail."""

    command: Optional[str]
    returncode: Optional[int]
    structural_issues: List[dict] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        if self.error is not None:
            return False
        return self.returncode is None or self.returncode == 0

    @property
    def ran_command(self) -> bool:
        return self.returncode is not None


class ValidationEngine:
    """Runs the external validation command and diagnoses delimiter balance."""

    def __init__(self, command: Optional[str] = None):
        self.command = command

    def run_command(self, cwd: Path) -> ValidationResult:
        """Block on the configured command; exit status 0 means pass.

        Output is passed through untouched. A missing executable counts as a
        failure rather than an exception.
        """
        if not self.command:
            return ValidationResult(command=None, returncode=None)
        logger.info("Running validation command: %s", self.command)
        try:
            proc = subprocess.run(shlex.split(self.command), cwd=cwd, check=False)
        except (FileNotFoundError, PermissionError) as exc:
            logger.warning("Validation command could not start: %s", exc)
            return ValidationResult(command=self.command, returncode=None, error=str(exc))
        if proc.returncode != 0:
            logger.warning("Validation command exited with status %d", proc.returncode)
        return ValidationResult(command=self.command, returncode=proc.returncode)

    def check_file(self, file_path: Path, rel_path: Optional[str] = None) -> List[dict]:
        """Report unbalanced delimiters in one backend or frontend unit."""
        rel = rel_path or file_path.name
        try:
            text = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            return [{"file": rel, "error": str(exc), "type": type(exc).__name__}]
        if file_path.suffix.lower() in config.FRONTEND_EXTENSIONS:
            text = html_code_view(text)
        balance = delimiter_balance(mask_source(text))
        issues = []
        for pair, delta in balance.items():
            if delta:
                issues.append({
                    "file": rel,
                    "error": f"unbalanced {pair}: {'+' if delta > 0 else ''}{delta}",
                    "type": "DelimiterImbalance",
                })
        return issues

    def diagnose_tree(self, root: Path, only: Optional[Iterable[str]] = None) -> List[dict]:
        """Structural check over every source unit (or just the paths in *only*)."""
        targets = sorted(set(only)) if only is not None else sorted(
            p.relative_to(root).as_posix()
            for p in root.rglob("*")
            if p.is_file() and p.suffix.lower() in _CHECKED_SUFFIXES
            and not any(part in config.DEFAULT_SKIP_DIRS for part in p.relative_to(root).parts)
        )
        issues: List[dict] = []
        for rel in targets:
            path = root / rel
            if path.is_file():
                issues.extend(self.check_file(path, rel))
        for issue in issues:
            logger.warning("Structural issue in %s: %s", issue["file"], issue["error"])
        return issues

    def validate(self, root: Path, touched: Optional[Iterable[str]] = None) -> ValidationResult:
        issues = self.diagnose_tree(root, touched)
        result = self.run_command(root)
        result.structural_issues = issues
        return result

    @staticmethod
    def summarize(result: ValidationResult) -> Dict[str, object]:
        return {
            "command": result.command,
            "returncode": result.returncode,
            "passed": result.passed,
            "structural_issues": len(result.structural_issues),
            "error": result.error,
        }
