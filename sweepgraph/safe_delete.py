"""Sweep phase: whole-file and single-function deletion with snapshot discipline."""

from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Set, Tuple

from . import config
from .errors import SnapshotRequiredError
from .lexer import line_of, mask_source
from .models import AnalysisResult, DeletionRecord, RiskAssessment, RiskLevel, Snapshot
from .parser import html_code_view, locate_body

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionSpan:
    """Character span ``[start, end)`` covering a definition and its doc block."""

    name: str
    start: int
    end: int
    start_line: int
    end_line: int


def _definition_patterns(name: str) -> List[Pattern[str]]:
    n = re.escape(name)
    callable_rhs = r"(?:async\s*)?(?:function\b|\([^()]*\)\s*=>|[A-Za-z_$][\w$]*\s*=>)"
    return [
        re.compile(rf"\bfunction\b\s*\*?\s*({n})\s*\("),
        re.compile(rf"\b(?:const|let|var)\s+({n})\s*=\s*{callable_rhs}"),
        re.compile(rf"^[ \t]*({n})[ \t]*:[ \t]*{callable_rhs}", re.M),
        re.compile(rf"^[ \t]*(?:(?:async|static)[ \t]+)*({n})[ \t]*\([^()]*\)[ \t]*\{{", re.M),
    ]


def _line_start(text: str, pos: int) -> int:
    return text.rfind("\n", 0, pos) + 1


def _extend_over_doc_comment(text: str, masked: str, start: int) -> int:
    """Move *start* back over a ``/** ... */`` block directly above it."""
    k = start
    while k > 0 and text[k - 1] in " \t\r\n":
        k -= 1
    if k < 2 or not text.startswith("*/", k - 2):
        return start
    if text.count("\n", k, start) > 1:
        return start
    opener = text.rfind("/*", 0, k - 2)
    if opener == -1 or not text.startswith("/**", opener):
        return start
    # comment content is blank in the masked view; a "*/" inside a string is not
    if masked[opener:k].strip():
        return start
    head = _line_start(text, opener)
    return head if not text[head:opener].strip() else opener


def _extend_over_terminator(text: str, end: int) -> int:
    """Swallow a trailing ``;`` or ``,`` and the rest of the line if it is empty."""
    n = len(text)
    j = end
    while j < n and text[j] in " \t":
        j += 1
    if j < n and text[j] in ";,":
        j += 1
        end = j
    while j < n and text[j] in " \t\r":
        j += 1
    if j < n and text[j] == "\n":
        return j + 1
    if j >= n:
        return n
    return end


def locate_function(text: str, name: str, template: bool = False) -> Optional[FunctionSpan]:
    """Find the span of the first definition of *name* in *text*.

    Braces are counted on the masked view, so string literals and comments
    never move the end boundary. With *template* set, markup and HTML comments
    are blanked first and only script code is searched. Returns None when no
    definition matches or when its body never closes.
    """
    masked = mask_source(html_code_view(text) if template else text)
    best: Optional[re.Match] = None
    for pattern in _definition_patterns(name):
        m = pattern.search(masked)
        if m and (best is None or m.start(1) < best.start(1)):
            best = m
    if best is None:
        return None

    _, body_end = locate_body(masked, best.end(1))
    if body_end is None:
        logger.warning("Definition of '%s' has an unbalanced body; leaving it alone", name)
        return None

    start = best.start()
    head = _line_start(text, start)
    if not text[head:start].strip():
        start = head
    start = _extend_over_doc_comment(text, masked, start)
    end = _extend_over_terminator(text, body_end)
    return FunctionSpan(
        name=name,
        start=start,
        end=end,
        start_line=line_of(text, start),
        end_line=line_of(text, max(body_end - 1, start)),
    )


_LEADING_BLANKS = re.compile(r"^(?:[ \t]*\n)+")
_TRAILING_BLANK = re.compile(r"\n[ \t]*\n$")


def _join(head: str, tail: str) -> str:
    """Concatenate around a removed span, leaving at most one blank line."""
    if not tail.strip():
        return head.rstrip() + "\n" if head.strip() else ""
    if not head.strip():
        return _LEADING_BLANKS.sub("", tail)
    if _TRAILING_BLANK.search(head):
        return head + _LEADING_BLANKS.sub("", tail)
    return head + re.sub(r"^(?:[ \t]*\n){2,}", "\n", tail)


def is_template_path(path: str) -> bool:
    return Path(path).suffix.lower() in config.FRONTEND_EXTENSIONS


def remove_function(text: str, name: str, template: bool = False) -> Tuple[str, Optional[FunctionSpan]]:
    """Return ``(new_text, span)``; text is unchanged and span None when not found."""
    span = locate_function(text, name, template)
    if span is None:
        return text, None
    return _join(text[:span.start], text[span.end:]), span


@dataclass
class DeletionPlan:
    """Approved deletions: whole files plus (path, function) pairs."""

    files: List[str] = field(default_factory=list)
    functions: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.functions

    @classmethod
    def from_analysis(
        cls,
        result: AnalysisResult,
        assessment: RiskAssessment,
        threshold: RiskLevel,
    ) -> "DeletionPlan":
        """Select every unused node rated at or below *threshold*."""
        files = [
            f.path for f in result.unused_files
            if assessment.for_file(f).level.within(threshold)
        ]
        doomed = set(files)
        functions: List[Tuple[str, str]] = []
        for sym in result.unused_symbols:
            if not assessment.for_symbol(sym).level.within(threshold):
                continue
            for path in sym.defined_in:
                if path not in doomed:
                    functions.append((path, sym.name))
        return cls(files=files, functions=sorted(functions))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": list(self.files),
            "functions": [{"path": p, "name": n} for p, n in self.functions],
        }


class SafeDeleter:
    """Applies deletions under a bound snapshot, one item at a time.

    A failing item is logged and recorded in :attr:`failures`; the rest of the
    batch still runs. In dry-run mode no file is written and edits are kept in
    memory so that :meth:`preview` can show them.
    """

    def __init__(self, root: Path, dry_run: bool = False) -> None:
        self.root = root.resolve()
        self.dry_run = dry_run
        self.snapshot: Optional[Snapshot] = None
        self.records: List[DeletionRecord] = []
        self.failures: List[Dict[str, Optional[str]]] = []
        self._pending: Dict[str, str] = {}
        self._originals: Dict[str, str] = {}
        self._removed: Set[str] = set()

    def bind_snapshot(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot

    def _require_snapshot(self) -> None:
        if not self.dry_run and self.snapshot is None:
            raise SnapshotRequiredError(
                "Refusing to modify files before a snapshot of the tree exists"
            )

    def _resolve(self, rel_path: str) -> Path:
        target = (self.root / rel_path).resolve()
        if target != self.root and self.root not in target.parents:
            raise OSError(f"Path escapes analysed tree: {rel_path}")
        return target

    def _fail(self, path: str, error: str, symbol: Optional[str] = None) -> None:
        logger.warning("Deletion failed for %s%s: %s", path, f"::{symbol}" if symbol else "", error)
        self.failures.append({"path": path, "symbol": symbol, "error": error})

    def _record(self, **kwargs: Any) -> DeletionRecord:
        record = DeletionRecord(
            snapshot_id=self.snapshot.snapshot_id if self.snapshot else None,
            dry_run=self.dry_run,
            timestamp=datetime.now().isoformat(),
            **kwargs,
        )
        self.records.append(record)
        return record

    def delete_file(self, rel_path: str) -> Optional[DeletionRecord]:
        self._require_snapshot()
        try:
            target = self._resolve(rel_path)
            if rel_path in self._removed:
                raise FileNotFoundError(f"{rel_path} was already deleted")
            size = target.stat().st_size
            if not self.dry_run:
                target.unlink()
        except OSError as exc:
            self._fail(rel_path, str(exc))
            return None
        self._removed.add(rel_path)
        self._pending.pop(rel_path, None)
        logger.info("%s file %s (%d bytes)", "Would delete" if self.dry_run else "Deleted", rel_path, size)
        return self._record(kind="file", path=rel_path, size_before=size, size_after=0)

    def delete_function(self, rel_path: str, name: str) -> Optional[DeletionRecord]:
        self._require_snapshot()
        try:
            target = self._resolve(rel_path)
            if rel_path in self._removed:
                raise FileNotFoundError(f"{rel_path} was already deleted")
            if rel_path in self._pending:
                text = self._pending[rel_path]
            else:
                text = target.read_text(encoding="utf-8")
                self._originals[rel_path] = text
            new_text, span = remove_function(text, name, is_template_path(rel_path))
            if span is None:
                self._fail(rel_path, "not found", symbol=name)
                return None
            if not self.dry_run:
                target.write_text(new_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self._fail(rel_path, str(exc), symbol=name)
            return None

        self._pending[rel_path] = new_text
        before = len(text.encode("utf-8"))
        after = len(new_text.encode("utf-8"))
        logger.info(
            "%s function %s in %s (lines %d-%d)",
            "Would remove" if self.dry_run else "Removed", name, rel_path, span.start_line, span.end_line,
        )
        return self._record(
            kind="function",
            path=rel_path,
            symbol=name,
            size_before=before,
            size_after=after,
            span=(span.start_line, span.end_line),
        )

    def apply(self, plan: DeletionPlan) -> List[DeletionRecord]:
        """Run every item of *plan*; returns the records created by this call."""
        self._require_snapshot()
        first = len(self.records)
        for path, name in plan.functions:
            self.delete_function(path, name)
        for path in plan.files:
            self.delete_file(path)
        return self.records[first:]

    def preview(self) -> str:
        """Unified diff of all function removals made so far."""
        chunks = []
        for path in sorted(self._pending):
            diff = difflib.unified_diff(
                self._originals[path].splitlines(keepends=True),
                self._pending[path].splitlines(keepends=True),
                fromfile=f"a/{path}",
                tofile=f"b/{path}",
            )
            chunks.append("".join(diff))
        for path in sorted(self._removed):
            chunks.append(f"deleted: {path}\n")
        return "".join(chunks)

    def summary(self) -> Dict[str, Any]:
        files = [r for r in self.records if r.kind == "file"]
        functions = [r for r in self.records if r.kind == "function"]
        return {
            "snapshot_id": self.snapshot.snapshot_id if self.snapshot else None,
            "dry_run": self.dry_run,
            "files_deleted": len(files),
            "functions_deleted": len(functions),
            "bytes_freed": sum(r.bytes_freed for r in self.records),
            "failures": len(self.failures),
        }
