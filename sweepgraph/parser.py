"""Lexical symbol extraction for loosely-typed script sources.

There is no real parser here: every rule is a pattern applied to a masked
view of the text (see :mod:`sweepgraph.lexer`), so comments and string
contents never produce definitions, calls or brace counts.

Recognised forms:
- ``function name(...) {``                    (function)
- ``const|let|var name = function / arrow``   (bound callable)
- ``name(...) {`` and ``name: function``      (method inside object/class)
- ``include("Unit")``, ``createTemplateFromFile("Unit")`` (cross-file inclusion)
- ``<bridge>.withSuccessHandler(h).name(``   (remote invocation by name)
- ``name(``                                   (bare or member call)
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from . import config
from .lexer import find_block_end, find_matching_paren, line_of, mask_source
from .models import (
    Extraction,
    Reference,
    ReferenceKind,
    SourceUnit,
    SymbolDefinition,
    SymbolKind,
    UnitKind,
)

logger = logging.getLogger(__name__)

RESERVED_WORDS: Set[str] = {
    "break", "case", "catch", "class", "const", "continue", "debugger",
    "default", "delete", "do", "else", "export", "extends", "finally",
    "for", "function", "if", "import", "in", "instanceof", "let", "new",
    "return", "super", "switch", "this", "throw", "try", "typeof", "var",
    "void", "while", "with", "yield", "await", "async", "static", "get",
    "set", "of", "true", "false", "null", "undefined", "arguments",
}

BUILTIN_NAMES: Set[str] = {
    # language globals
    "console", "parseInt", "parseFloat", "isNaN", "isFinite", "eval",
    "encodeURIComponent", "decodeURIComponent", "encodeURI", "decodeURI",
    "setTimeout", "setInterval", "clearTimeout", "clearInterval",
    "Object", "Array", "String", "Number", "Boolean", "Symbol", "Date",
    "Math", "JSON", "Promise", "RegExp", "Error", "TypeError", "RangeError",
    "Map", "Set", "WeakMap", "WeakSet", "Function", "Reflect", "Proxy",
    "require", "alert", "confirm", "prompt", "fetch",
    # browser
    "document", "window", "location", "navigator", "localStorage",
    "sessionStorage", "getElementById", "querySelector", "querySelectorAll",
    "addEventListener", "removeEventListener", "createElement",
    # Apps Script services
    "SpreadsheetApp", "DriveApp", "UrlFetchApp", "PropertiesService",
    "CacheService", "HtmlService", "ScriptApp", "Session", "Utilities",
    "Logger", "LockService", "MailApp", "GmailApp", "ContentService",
    "FormApp", "DocumentApp", "CalendarApp",
}

SKIP_DIRS: Set[str] = set(config.DEFAULT_SKIP_DIRS)

_IDENT = r"[A-Za-z_$][\w$]*"
_IDENT_RE = re.compile(rf"^{_IDENT}$")

_FUNCTION_DEF = re.compile(rf"\bfunction\b\s*\*?\s*({_IDENT})\s*\(")
_BOUND_DEF = re.compile(
    rf"\b(?:const|let|var)\s+({_IDENT})\s*=\s*(?:async\s*)?"
    rf"(?:function\b|\([^()]*\)\s*=>|{_IDENT}\s*=>)"
)
_PROPERTY_DEF = re.compile(
    rf"^[ \t]*({_IDENT})[ \t]*:[ \t]*(?:async\s*)?"
    rf"(?:function\b|\([^()]*\)\s*=>|{_IDENT}\s*=>)",
    re.M,
)
_METHOD_DEF = re.compile(
    rf"^[ \t]*(?:(?:async|static)[ \t]+)*({_IDENT})[ \t]*\([^()]*\)[ \t]*\{{",
    re.M,
)

_CALL = re.compile(rf"(?<![\w$])({_IDENT})\s*\(")
_INCLUDE = re.compile(r"(?<![\w$.])include\s*\(\s*(['\"`])([^'\"`]+)\1\s*\)")
_TEMPLATE_LOAD = re.compile(
    r"\bHtmlService\s*\.\s*(?:createTemplateFromFile|createHtmlOutputFromFile)\s*\(\s*(['\"`])([^'\"`]+)\1"
)
_TRIGGER = re.compile(rf"ScriptApp\s*\.\s*newTrigger\s*\(\s*(['\"`])({_IDENT})\1")
_DYNAMIC = re.compile(rf"\beval\s*\(\s*(['\"`])\s*({_IDENT})\s*\(")
_BRACKET_MEMBER = re.compile(rf"\[\s*(['\"`])({_IDENT})\1\s*\]")
_WORD = re.compile(_IDENT)

_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>(.*?)</script\s*>", re.I | re.S)
_SCRIPTLET = re.compile(r"<\?(?:!?=)?(.*?)\?>", re.S)
_HANDLER_ATTR = re.compile(r"\son[a-z]+\s*=\s*([\"'])(.*?)\1", re.I | re.S)
_HTML_COMMENT = re.compile(r"<!--.*?-->", re.S)


def classify_kind(path: Path) -> Optional[UnitKind]:
    ext = path.suffix.lower()
    if ext in config.BACKEND_EXTENSIONS:
        return UnitKind.BACKEND
    if ext in config.FRONTEND_EXTENSIONS:
        return UnitKind.FRONTEND
    if ext in config.CONFIG_EXTENSIONS:
        return UnitKind.CONFIG
    return None


def is_valid_name(name: str, builtins: Optional[Set[str]] = None) -> bool:
    """Identifier-shaped, not reserved, longer than one character, not a builtin."""
    if len(name) <= 1 or not _IDENT_RE.match(name) or name in RESERVED_WORDS:
        return False
    return name not in (BUILTIN_NAMES if builtins is None else builtins)


def collect_units(root: Path, skip_dirs: Optional[Iterable[str]] = None) -> List[SourceUnit]:
    """Walk *root* and read every recognised source file, sorted by path."""
    skip = set(skip_dirs) if skip_dirs is not None else SKIP_DIRS
    units: List[SourceUnit] = []
    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        rel = file_path.relative_to(root)
        if any(part in skip for part in rel.parts[:-1]):
            continue
        kind = classify_kind(file_path)
        if kind is None:
            continue
        try:
            text = file_path.read_text(encoding="utf-8", errors="replace")
            size = file_path.stat().st_size
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", rel, exc)
            continue
        units.append(SourceUnit(path=rel.as_posix(), kind=kind, text=text, size=size))
    logger.info("Collected %d source units under %s", len(units), root)
    return units


def html_code_view(text: str) -> str:
    """Blank all markup except script bodies, scriptlets and inline handlers.

    Offsets are preserved so line numbers still point into the template.
    """
    out = [c if c in "\r\n" else " " for c in text]
    comments = [m.span() for m in _HTML_COMMENT.finditer(text)]

    def _in_comment(pos: int) -> bool:
        return any(start <= pos < end for start, end in comments)

    def _copy(start: int, end: int) -> None:
        out[start:end] = text[start:end]

    for m in _SCRIPT_BLOCK.finditer(text):
        if not _in_comment(m.start()):
            _copy(*m.span(1))
    for m in _SCRIPTLET.finditer(text):
        if not _in_comment(m.start()):
            _copy(*m.span(1))
    for m in _HANDLER_ATTR.finditer(text):
        if not _in_comment(m.start()):
            _copy(*m.span(2))
    return "".join(out)


def _expression_end(masked: str, pos: int) -> int:
    """End of an expression-bodied arrow function starting at *pos*."""
    depth = 0
    n = len(masked)
    j = pos
    while j < n:
        c = masked[j]
        if c in "([{":
            depth += 1
        elif c in ")]}":
            if depth == 0:
                return j
            depth -= 1
        elif depth == 0 and c == ";":
            return j + 1
        elif depth == 0 and c in ",\n":
            return j
        j += 1
    return n


def locate_body(masked: str, pos: int) -> Tuple[Optional[int], Optional[int]]:
    """Find the body following a definition introducer that ends before *pos*.

    Skips the parameter list, then returns ``(open_brace, end)`` for a block
    body or ``(None, end)`` for an expression-bodied arrow. ``end`` is None
    when a block body never closes.
    """
    n = len(masked)
    depth = 0
    j = pos
    while j < n:
        c = masked[j]
        if c in "([":
            depth += 1
        elif c in ")]":
            depth -= 1
        elif depth == 0 and c == "=" and masked.startswith("=>", j):
            k = j + 2
            while k < n and masked[k] in " \t\r\n":
                k += 1
            if k < n and masked[k] == "{":
                return k, find_block_end(masked, k)
            return None, _expression_end(masked, k)
        elif depth == 0 and c == "{":
            return j, find_block_end(masked, j)
        elif depth == 0 and c == ";":
            return None, j + 1
        j += 1
    return None, None


class Extractor(ABC):
    """Turns one source unit into definitions and reference occurrences."""

    @abstractmethod
    def extract(self, unit: SourceUnit) -> Extraction:
        ...


class LexicalExtractor(Extractor):
    """Pattern-based extractor; pure function of the unit text."""

    def __init__(
        self,
        bridge_objects: Optional[Sequence[str]] = None,
        bridge_modifiers: Optional[Sequence[str]] = None,
        extra_builtins: Optional[Iterable[str]] = None,
    ) -> None:
        self.bridge_objects = list(bridge_objects or config.DEFAULT_BRIDGE_OBJECTS)
        self.bridge_modifiers = set(bridge_modifiers or config.DEFAULT_BRIDGE_MODIFIERS)
        self.builtins = BUILTIN_NAMES | set(extra_builtins or ())
        self._bridge_res = [
            re.compile(r"(?<![\w$.])" + r"\s*\.\s*".join(re.escape(p) for p in obj.split(".")))
            for obj in self.bridge_objects
        ]

    def extract(self, unit: SourceUnit) -> Extraction:
        try:
            return self._extract(unit)
        except Exception as exc:
            logger.warning("Extraction failed for %s: %s", unit.path, exc)
            return Extraction(unit_path=unit.path, failed=True)

    # ------------------------------------------------------------------
    # Extraction phases
    # ------------------------------------------------------------------

    def _extract(self, unit: SourceUnit) -> Extraction:
        result = Extraction(unit_path=unit.path)
        if unit.kind == UnitKind.CONFIG:
            return result

        code = html_code_view(unit.text) if unit.kind == UnitKind.FRONTEND else unit.text
        masked = mask_source(code)
        literal = mask_source(code, strings=False)

        definitions, name_offsets = self._definitions(unit.path, code, masked)
        result.definitions = definitions

        def _ref(name: str, kind: ReferenceKind, offset: int) -> Reference:
            return Reference(
                name=name,
                kind=kind,
                line=line_of(code, offset),
                enclosing=_enclosing(definitions, offset),
            )

        for m in _CALL.finditer(masked):
            name = m.group(1)
            if m.start(1) in name_offsets or not is_valid_name(name, self.builtins):
                continue
            kind = ReferenceKind.MEMBER_CALL if _is_member(masked, m.start(1)) else ReferenceKind.CALL
            result.references.append(_ref(name, kind, m.start(1)))

        for name, kind, offset in self._bridge_calls(masked, literal):
            if is_valid_name(name, self.builtins):
                result.references.append(_ref(name, kind, offset))

        for m in _DYNAMIC.finditer(literal):
            if is_valid_name(m.group(2), self.builtins):
                result.references.append(_ref(m.group(2), ReferenceKind.DYNAMIC, m.start(2)))

        result.includes = [
            m.group(2).strip()
            for pattern in (_INCLUDE, _TEMPLATE_LOAD)
            for m in pattern.finditer(literal)
        ]
        result.trigger_names = sorted({m.group(2) for m in _TRIGGER.finditer(literal)})
        result.string_words = _string_words(masked, literal)
        logger.debug(
            "%s: %d definitions, %d references, %d includes",
            unit.path, len(result.definitions), len(result.references), len(result.includes),
        )
        return result

    def _definitions(
        self,
        unit_path: str,
        code: str,
        masked: str,
    ) -> Tuple[List[SymbolDefinition], Set[int]]:
        found: Dict[int, Tuple[str, SymbolKind, int]] = {}
        rules = (
            (_FUNCTION_DEF, SymbolKind.FUNCTION),
            (_BOUND_DEF, SymbolKind.BOUND_CALLABLE),
            (_PROPERTY_DEF, SymbolKind.METHOD),
            (_METHOD_DEF, SymbolKind.METHOD),
        )
        for pattern, kind in rules:
            for m in pattern.finditer(masked):
                name = m.group(1)
                if not is_valid_name(name, set()):
                    continue
                # first rule to claim a name position wins
                found.setdefault(m.start(1), (name, kind, m.start()))

        definitions: List[SymbolDefinition] = []
        for name_offset in sorted(found):
            name, kind, start = found[name_offset]
            _, end = locate_body(masked, name_offset + len(name))
            if end is None:
                end = len(masked)
            definitions.append(SymbolDefinition(
                unit_path=unit_path,
                name=name,
                kind=kind,
                start_line=line_of(code, name_offset),
                end_line=line_of(code, max(end - 1, name_offset)),
                start_offset=start,
                end_offset=end,
            ))
        return definitions, set(found)

    def _bridge_calls(self, masked: str, literal: str) -> List[Tuple[str, ReferenceKind, int]]:
        """Walk ``bridge.modifier(h).name(`` chains and return referenced names."""
        found: List[Tuple[str, ReferenceKind, int]] = []
        n = len(masked)
        for pattern in self._bridge_res:
            for m in pattern.finditer(masked):
                pos = m.end()
                while True:
                    while pos < n and masked[pos] in " \t\r\n":
                        pos += 1
                    if pos < n and masked[pos] == "[":
                        bm = _BRACKET_MEMBER.match(literal, pos)
                        if bm:
                            found.append((bm.group(2), ReferenceKind.BRIDGE, bm.start(2)))
                        break
                    if pos >= n or masked[pos] != ".":
                        break
                    nm = _WORD.match(masked, _skip_ws(masked, pos + 1))
                    if not nm:
                        break
                    paren = _skip_ws(masked, nm.end())
                    if paren >= n or masked[paren] != "(":
                        break
                    close = find_matching_paren(masked, paren)
                    if close is None:
                        break
                    if nm.group(0) in self.bridge_modifiers:
                        arg = masked[paren + 1:close - 1].strip()
                        if _IDENT_RE.match(arg):
                            found.append((arg, ReferenceKind.HANDLER, paren + 1))
                        pos = close
                        continue
                    found.append((nm.group(0), ReferenceKind.BRIDGE, nm.start()))
                    break
        return found


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in " \t\r\n":
        pos += 1
    return pos


def _is_member(masked: str, offset: int) -> bool:
    k = offset - 1
    while k >= 0 and masked[k] in " \t\r\n":
        k -= 1
    return k >= 0 and masked[k] == "."


def _enclosing(definitions: List[SymbolDefinition], offset: int) -> Optional[str]:
    best: Optional[SymbolDefinition] = None
    for d in definitions:
        if d.contains(offset) and (best is None or d.start_offset >= best.start_offset):
            best = d
    return best.name if best else None


def _string_words(masked: str, literal: str) -> List[str]:
    """Identifier-shaped words that only exist inside literals."""
    chars = [
        lit if (m == " " and lit != " ") else " "
        for m, lit in zip(masked, literal)
    ]
    return sorted({w for w in _WORD.findall("".join(chars)) if len(w) > 1})
