"""Comment- and string-aware masking for JavaScript-like source text.

Every consumer that counts delimiters or matches names works on a *masked*
view of the source: comments and the contents of string, template and regex
literals are replaced by spaces while newlines are kept, so offsets and line
numbers in the masked view are identical to the original text.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

_REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%<>~^")
_REGEX_KEYWORDS = {
    "return", "typeof", "case", "do", "else", "in", "of", "void",
    "throw", "delete", "new", "instanceof", "yield", "await",
}


def _blank(out: List[str], start: int, end: int) -> None:
    for k in range(max(start, 0), min(end, len(out))):
        if out[k] not in "\r\n":
            out[k] = " "


def _skip_quoted(text: str, start: int) -> Tuple[int, bool]:
    """Return (index after the literal, closed?) for a '...' or "..." literal."""
    quote = text[start]
    j = start + 1
    n = len(text)
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == quote:
            return j + 1, True
        if c == "\n":
            return j, False
        j += 1
    return n, False


def _scan_template(
    text: str,
    pos: int,
    out: List[str],
    strings: bool,
    templates: List[int],
) -> int:
    """Scan template-literal text from *pos* until it closes or opens ``${``."""
    n = len(text)
    j = pos
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == "`":
            if strings:
                _blank(out, pos, j)
            return j + 1
        if c == "$" and j + 1 < n and text[j + 1] == "{":
            if strings:
                _blank(out, pos, j + 2)
            templates.append(0)
            return j + 2
        j += 1
    if strings:
        _blank(out, pos, n)
    return n


def _regex_allowed(out: List[str], index: int) -> bool:
    k = index - 1
    while k >= 0 and out[k] in " \t\r\n":
        k -= 1
    if k < 0:
        return True
    c = out[k]
    if c in _REGEX_PRECEDERS:
        return True
    if c.isalnum() or c in "_$":
        end = k + 1
        while k >= 0 and (out[k].isalnum() or out[k] in "_$"):
            k -= 1
        return "".join(out[k + 1:end]) in _REGEX_KEYWORDS
    return False


def _skip_regex(text: str, start: int) -> Optional[int]:
    """Return the index of the closing ``/`` of a regex literal, or None."""
    n = len(text)
    j = start + 1
    in_class = False
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == "\n":
            return None
        if in_class:
            if c == "]":
                in_class = False
        elif c == "[":
            in_class = True
        elif c == "/":
            return j
        j += 1
    return None


def mask_source(text: str, strings: bool = True, comments: bool = True) -> str:
    """Return *text* with comments and literal contents blanked.

    With ``strings=False`` literal contents are kept (only comments are
    removed), which is the view used for directives that carry their target
    inside a string such as ``include("Page")``.
    """
    out = list(text)
    n = len(text)
    templates: List[int] = []
    i = 0
    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            end = text.find("\n", i)
            end = n if end == -1 else end
            if comments:
                _blank(out, i, end)
            i = end
            continue
        if ch == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            if comments:
                _blank(out, i, end)
            i = end
            continue
        if ch in "'\"":
            end, closed = _skip_quoted(text, i)
            if strings:
                _blank(out, i + 1, end - 1 if closed else end)
            i = end
            continue
        if ch == "`":
            i = _scan_template(text, i + 1, out, strings, templates)
            continue
        if ch == "/" and _regex_allowed(out, i):
            close = _skip_regex(text, i)
            if close is not None:
                if strings:
                    _blank(out, i + 1, close)
                i = close + 1
                continue
        if templates:
            if ch == "{":
                templates[-1] += 1
            elif ch == "}":
                if templates[-1] == 0:
                    templates.pop()
                    if strings:
                        out[i] = " "
                    i = _scan_template(text, i + 1, out, strings, templates)
                    continue
                templates[-1] -= 1
        i += 1
    return "".join(out)


def find_block_end(masked: str, open_index: int) -> Optional[int]:
    """Return the index just past the ``}`` closing the ``{`` at *open_index*.

    *masked* must come from :func:`mask_source`. Returns None when the block
    never closes.
    """
    return _find_close(masked, open_index, "{", "}")


def find_matching_paren(masked: str, open_index: int) -> Optional[int]:
    return _find_close(masked, open_index, "(", ")")


def _find_close(masked: str, open_index: int, opener: str, closer: str) -> Optional[int]:
    if open_index >= len(masked) or masked[open_index] != opener:
        return None
    depth = 0
    for j in range(open_index, len(masked)):
        c = masked[j]
        if c == opener:
            depth += 1
        elif c == closer:
            depth -= 1
            if depth == 0:
                return j + 1
    return None


def delimiter_balance(masked: str) -> dict:
    """Net open count per delimiter pair; all zeros means balanced."""
    return {
        "{}": masked.count("{") - masked.count("}"),
        "()": masked.count("(") - masked.count(")"),
        "[]": masked.count("[") - masked.count("]"),
    }


def line_of(text: str, offset: int) -> int:
    """1-based line number of *offset* in *text*."""
    return text.count("\n", 0, offset) + 1
