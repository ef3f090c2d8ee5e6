from __future__ import annotations

import re
from typing import Callable, Optional

from .math_repair import map_outside_fences
from .tables import is_table_line, render_row, split_cells

CHUNK_THRESHOLD = 10_000
MAX_CHUNK_CHARS = 1_000

_NUM = r"\d+(?:\.\d+)?"

# "6.84\n±\n0.07\n6.84±0.07" -> "6.84±0.07"
_SPLIT_PM_DUP_RE = re.compile(
    rf"(?<![\d.])({_NUM})[ \t]*\n[ \t]*±[ \t]*\n[ \t]*({_NUM})[ \t]*\n[ \t]*\1[ \t]*±[ \t]*\2(?![\d.])"
)
# "6.84\n±\n0.07" -> "6.84±0.07"
_SPLIT_PM_RE = re.compile(rf"(?<![\d.])({_NUM})[ \t]*\n[ \t]*±[ \t]*\n[ \t]*({_NUM})(?![\d.])")
# "44.4\n%\n44.4%" -> "44.4%"
_SPLIT_PCT_DUP_RE = re.compile(rf"(?<![\d.])({_NUM})[ \t]*\n[ \t]*%[ \t]*\n[ \t]*\1[ \t]*%")

_SPACED_PM_RE = re.compile(rf"(?<![\d.])({_NUM})[ \t]+±[ \t]+({_NUM})(?![\d.])")
_REPEATED_PM_RE = re.compile(rf"(?<![\d.])({_NUM}±{_NUM})(?:[ \t]+\1)+(?![\d.])")
_REPEATED_PCT_RE = re.compile(rf"(?<![\d.])({_NUM})[ \t]*%[ \t]*\1[ \t]*%")
_REPEATED_WORD_PCT_RE = re.compile(rf"\b([A-Za-z]+[ \t]+{_NUM}%)(?:[ \t]+\1)+")
_LOOSE_PM_DUP_RE = re.compile(rf"(?<![\d.])({_NUM})[ \t]*±[ \t]*({_NUM})[ \t]+\1[ \t]*±[ \t]*\2(?![\d.])")
_CREDIT_RE = re.compile(r"(?<!\S)((?:[A-Z][\w'.-]*[ \t]+){1,3}\d+(?:,\d+)*[†‡§¶*])(?:[ \t]+\1)+")
_CAPTION_RE = re.compile(r"^(\s*(?:Table|Figure|Fig\.)\s+\d+[:.].+?)(?:\s+\1)+\s*$")

# Table cells
_CELL_PCT_RE = re.compile(rf"(?<![\d.])({_NUM}%)(?:\s*\1)+")
_CELL_PM_RE = re.compile(rf"(?<![\d.])({_NUM}±{_NUM})(?:\s*\1)+(?![\d.])")
_CELL_NUM_RE = re.compile(rf"^({_NUM})(?:\s+\1)+$")
_CELL_TEXT_RE = re.compile(r"^([A-Za-z][A-Za-z ]{0,18}[A-Za-z])(?:\s+\1)+$")


def fix_split_numbers(text: str) -> str:
    """Rejoin values the OCR split over lines (`V\\n±\\nE`, `V\\n%\\nV%`)."""
    if not text or "\n" not in text:
        return text or ""
    if "±" in text:
        text = _SPLIT_PM_DUP_RE.sub(r"\1±\2", text)
        text = _SPLIT_PM_RE.sub(r"\1±\2", text)
    if "%" in text:
        text = _SPLIT_PCT_DUP_RE.sub(r"\1%", text)
    return text


def fix_error_values(text: str) -> str:
    if not text or "±" not in text:
        return text or ""
    text = _SPACED_PM_RE.sub(r"\1±\2", text)
    return _REPEATED_PM_RE.sub(r"\1", text)


def dedupe_line(line: str) -> str:
    if "%" in line:
        line = _REPEATED_PCT_RE.sub(r"\1%", line)
        line = _REPEATED_WORD_PCT_RE.sub(r"\1", line)
    if "±" in line:
        line = _LOOSE_PM_DUP_RE.sub(r"\1±\2", line)
    line = _CREDIT_RE.sub(r"\1", line)
    if "Table" in line or "Fig" in line:
        line = _CAPTION_RE.sub(r"\1", line)
    return line


def dedupe_lines(text: str, skip: Optional[Callable[[str], bool]] = None) -> str:
    """
    Collapse adjacent identical lines and per-line repeats. Lines holding a
    table row, a base64 payload or a protected token are passed through.
    """
    out: list[str] = []
    prev_key: Optional[str] = None
    for ln in text.split("\n"):
        if "|" in ln or "base64" in ln or (skip is not None and skip(ln)):
            out.append(ln)
            prev_key = None
            continue
        ln = dedupe_line(ln)
        key = ln.strip()
        if key and key == prev_key:
            continue
        out.append(ln)
        prev_key = key or None
    return "\n".join(out)


def _dedupe_plain(text: str, skip: Optional[Callable[[str], bool]]) -> str:
    text = fix_split_numbers(text)
    text = fix_error_values(text)
    return dedupe_lines(text, skip)


def dedupe_text(text: str, skip: Optional[Callable[[str], bool]] = None) -> str:
    """
    General-text duplicate removal (fenced code untouched). Inputs over
    CHUNK_THRESHOLD chars are handled per blank-line chunk; only short
    chunks without protected tokens or base64 data are rewritten.

    A pass that shrinks text across CHUNK_THRESHOLD switches modes, so a
    second run over the output is not guaranteed to be a no-op.
    """
    if not text:
        return text or ""
    chunked = len(text) > CHUNK_THRESHOLD

    def _segment(seg: str) -> str:
        if not chunked:
            return _dedupe_plain(seg, skip)
        chunks = seg.split("\n\n")
        for i, chunk in enumerate(chunks):
            if len(chunk) >= MAX_CHUNK_CHARS or "base64" in chunk:
                continue
            if skip is not None and skip(chunk):
                continue
            chunks[i] = _dedupe_plain(chunk, skip)
        return "\n\n".join(chunks)

    return map_outside_fences(text, _segment)


def dedupe_cell(cell: str) -> str:
    if not cell:
        return cell
    if "%" in cell:
        cell = _CELL_PCT_RE.sub(r"\1", cell)
    if "±" in cell:
        cell = _CELL_PM_RE.sub(r"\1", cell)
    cell = _CELL_NUM_RE.sub(r"\1", cell)
    return _CELL_TEXT_RE.sub(r"\1", cell)


def dedupe_table_block(block: str) -> str:
    """Per-cell duplicate removal for one table; row shape is kept."""
    if not block:
        return block or ""
    out: list[str] = []
    for ln in block.split("\n"):
        if not is_table_line(ln):
            out.append(ln)
            continue
        cells = split_cells(ln)
        fixed = [dedupe_cell(c) for c in cells]
        out.append(ln if fixed == cells else render_row(fixed))
    return "\n".join(out)
