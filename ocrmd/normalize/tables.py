from __future__ import annotations

import re
from typing import Optional

from .math_repair import map_outside_fences, map_outside_math, repair_math_spans

_FENCE_RE = re.compile(r"^\s*```")
_CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")
_SEPARATOR_CELL_RE = re.compile(r"^:?-+:?$")
_FULLWIDTH_BOLD_RE = re.compile(r"∗∗(.+?)∗∗")


def is_table_line(line: str) -> bool:
    st = (line or "").strip()
    return len(st) >= 2 and st.startswith("|") and st.endswith("|") and not st.endswith("\\|")


def split_cells(line: str) -> list[str]:
    """Cells of a `|a|b|` row, trimmed. Escaped `\\|` stays inside its cell."""
    st = (line or "").strip()
    if st.startswith("|"):
        st = st[1:]
    if st.endswith("|") and not st.endswith("\\|"):
        st = st[:-1]
    return [c.strip() for c in _CELL_SPLIT_RE.split(st)]


def column_count(line: str) -> int:
    return max(0, len(_CELL_SPLIT_RE.findall((line or "").strip())) - 1)


def is_header_line(line: str) -> bool:
    return is_table_line(line) and column_count(line) >= 2


def is_separator_line(line: str) -> bool:
    if not is_table_line(line):
        return False
    cells = split_cells(line)
    return bool(cells) and all(_SEPARATOR_CELL_RE.match(c) for c in cells)


def render_row(cells: list[str]) -> str:
    return "| " + " | ".join(cells) + " |"


def _bold_cell(cell: str) -> str:
    if not cell:
        return cell
    if cell.startswith("**") and cell.endswith("**") and len(cell) > 4:
        return cell
    return f"**{cell}**"


def _canonical_separator_cell(cell: str) -> str:
    cell = (cell or "").strip()
    left = cell.startswith(":")
    right = len(cell) > 1 and cell.endswith(":")
    return (":" if left else "") + "---" + (":" if right else "")


def format_header(line: str) -> str:
    return render_row([_bold_cell(c) for c in split_cells(line)])


def format_separator(width: int, existing: Optional[str] = None) -> str:
    cells = [_canonical_separator_cell(c) for c in split_cells(existing)] if existing else []
    cells = cells[:width] + ["---"] * max(0, width - len(cells))
    return render_row(cells)


def _plain_cell_fixes(seg: str) -> str:
    seg = seg.replace("\\_", "_")
    return seg.replace("+/-", "±")


def repair_cell(cell: str) -> str:
    cell = (cell or "").strip()
    if not cell:
        return cell
    cell = _FULLWIDTH_BOLD_RE.sub(r"**\1**", cell)
    cell = map_outside_math(cell, _plain_cell_fixes)
    if "$" in cell:
        cell = repair_math_spans(cell)
    return cell


def format_body_row(line: str) -> str:
    return render_row([repair_cell(c) for c in split_cells(line)])


def _tighten_bold(line: str) -> str:
    # Pair `**` markers left to right so `**a** and **b**` is never read as `** and **`.
    if line.count("**") < 2:
        return line
    parts = line.split("**")
    closed = len(parts) if len(parts) % 2 == 1 else len(parts) - 1
    for i in range(1, closed, 2):
        inner = parts[i].strip()
        if inner:
            parts[i] = inner
    return "**".join(parts)


def _prepass_line(line: str) -> str:
    line = re.sub(r"^(#{1,6})(?=[^#\s])", r"\1 ", line)
    line = _FULLWIDTH_BOLD_RE.sub(r"**\1**", line)
    return _tighten_bold(line)


def fix_heading_and_bold(md: str) -> str:
    """`#Title` -> `# Title`, `∗∗x∗∗` / `** x **` -> `**x**` (fenced code untouched)."""
    if not md:
        return md or ""
    lines = md.split("\n")
    out: list[str] = []
    in_fence = False
    for ln in lines:
        if _FENCE_RE.match(ln):
            in_fence = not in_fence
            out.append(ln)
            continue
        out.append(ln if in_fence else _prepass_line(ln))
    return "\n".join(out)


def fix_tables(md: str) -> str:
    """
    Normalize `|` tables line by line:
      - header cells bold, separator synthesized or canonicalized to the header width
      - body cells trimmed, `\\_` -> `_`, `+/-` -> `±`, math repaired
    The first non-table line ends the table and is kept verbatim.
    """
    if not md or "|" not in md:
        return md or ""
    lines = md.split("\n")
    out: list[str] = []
    in_fence = False
    in_table = False
    i = 0
    while i < len(lines):
        ln = lines[i]
        if _FENCE_RE.match(ln):
            in_fence = not in_fence
            in_table = False
            out.append(ln)
            i += 1
            continue
        if in_fence:
            out.append(ln)
            i += 1
            continue

        if in_table:
            if is_table_line(ln):
                out.append(ln.strip() if is_separator_line(ln) else format_body_row(ln))
                i += 1
                continue
            in_table = False
            out.append(ln)
            i += 1
            continue

        if is_header_line(ln) and not is_separator_line(ln):
            width = column_count(ln)
            out.append(format_header(ln))
            in_table = True
            i += 1
            if i < len(lines):
                nxt = lines[i]
                if is_separator_line(nxt):
                    out.append(format_separator(width, nxt))
                    i += 1
                else:
                    out.append(format_separator(width))
            continue

        out.append(ln)
        i += 1
    return "\n".join(out)


def _postpass_text(seg: str) -> str:
    return map_outside_math(seg, _plain_cell_fixes)


def fix_escapes(md: str) -> str:
    """Document-wide `\\_` -> `_` and `+/-` -> `±` outside fences and math."""
    if not md or ("\\_" not in md and "+/-" not in md):
        return md or ""
    return map_outside_fences(md, _postpass_text)


def repair_tables(md: str) -> str:
    md = fix_heading_and_bold(md)
    md = fix_tables(md)
    return fix_escapes(md)
