from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

TABLE_TOKEN = "TABLE_PLACEHOLDER_"
IMAGE_TOKEN = "IMAGE_PLACEHOLDER_"
IMAGE_ALT_PLACEHOLDER = "__PLACEHOLDER__"

_BASE64_IMAGE_RE = re.compile(r"!\[([^\]\n]*)\]\((data:image/[A-Za-z0-9.+-]+;base64,[^)\s]+)\)")


class SpanKind(str, Enum):
    TEXT = "text"
    TABLE = "table"
    IMAGE = "image"


@dataclass(frozen=True)
class Span:
    kind: SpanKind
    text: str
    alt: str = ""
    payload: str = ""


def _is_table_line(line: str) -> bool:
    st = line.rstrip()
    return len(st) >= 2 and st.startswith("|") and st.endswith("|")


def _split_table_spans(text: str) -> list[Span]:
    """
    Split text into TEXT / TABLE spans. A table is a run of 2+ consecutive
    `|...|` lines. The newline that ends the last table line stays in the
    following TEXT span, so a rendered token always sits on its own line.
    """
    lines = text.split("\n")
    segments: list[tuple[SpanKind, list[str]]] = []
    i = 0
    while i < len(lines):
        j = i
        while j < len(lines) and _is_table_line(lines[j]):
            j += 1
        if j - i >= 2:
            segments.append((SpanKind.TABLE, lines[i:j]))
            i = j
            continue
        if segments and segments[-1][0] is SpanKind.TEXT:
            segments[-1][1].append(lines[i])
        else:
            segments.append((SpanKind.TEXT, [lines[i]]))
        i += 1

    spans: list[Span] = []
    for idx, (kind, seg) in enumerate(segments):
        if idx:
            spans.append(Span(SpanKind.TEXT, "\n"))
        spans.append(Span(kind, "\n".join(seg)))
    return _merge_text_spans(spans)


def _merge_text_spans(spans: list[Span]) -> list[Span]:
    out: list[Span] = []
    for sp in spans:
        if out and sp.kind is SpanKind.TEXT and out[-1].kind is SpanKind.TEXT:
            out[-1] = Span(SpanKind.TEXT, out[-1].text + sp.text)
            continue
        out.append(sp)
    return out


def _split_image_spans(text: str) -> list[Span]:
    spans: list[Span] = []
    pos = 0
    for m in _BASE64_IMAGE_RE.finditer(text):
        if m.start() > pos:
            spans.append(Span(SpanKind.TEXT, text[pos : m.start()]))
        spans.append(Span(SpanKind.IMAGE, m.group(0), alt=m.group(1) or "", payload=m.group(2) or ""))
        pos = m.end()
    if pos < len(text):
        spans.append(Span(SpanKind.TEXT, text[pos:]))
    return spans


def parse_spans(text: str, *, tables: bool = True, images: bool = True) -> list[Span]:
    """
    Parse text into tagged spans. Concatenating `span.text` over the result
    always gives back the input.
    """
    if not text:
        return []
    spans = _split_table_spans(text) if tables else [Span(SpanKind.TEXT, text)]
    if not images:
        return spans
    out: list[Span] = []
    for sp in spans:
        if sp.kind is SpanKind.TEXT and "base64" in sp.text:
            out.extend(_split_image_spans(sp.text))
        else:
            out.append(sp)
    return out


def _pick_marks(text: str) -> tuple[str, str]:
    # Private-use code points never emitted by the repair passes.
    for cp in range(0xE000, 0xF8FF, 2):
        a, b = chr(cp), chr(cp + 1)
        if a not in text and b not in text:
            return a, b
    return "\ufdd0", "\ufdd1"


class PlaceholderVault:
    """
    Holds protected spans for one normalization call.

    Tokens are rendered as `<mark>TABLE_PLACEHOLDER_<n><mark>` with marks that
    do not occur in the source text, so literal placeholder-looking text in a
    document is never restored by mistake.
    """

    def __init__(self, source: str = "") -> None:
        self.open_mark, self.close_mark = _pick_marks(source or "")
        self.tables: dict[str, str] = {}
        self.images: dict[str, tuple[str, str]] = {}
        self._table_n = 0
        self._image_n = 0
        om, cm = re.escape(self.open_mark), re.escape(self.close_mark)
        self._token_re = re.compile(om + r"((?:TABLE|IMAGE)_PLACEHOLDER_\d+)" + cm)
        self._image_tag_re = re.compile(r"!\[[^\]\n]*\]\(" + om + r"(IMAGE_PLACEHOLDER_\d+)" + cm + r"\)")

    def __len__(self) -> int:
        return len(self.tables) + len(self.images)

    def wrap(self, token: str) -> str:
        return f"{self.open_mark}{token}{self.close_mark}"

    def contains_token(self, text: str) -> bool:
        return bool(text) and (self.open_mark in text)

    def protect(self, text: str, *, tables: bool = True, images: bool = True) -> str:
        if not text or not (tables or images):
            return text or ""
        out: list[str] = []
        for sp in parse_spans(text, tables=tables, images=images):
            if sp.kind is SpanKind.TABLE:
                token = f"{TABLE_TOKEN}{self._table_n}"
                self._table_n += 1
                self.tables[token] = sp.text
                out.append(self.wrap(token))
            elif sp.kind is SpanKind.IMAGE:
                token = f"{IMAGE_TOKEN}{self._image_n}"
                self._image_n += 1
                self.images[token] = (sp.alt, sp.payload)
                out.append(f"![{IMAGE_ALT_PLACEHOLDER}]({self.wrap(token)})")
            else:
                out.append(sp.text)
        return "".join(out)

    def restore(self, text: str, *, table_transform: Optional[Callable[[str], str]] = None) -> str:
        if not text or not len(self):
            return text or ""

        def _table_repl(m: re.Match) -> str:
            token = m.group(1)
            body = self.tables.get(token)
            if body is None:
                return m.group(0)
            if table_transform is not None:
                try:
                    body = table_transform(body)
                except Exception:
                    body = self.tables[token]
            return body

        # Tables first: a protected table may itself contain image tokens.
        out = self._token_re.sub(
            lambda m: _table_repl(m) if m.group(1).startswith(TABLE_TOKEN) else m.group(0),
            text,
        )

        def _image_tag_repl(m: re.Match) -> str:
            item = self.images.get(m.group(1))
            if item is None:
                return m.group(0)
            alt, payload = item
            return f"![{alt}]({payload})"

        # The alt text in the working copy may have been rewritten; the
        # original alt text and payload come back from the vault.
        out = self._image_tag_re.sub(_image_tag_repl, out)
        out = self._token_re.sub(
            lambda m: _image_tag_repl(m) if m.group(1) in self.images else m.group(0),
            out,
        )
        return out

    def leaked_tokens(self, text: str) -> list[str]:
        return [m.group(1) for m in self._token_re.finditer(text or "")]


def protect(text: str, *, tables: bool = True, images: bool = True) -> tuple[str, PlaceholderVault]:
    vault = PlaceholderVault(text)
    return vault.protect(text, tables=tables, images=images), vault


def restore(text: str, vault: PlaceholderVault) -> str:
    return vault.restore(text)
