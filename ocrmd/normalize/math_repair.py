from __future__ import annotations

import re
from typing import Callable, Iterable

# Display math may span lines; inline math stays on one line, skips escaped
# dollars, and a closing `$` directly followed by a digit is not a delimiter
# (keeps "costs $5 and $10" out of math mode).
MATH_SPAN_RE = re.compile(
    r"(?P<display>\$\$(?P<dbody>[\s\S]+?)\$\$)"
    r"|(?P<inline>(?<![\\$])\$(?!\$)(?P<ibody>(?:\\.|[^$\\\n])+?)\$(?![\d$]))"
)

_FENCE_RE = re.compile(r"^\s*```")

_DOUBLED_CMDS = r"(?:mathbf|mathrm|mathit|textbf|textrm|textit|text|times|cdot)(?![A-Za-z])"
_BODY_CMD_RE = re.compile(
    r"(\\(?:mathbf|mathrm|mathit|textbf|textit|textrm|text|boldsymbol|vec|underline))\{([^{}]*)\}"
)

_SUPERSCRIPT_DIGITS = {
    "⁰": "0", "¹": "1", "²": "2", "³": "3", "⁴": "4",
    "⁵": "5", "⁶": "6", "⁷": "7", "⁸": "8", "⁹": "9",
    "⁺": "+", "⁻": "-",
}
_SUPERSCRIPT_RUN_RE = re.compile("[" + "".join(_SUPERSCRIPT_DIGITS) + "]+")
_WORD_SUPERSCRIPT_RE = re.compile(
    r"(?<![A-Za-z0-9\\{])([A-Za-z][A-Za-z0-9]*)([" + "".join(_SUPERSCRIPT_DIGITS) + r"]+)"
)

# Capitals that look like Latin letters have no KaTeX command; map them to the letter.
_GREEK_MAP: dict[str, str] = {
    "α": r"\alpha", "β": r"\beta", "γ": r"\gamma", "δ": r"\delta", "ε": r"\epsilon",
    "ζ": r"\zeta", "η": r"\eta", "θ": r"\theta", "ι": r"\iota", "κ": r"\kappa",
    "λ": r"\lambda", "μ": r"\mu", "ν": r"\nu", "ξ": r"\xi", "ο": "o", "π": r"\pi",
    "ρ": r"\rho", "σ": r"\sigma", "ς": r"\varsigma", "τ": r"\tau", "υ": r"\upsilon",
    "φ": r"\phi", "χ": r"\chi", "ψ": r"\psi", "ω": r"\omega",
    "Α": "A", "Β": "B", "Γ": r"\Gamma", "Δ": r"\Delta", "Ε": "E", "Ζ": "Z", "Η": "H",
    "Θ": r"\Theta", "Ι": "I", "Κ": "K", "Λ": r"\Lambda", "Μ": "M", "Ν": "N",
    "Ξ": r"\Xi", "Ο": "O", "Π": r"\Pi", "Ρ": "P", "Σ": r"\Sigma", "Τ": "T",
    "Υ": r"\Upsilon", "Φ": r"\Phi", "Χ": "X", "Ψ": r"\Psi", "Ω": r"\Omega",
}

Rule = Callable[[str], str]


def _apply_rules(s: str, rules: Iterable[Rule]) -> str:
    # A rule that blows up on odd input keeps the previous text.
    for rule in rules:
        try:
            s = rule(s)
        except Exception:
            continue
    return s


# --- pass 1: LaTeX backslash repair -------------------------------------------------


def _collapse_percent_escapes(s: str) -> str:
    s = re.sub(r"\\[ \t]+%", r"\\%", s)
    return re.sub(r"(?<!\\)\\{2,}%", r"\\%", s)


def _collapse_bracket_escapes(s: str) -> str:
    return re.sub(r"(?<!\\)\\{2,}([()\[\]{}])", r"\\\1", s)


def _collapse_command_escapes(s: str) -> str:
    return re.sub(r"(?<!\\)\\{2,}(?=" + _DOUBLED_CMDS + ")", lambda _m: "\\", s)


def _close_numeric_spacing(s: str) -> str:
    s = re.sub(r"(?<=\d)[ \t]+(?=\d)", "", s)
    s = re.sub(r"(?<=\d)[ \t]*\.[ \t]*(?=\d)", ".", s)
    s = re.sub(r"(?<=\d)[ \t]+(?=\\?%)", "", s)
    return s


def _close_command_body_spacing(s: str) -> str:
    def _body(m: re.Match) -> str:
        inner = m.group(2) or ""
        inner = _close_numeric_spacing(inner)
        inner = re.sub(r"(?<=\d)[ \t]+\.", ".", inner)
        inner = re.sub(r"\.[ \t]+(?=\d)", ".", inner)
        return f"{m.group(1)}{{{inner}}}"

    return _BODY_CMD_RE.sub(_body, s)


BACKSLASH_RULES: tuple[Rule, ...] = (
    _collapse_percent_escapes,
    _collapse_bracket_escapes,
    _collapse_command_escapes,
    _close_numeric_spacing,
    _close_command_body_spacing,
)


def fix_latex_backslashes(body: str) -> str:
    """Backslash/digit-spacing repair of one math body (no delimiters)."""
    if not body:
        return body or ""
    return _apply_rules(body, BACKSLASH_RULES)


# --- pass 2: spacing / unicode normalization ------------------------------------------


def _superscripts_to_latex(s: str) -> str:
    return _SUPERSCRIPT_RUN_RE.sub(
        lambda m: "^{" + "".join(_SUPERSCRIPT_DIGITS[ch] for ch in m.group(0)) + "}", s
    )


def _greek_to_latex(s: str) -> str:
    for ch, cmd in _GREEK_MAP.items():
        if ch not in s:
            continue
        if cmd.startswith("\\"):
            # A command followed by letters needs a separating space.
            s = re.sub(re.escape(ch) + r"(?=[A-Za-z])", lambda _m, c=cmd: c + " ", s)
        s = s.replace(ch, cmd)
    return s


def _brace_single_scripts(s: str) -> str:
    return re.sub(r"(?<!\\)([_^])([A-Za-z0-9])(?=\s|$)", r"\1{\2}", s)


def _strip_brace_padding(s: str) -> str:
    s = re.sub(r"(?<!\\)\{[ \t]+\}", "{}", s)
    s = re.sub(r"(?<!\\)\{[ \t]+", "{", s)
    s = re.sub(r"(?<![\\ \t])[ \t]+\}", "}", s)
    s = re.sub(r"(?<!\\)\}[ \t]+\{", "}{", s)
    return s


def _collapse_times_spacing(s: str) -> str:
    s = re.sub(r"(?<![ \t])[ \t]*\\times(?![A-Za-z])[ \t]+(?=[A-Za-z])", lambda _m: "\\times ", s)
    s = re.sub(r"(?<![ \t])[ \t]*\\times(?![A-Za-z])[ \t]*(?![A-Za-z])", lambda _m: "\\times", s)
    return s


def _collapse_operator_spacing(s: str) -> str:
    s = re.sub(r"(?<=\d)[ \t]*([+\-×*/÷=<>])[ \t]*(?=\d)", r"\1", s)
    return re.sub(r"(?<=\d)[ \t]+%", "%", s)


SPACING_RULES: tuple[Rule, ...] = (
    _superscripts_to_latex,
    _greek_to_latex,
    _brace_single_scripts,
    _strip_brace_padding,
    _collapse_times_spacing,
    _collapse_operator_spacing,
)


def normalize_math_spacing(body: str) -> str:
    if not body:
        return body or ""
    return _apply_rules(body, SPACING_RULES)


def repair_span_body(body: str) -> str:
    return normalize_math_spacing(fix_latex_backslashes(body))


# --- text level ----------------------------------------------------------------------


def map_outside_fences(text: str, fn: Callable[[str], str]) -> str:
    if "```" not in text:
        return fn(text)
    out: list[str] = []
    buf: list[str] = []
    in_fence = False
    for ln in text.split("\n"):
        if _FENCE_RE.match(ln):
            if not in_fence and buf:
                out.append(fn("\n".join(buf)))
                buf = []
            if in_fence:
                buf.append(ln)
                out.append("\n".join(buf))
                buf = []
            else:
                buf.append(ln)
            in_fence = not in_fence
            continue
        buf.append(ln)
    if buf:
        out.append("\n".join(buf) if in_fence else fn("\n".join(buf)))
    return "\n".join(out)


def _map_math_bodies(text: str, fn: Callable[[str], str], *, only_if: Callable[[str], bool] | None = None) -> str:
    def _repl(m: re.Match) -> str:
        if m.group("display"):
            body, delim = m.group("dbody"), "$$"
        else:
            body, delim = m.group("ibody"), "$"
        if only_if is not None and not only_if(body):
            return m.group(0)
        try:
            fixed = fn(body)
        except Exception:
            return m.group(0)
        if not fixed.strip():
            return m.group(0)
        return f"{delim}{fixed}{delim}"

    return MATH_SPAN_RE.sub(_repl, text)


def map_outside_math(text: str, fn: Callable[[str], str]) -> str:
    out: list[str] = []
    pos = 0
    for m in MATH_SPAN_RE.finditer(text):
        out.append(fn(text[pos : m.start()]))
        out.append(m.group(0))
        pos = m.end()
    out.append(fn(text[pos:]))
    return "".join(out)


def _word_superscripts(seg: str) -> str:
    return _WORD_SUPERSCRIPT_RE.sub(
        lambda m: "$\\text{"
        + m.group(1)
        + "}^{"
        + "".join(_SUPERSCRIPT_DIGITS[ch] for ch in m.group(2))
        + "}$",
        seg,
    )


def fix_text_superscripts(text: str) -> str:
    """
    Superscripts written outside math:
      Word${}^{2}$ -> $\\text{Word}^{2}$
      Word²        -> $\\text{Word}^{2}$
      $ {}^{a} $   -> ${}^{a}$
    """
    if not text:
        return text or ""
    text = re.sub(r"\$[ \t]*\{[ \t]*\}\^\{([^{}$]+)\}[ \t]*\$", r"${}^{\1}$", text)
    # `${}^{2}$` is itself a math span, so this one runs on the whole text.
    text = re.sub(
        r"(?<![A-Za-z0-9\\{$])([A-Za-z][A-Za-z0-9]*)\$\{\}\^\{([^{}$]+)\}\$",
        lambda m: "$\\text{" + m.group(1) + "}^{" + m.group(2).strip() + "}$",
        text,
    )
    return map_outside_math(text, _word_superscripts)


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def _pad_before(seg: str) -> str:
    stripped = seg.rstrip(" \t")
    if not stripped or stripped.endswith("\n"):
        return seg
    if len(stripped) != len(seg) or _is_word_char(stripped[-1]):
        return stripped + " "
    return seg


def _pad_after(seg: str) -> str:
    stripped = seg.lstrip(" \t")
    if not stripped or stripped.startswith("\n"):
        return seg
    if len(stripped) != len(seg) or _is_word_char(stripped[0]):
        return " " + stripped
    return seg


def fix_inline_delimiter_spacing(text: str) -> str:
    """
    `$ x $` -> `$x$`, and exactly one space between an inline span and the
    word it touches: `area$x$m` -> `area $x$ m`. Line indentation and
    trailing whitespace are left alone.
    """
    if not text or "$" not in text:
        return text or ""
    pieces: list[str] = []
    kinds: list[bool] = []
    pos = 0
    for m in MATH_SPAN_RE.finditer(text):
        pieces.append(text[pos : m.start()])
        kinds.append(False)
        if m.group("inline"):
            body = m.group("ibody").strip()
            pieces.append(f"${body}$" if body else m.group(0))
            kinds.append(True)
        else:
            pieces.append(m.group(0))
            kinds.append(False)
        pos = m.end()
    pieces.append(text[pos:])
    kinds.append(False)

    for i, is_inline in enumerate(kinds):
        if not is_inline:
            continue
        if i > 0 and not kinds[i - 1] and (i - 1) % 2 == 0:
            pieces[i - 1] = _pad_before(pieces[i - 1])
        if i + 1 < len(pieces) and (i + 1) % 2 == 0:
            pieces[i + 1] = _pad_after(pieces[i + 1])
    return "".join(pieces)


def _repair_math_text(text: str) -> str:
    text = fix_text_superscripts(text)
    text = _map_math_bodies(text, repair_span_body)
    return fix_inline_delimiter_spacing(text)


def repair_math_spans(text: str) -> str:
    """
    Repair every `$...$` / `$$...$$` span of a markdown text (fenced code is
    left alone). Never raises; on failure the input comes back unchanged.
    """
    if not text or ("$" not in text and not _SUPERSCRIPT_RUN_RE.search(text)):
        return text or ""
    try:
        return map_outside_fences(text, _repair_math_text)
    except Exception:
        return text


def repair_double_backslash_spans(text: str) -> str:
    """Backslash repair limited to math spans that contain a doubled backslash."""
    if not text or "\\\\" not in text or "$" not in text:
        return text or ""
    try:
        return map_outside_fences(
            text,
            lambda seg: _map_math_bodies(seg, fix_latex_backslashes, only_if=lambda b: "\\\\" in b),
        )
    except Exception:
        return text
