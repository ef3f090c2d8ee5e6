from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from .dedup import dedupe_table_block, dedupe_text
from .math_repair import repair_double_backslash_spans, repair_math_spans
from .tables import repair_tables
from .vault import PlaceholderVault

if TYPE_CHECKING:
    from ocrmd.config import Settings
    from ocrmd.ocr.models import OcrDocument

DEFAULT_SIZE_LIMIT = 100_000
DEFAULT_TIME_BUDGET_S = 1.0
MATH_MAX_CHARS = 50_000


@dataclass
class PipelineState:
    """
    Per-document normalization state.

    `degraded` only ever goes False -> True. Once set, later calls with the
    same state hand their input back untouched. The time budget applies to a
    single `normalize_markdown` call; `started_at` is reset on each call.
    """

    size_limit: int = DEFAULT_SIZE_LIMIT
    time_budget_s: float = DEFAULT_TIME_BUDGET_S
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    degraded: bool = False
    reason: Optional[str] = None
    started_at: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PipelineState":
        return cls(size_limit=settings.normalize_max_chars, time_budget_s=settings.normalize_budget_s)

    def start(self) -> None:
        self.started_at = self.clock()

    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, self.clock() - self.started_at)

    def over_budget(self) -> bool:
        return self.elapsed() > self.time_budget_s

    def degrade(self, reason: str) -> None:
        if self.degraded:
            return
        self.degraded = True
        self.reason = reason
        print(f"[normalize] repair passes disabled: {reason}", flush=True)


def _math_pass(text: str) -> str:
    if len(text) > MATH_MAX_CHARS:
        return text
    text = repair_double_backslash_spans(text)
    return repair_math_spans(text)


def _run_pass(state: PipelineState, stage: str, fn: Callable[[str], str], work: str) -> str:
    if state.degraded:
        return work
    if state.over_budget():
        state.degrade(f"time budget of {state.time_budget_s:.2f}s exceeded before {stage} ({state.elapsed():.2f}s)")
        return work
    try:
        return fn(work)
    except Exception as e:
        state.degrade(f"{stage} failed: {e}")
        return work


def normalize_markdown(text: str, state: Optional[PipelineState] = None) -> str:
    """
    Clean one OCR markdown text: tables, math, then duplicate removal, with
    base64 images and (for the dedup pass) tables held in a PlaceholderVault.

    Never raises. Degraded state or an oversized input returns the input.
    """
    if not text:
        return text or ""
    if state is None:
        state = PipelineState()
    if state.degraded:
        return text
    if len(text) > state.size_limit:
        state.degrade(f"text too large ({len(text)} > {state.size_limit} chars)")
        return text

    state.start()
    vault = PlaceholderVault(text)
    work = _run_pass(state, "protect images", lambda s: vault.protect(s, tables=False, images=True), text)
    work = _run_pass(state, "table repair", repair_tables, work)
    work = _run_pass(state, "math repair", _math_pass, work)
    work = _run_pass(state, "protect tables", lambda s: vault.protect(s, tables=True, images=False), work)
    work = _run_pass(state, "dedup", lambda s: dedupe_text(s, skip=vault.contains_token), work)

    # Restore runs even when degraded so no token ever leaks.
    try:
        out = vault.restore(work, table_transform=None if state.degraded else dedupe_table_block)
    except Exception as e:
        state.degrade(f"restore failed: {e}")
        return text
    leaked = vault.leaked_tokens(out)
    if leaked:
        state.degrade(f"{len(leaked)} placeholder(s) could not be restored")
        return text
    return out


def normalize_document(doc: "OcrDocument", state: Optional[PipelineState] = None) -> "OcrDocument":
    """Normalize every page's text with one shared state; returns a new document."""
    if state is None:
        state = PipelineState()
    pages = tuple(page.with_text(normalize_markdown(page.text, state)) for page in doc.pages)
    return doc.model_copy(update={"pages": pages})
