from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

import requests

from ocrmd.config import CallPolicy

from .errors import OcrCancelled, OcrError, OcrTransportError

T = TypeVar("T")


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    message: str
    data: dict = field(default_factory=dict)


EventSink = Callable[[ProgressEvent], None]
WaitFn = Callable[[float], Any]


def emit(on_event: Optional[EventSink], stage: str, message: str, **data: Any) -> None:
    print(f"[OCR] {stage}: {message}", flush=True)
    if on_event is None:
        return
    try:
        on_event(ProgressEvent(stage=stage, message=message, data=data))
    except Exception as e:
        # A broken progress callback must not abort the request.
        print(f"[WARN] progress callback failed: {e}", flush=True)


class RetryDecision(str, Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


def classify(err: BaseException) -> RetryDecision:
    """Transport-layer failures (timeouts included) are retried; everything else is not."""
    if isinstance(err, OcrTransportError):
        return RetryDecision.RETRYABLE
    if isinstance(err, OcrError):
        return RetryDecision.FATAL
    if isinstance(err, (requests.RequestException, OSError)):
        return RetryDecision.RETRYABLE
    return RetryDecision.FATAL


def backoff_delay(attempt: int, base_s: float = 2.0) -> float:
    """Wait after failed attempt `attempt` (1-based): base, 2*base, 4*base, ..."""
    return float(base_s) * (2 ** max(0, attempt - 1))


def _cancellable_wait(delay_s: float, cancel_event: Optional[threading.Event]) -> None:
    (cancel_event or threading.Event()).wait(delay_s)


def _check_cancel(cancel_event: Optional[threading.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OcrCancelled(f"{stage} cancelled")


def call_cancellable(
    fn: Callable[[], T],
    *,
    stage: str,
    cancel_event: Optional[threading.Event] = None,
    on_cancel: Optional[Callable[[], Any]] = None,
    poll_s: float = 0.05,
) -> T:
    """
    Run one blocking call in a daemon worker while watching `cancel_event`.

    Once the event is set the worker is abandoned: `on_cancel` runs (closing
    the HTTP session aborts its socket) and OcrCancelled is raised right away.
    """
    if cancel_event is None:
        return fn()
    box: dict[str, Any] = {}
    done = threading.Event()

    def _target() -> None:
        try:
            box["result"] = fn()
        except BaseException as e:
            box["error"] = e
        finally:
            done.set()

    worker = threading.Thread(target=_target, name=f"ocr-call-{stage}", daemon=True)
    worker.start()
    while not done.wait(poll_s):
        if cancel_event.is_set():
            if on_cancel is not None:
                try:
                    on_cancel()
                except Exception as e:
                    print(f"[WARN] {stage}: cancel cleanup failed: {e}", flush=True)
            raise OcrCancelled(f"{stage} cancelled")
    if "error" in box:
        raise box["error"]
    return box["result"]


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: CallPolicy,
    stage: str,
    backoff_base_s: float = 2.0,
    cancel_event: Optional[threading.Event] = None,
    wait: Optional[WaitFn] = None,
    on_event: Optional[EventSink] = None,
    on_cancel: Optional[Callable[[], Any]] = None,
) -> T:
    """
    Run `fn` up to `policy.retries + 1` times. Retryable failures back off
    exponentially; fatal ones and the final failure propagate unchanged.
    A set `cancel_event` raises OcrCancelled, also while an attempt is in flight.
    """
    attempts = max(0, int(policy.retries)) + 1
    for attempt in range(1, attempts + 1):
        _check_cancel(cancel_event, stage)
        try:
            result = call_cancellable(fn, stage=stage, cancel_event=cancel_event, on_cancel=on_cancel)
        except OcrCancelled:
            raise
        except Exception as e:
            if cancel_event is not None and cancel_event.is_set():
                raise OcrCancelled(f"{stage} cancelled") from e
            if classify(e) is RetryDecision.FATAL or attempt >= attempts:
                raise
            delay = backoff_delay(attempt, backoff_base_s)
            emit(
                on_event,
                stage,
                f"attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.1f}s",
                attempt=attempt,
                attempts=attempts,
                delay_s=delay,
                error=str(e),
            )
            if wait is not None:
                wait(delay)
            else:
                _cancellable_wait(delay, cancel_event)
        else:
            _check_cancel(cancel_event, stage)
            return result
    # Unreachable: the last attempt either returns or raises.
    raise RuntimeError(f"{stage}: retry loop exited without a result")


class Heartbeat:
    """Emits a progress event every `interval_s` while a call is outstanding."""

    def __init__(
        self,
        stage: str,
        *,
        interval_s: float = 30.0,
        on_event: Optional[EventSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stage = stage
        self.interval_s = float(interval_s)
        self.on_event = on_event
        self.clock = clock
        self.beats = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._t0 = 0.0

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            self.beats += 1
            elapsed = self.clock() - self._t0
            emit(self.on_event, self.stage, f"still waiting ({elapsed:.0f}s)", elapsed_s=elapsed)

    def __enter__(self) -> "Heartbeat":
        self._t0 = self.clock()
        self._thread = threading.Thread(target=self._run, name=f"ocr-heartbeat-{self.stage}", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
