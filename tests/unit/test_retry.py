import threading

import pytest
import requests

from ocrmd.config import CallPolicy
from ocrmd.ocr.errors import (
    OcrCancelled,
    OcrTransportError,
    OcrUpstreamError,
    OcrValidationError,
)
from ocrmd.ocr.retry import (
    Heartbeat,
    RetryDecision,
    backoff_delay,
    call_with_retry,
    classify,
    emit,
)


@pytest.mark.parametrize(
    "err,expected",
    [
        (OcrTransportError("t", is_timeout=True), RetryDecision.RETRYABLE),
        (OcrTransportError("reset"), RetryDecision.RETRYABLE),
        (requests.ConnectionError("reset"), RetryDecision.RETRYABLE),
        (requests.ReadTimeout("slow"), RetryDecision.RETRYABLE),
        (ConnectionResetError("reset"), RetryDecision.RETRYABLE),
        (OcrUpstreamError("bad", status=500), RetryDecision.FATAL),
        (OcrValidationError("bad"), RetryDecision.FATAL),
        (OcrCancelled("stop"), RetryDecision.FATAL),
        (ValueError("bad json"), RetryDecision.FATAL),
    ],
)
def test_classify(err, expected):
    assert classify(err) is expected


def test_backoff_doubles():
    assert [backoff_delay(k) for k in (1, 2, 3)] == [2.0, 4.0, 8.0]
    assert backoff_delay(1, 0.5) == 0.5


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_two_timeouts_then_success():
    waits = []
    fn = Flaky([OcrTransportError("t", is_timeout=True)] * 2)
    out = call_with_retry(fn, policy=CallPolicy(600.0, 2), stage="ocr", wait=waits.append)
    assert out == "ok"
    assert fn.calls == 3
    assert waits == [2.0, 4.0]


def test_exhausted_retries_raise_last_error():
    waits = []
    errors = [OcrTransportError(f"t{i}", is_timeout=True) for i in range(3)]
    fn = Flaky(errors)
    with pytest.raises(OcrTransportError, match="t2"):
        call_with_retry(fn, policy=CallPolicy(60.0, 2), stage="url", wait=waits.append)
    assert fn.calls == 3
    assert waits == [2.0, 4.0]


def test_fatal_error_is_not_retried():
    waits = []
    fn = Flaky([OcrUpstreamError("nope", status=400)])
    with pytest.raises(OcrUpstreamError):
        call_with_retry(fn, policy=CallPolicy(60.0, 2), stage="upload", wait=waits.append)
    assert fn.calls == 1
    assert waits == []


def test_zero_retries_means_single_attempt():
    fn = Flaky([OcrTransportError("t", is_timeout=True)])
    with pytest.raises(OcrTransportError):
        call_with_retry(fn, policy=CallPolicy(60.0, 0), stage="fallback", wait=lambda _d: None)
    assert fn.calls == 1


def test_cancel_before_first_attempt():
    cancel = threading.Event()
    cancel.set()
    fn = Flaky([])
    with pytest.raises(OcrCancelled):
        call_with_retry(fn, policy=CallPolicy(60.0, 2), stage="upload", cancel_event=cancel)
    assert fn.calls == 0


def test_default_wait_ends_early_on_cancel():
    cancel = threading.Event()
    fn = Flaky([OcrTransportError("t", is_timeout=True)])
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        with pytest.raises(OcrCancelled):
            # 100s base would hang the test if the wait were not cancellable.
            call_with_retry(fn, policy=CallPolicy(60.0, 2), stage="ocr", backoff_base_s=100.0, cancel_event=cancel)
    finally:
        timer.cancel()
    assert fn.calls == 1


def test_retry_events_are_reported():
    events = []
    fn = Flaky([requests.ConnectionError("reset")])
    call_with_retry(fn, policy=CallPolicy(60.0, 1), stage="upload", wait=lambda _d: None, on_event=events.append)
    assert len(events) == 1
    assert events[0].stage == "upload"
    assert events[0].data["attempt"] == 1
    assert events[0].data["delay_s"] == 2.0


def test_broken_callback_does_not_raise():
    def bad(_ev):
        raise RuntimeError("callback bug")

    emit(bad, "uploading", "hello")


def test_heartbeat_emits_and_stops():
    got = threading.Event()
    events = []

    def on_event(ev):
        events.append(ev)
        got.set()

    with Heartbeat("ocr_requesting", interval_s=0.01, on_event=on_event) as hb:
        assert got.wait(2.0)
    assert hb.beats >= 1
    assert hb._thread is None
    assert events[0].stage == "ocr_requesting"


def test_cancel_abandons_blocking_attempt():
    cancel = threading.Event()
    release = threading.Event()
    aborted = []

    def slow():
        release.wait(3.0)
        return "late"

    def abort():
        aborted.append(True)
        release.set()

    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    try:
        with pytest.raises(OcrCancelled):
            call_with_retry(slow, policy=CallPolicy(60.0, 2), stage="ocr", cancel_event=cancel, on_cancel=abort)
    finally:
        timer.cancel()
        release.set()
    assert aborted == [True]


def test_failure_after_cancel_is_reported_as_cancelled():
    cancel = threading.Event()

    def fn():
        cancel.set()
        raise OcrTransportError("connection closed")

    waits = []
    with pytest.raises(OcrCancelled):
        call_with_retry(fn, policy=CallPolicy(60.0, 2), stage="ocr", cancel_event=cancel, wait=waits.append)
    assert waits == []
