from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

import requests

from ocrmd.config import CallPolicy, Settings, clean_api_key, load_settings
from ocrmd.normalize.pipeline import PipelineState, normalize_document

from .client import MistralOcrClient
from .errors import OcrCancelled, OcrError, OcrTransportError, OcrUpstreamError, OcrValidationError
from .models import OcrDocument, OcrResult
from .retry import EventSink, Heartbeat, WaitFn, call_with_retry, emit

FALLBACK_WARNING = (
    "The file is large, so OCR finished without image data. "
    "Process a smaller file if you need the images."
)


def validate_request(api_key: Optional[str], filename: Optional[str], data: Optional[bytes]) -> str:
    """Returns the cleaned API key; raises OcrValidationError before any network call."""
    key = clean_api_key(api_key)
    if not key:
        raise OcrValidationError("Missing API key")
    if data is None or not filename:
        raise OcrValidationError("Missing file")
    if not str(filename).lower().endswith(".pdf"):
        raise OcrValidationError("Only PDF files are supported")
    if not data:
        raise OcrValidationError("Missing file")
    return key


class OcrOrchestrator:
    """
    upload -> signed URL -> OCR (-> no-image fallback) -> normalized document.

    One `run` is one sequential request. Progress goes to `on_event` and is
    printed with an `[OCR]` tag; `cancel_event` aborts backoff waits and
    any call in flight.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        on_event: Optional[EventSink] = None,
        cancel_event: Optional[threading.Event] = None,
        wait: Optional[WaitFn] = None,
        normalize: bool = True,
    ) -> None:
        self.settings = settings or load_settings()
        self.session = session
        self.on_event = on_event
        self.cancel_event = cancel_event
        self.wait = wait
        self.normalize = normalize

    def _emit(self, stage: str, message: str, **data: Any) -> None:
        emit(self.on_event, stage, message, **data)

    def _call(
        self, stage: str, policy: CallPolicy, fn: Callable[[], Any], client: Optional[MistralOcrClient] = None
    ) -> Any:
        self._emit(stage, f"starting (timeout {policy.timeout_s:.0f}s, retries {policy.retries})",
                   timeout_s=policy.timeout_s, retries=policy.retries)
        t0 = time.monotonic()
        try:
            with Heartbeat(stage, interval_s=self.settings.heartbeat_s, on_event=self.on_event):
                return call_with_retry(
                    fn,
                    policy=policy,
                    stage=stage,
                    backoff_base_s=self.settings.backoff_base_s,
                    cancel_event=self.cancel_event,
                    wait=self.wait,
                    on_event=self.on_event,
                    on_cancel=self._abort(client),
                )
        finally:
            self._emit(stage, f"finished after {time.monotonic() - t0:.1f}s", elapsed_s=time.monotonic() - t0)

    def _abort(self, client: Optional[MistralOcrClient]) -> Optional[Callable[[], None]]:
        # Only a session this orchestrator owns is closed under a running call.
        if client is None or self.session is not None:
            return None
        return client.close

    def fallback_eligible(self, err: OcrError, size: int, include_images: bool) -> bool:
        return (
            include_images
            and isinstance(err, OcrTransportError)
            and err.is_timeout
            and size > self.settings.fallback_min_bytes
        )

    def _ocr_with_fallback(
        self, client: MistralOcrClient, signed_url: str, size: int, include_images: bool
    ) -> tuple[dict, Optional[str]]:
        s = self.settings
        try:
            payload = self._call(
                "ocr_requesting",
                s.ocr,
                lambda: client.ocr(signed_url, include_images=include_images, timeout_s=s.ocr.timeout_s),
                client,
            )
            return payload, None
        except OcrTransportError as e:
            if not self.fallback_eligible(e, size, include_images):
                raise
            first_err = e

        self._emit(
            "ocr_fallback_requesting",
            f"OCR timed out on a {size} byte file; retrying once without images",
            size=size,
        )
        try:
            payload = self._call(
                "ocr_fallback_requesting",
                s.fallback,
                lambda: client.ocr(
                    signed_url, include_images=False, timeout_s=s.fallback.timeout_s, stage="ocr-fallback"
                ),
                client,
            )
        except OcrCancelled:
            raise
        except Exception as fb_err:
            self._emit("ocr_fallback_requesting", f"fallback failed: {fb_err}", error=str(fb_err))
            # The timeout stays the cause; the fallback failure is kept as context.
            first_err.__context__ = fb_err
            raise first_err
        return payload, FALLBACK_WARNING

    def run(self, api_key: str, filename: str, data: bytes, include_images: bool = True) -> OcrResult:
        key = validate_request(api_key, filename, data)
        s = self.settings
        client = MistralOcrClient(key, settings=s, session=self.session)
        t0 = time.monotonic()
        try:
            self._emit("uploading", f"{filename} ({len(data)} bytes)", filename=filename, size=len(data))
            file_id = self._call(
                "uploading", s.upload, lambda: client.upload_file(filename, data, timeout_s=s.upload.timeout_s), client
            )
            self._emit("awaiting_url", f"uploaded, file id {file_id}", file_id=file_id)
            signed_url = self._call(
                "awaiting_url", s.signed_url, lambda: client.get_signed_url(file_id, timeout_s=s.signed_url.timeout_s), client
            )
            payload, warning = self._ocr_with_fallback(client, signed_url, len(data), include_images)

            try:
                doc = OcrDocument.from_payload(payload)
            except ValueError as e:
                raise OcrUpstreamError(f"ocr failed: {e}", status=502, body=payload) from e
            if warning:
                doc = doc.without_image_payloads()
            if self.normalize:
                doc = normalize_document(doc, PipelineState.from_settings(s))
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise OcrCancelled("request cancelled")

            self._emit(
                "done",
                f"pages={len(doc.pages)} images={doc.image_count} in {time.monotonic() - t0:.1f}s",
                pages=len(doc.pages),
                images=doc.image_count,
                fallback=bool(warning),
            )
            return OcrResult(document=doc, warning=warning)
        except OcrError as e:
            self._emit("failed", f"{e.kind}: {e}", kind=e.kind, status=e.status)
            raise
        finally:
            if self.session is None:
                client.close()


def run_ocr(
    api_key: str,
    filename: str,
    data: bytes,
    include_images: bool = True,
    **kwargs: Any,
) -> OcrResult:
    return OcrOrchestrator(**kwargs).run(api_key, filename, data, include_images=include_images)
