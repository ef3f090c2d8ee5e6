from __future__ import annotations

from typing import Any, Optional


class OcrError(Exception):
    """Base error of the OCR request flow. `status` is the HTTP status reported to callers."""

    status: int = 500
    kind: str = "internal"

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = int(status)


class OcrValidationError(OcrError):
    status = 400
    kind = "validation"


class OcrTransportError(OcrError):
    """Timeout, reset connection or socket failure talking to the OCR service."""

    status = 500
    kind = "transport"

    def __init__(self, message: str, *, is_timeout: bool = False, stage: str = "") -> None:
        super().__init__(message)
        self.is_timeout = bool(is_timeout)
        self.stage = stage
        if self.is_timeout:
            self.kind = "timeout"


class OcrUpstreamError(OcrError):
    """The OCR service answered with a non-2xx status."""

    kind = "upstream"

    def __init__(self, message: str, *, status: int, body: Any = None) -> None:
        super().__init__(message, status=status)
        self.body = body


class OcrCancelled(OcrError):
    status = 499
    kind = "cancelled"


def upstream_message(body: Any, fallback: str = "") -> str:
    """Best-effort error text from an upstream JSON body."""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err.strip():
            return err.strip()
        for key in ("message", "detail", "reason"):
            val = body.get(key)
            if isinstance(val, str) and val.strip():
                return val.strip()
            if val and not isinstance(val, str):
                return str(val)
    if isinstance(body, str) and body.strip():
        return body.strip()[:500]
    return fallback or "upstream error"
