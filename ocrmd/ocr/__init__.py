from .client import MistralOcrClient
from .errors import OcrCancelled, OcrError, OcrTransportError, OcrUpstreamError, OcrValidationError
from .models import OcrDocument, OcrImage, OcrPage, OcrResult
from .orchestrator import FALLBACK_WARNING, OcrOrchestrator, run_ocr
from .retry import Heartbeat, ProgressEvent, call_with_retry, classify
from .route import handle_ocr_request

__all__ = [
    "MistralOcrClient",
    "OcrOrchestrator",
    "run_ocr",
    "handle_ocr_request",
    "FALLBACK_WARNING",
    "OcrDocument",
    "OcrImage",
    "OcrPage",
    "OcrResult",
    "OcrError",
    "OcrValidationError",
    "OcrTransportError",
    "OcrUpstreamError",
    "OcrCancelled",
    "ProgressEvent",
    "Heartbeat",
    "call_with_retry",
    "classify",
]
