from __future__ import annotations

from typing import Any, Optional, Union

from .errors import OcrError
from .orchestrator import OcrOrchestrator


def parse_include_images(value: Union[str, bool, None]) -> bool:
    # Form fields arrive as strings; only an explicit "false" turns images off.
    if isinstance(value, bool):
        return value
    if value is None:
        return True
    return str(value).strip().lower() != "false"


def handle_ocr_request(
    api_key: Optional[str],
    filename: Optional[str],
    data: Optional[bytes],
    include_image_base64: Union[str, bool, None] = None,
    *,
    orchestrator: Optional[OcrOrchestrator] = None,
    **orchestrator_kwargs: Any,
) -> tuple[int, dict]:
    """
    Form-style entry point. Returns `(status, payload)`:
      200 {"result": {...}, "warning"?: str}
      4xx/5xx {"error": str, "kind": str}
    """
    try:
        orch = orchestrator or OcrOrchestrator(**orchestrator_kwargs)
        result = orch.run(
            api_key or "",
            filename or "",
            data if data is not None else b"",
            include_images=parse_include_images(include_image_base64),
        )
    except OcrError as e:
        # Upstream errors keep the service's status; the rest map by class.
        return e.status, {"error": e.message, "kind": e.kind}
    except Exception as e:
        print(f"[OCR] internal error: {e}", flush=True)
        return 500, {"error": f"OCR processing failed: {e or 'unknown error'}", "kind": "internal"}
    return 200, result.to_payload()
