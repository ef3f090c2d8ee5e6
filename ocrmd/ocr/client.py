from __future__ import annotations

from typing import Any, Optional

import requests

from ocrmd.config import Settings, load_settings

from .errors import OcrTransportError, OcrUpstreamError, upstream_message


def _json_or_text(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text or ""


class MistralOcrClient:
    """
    Thin wrapper over the three Mistral OCR endpoints.

    Each call makes exactly one HTTP request; retries live in the caller.
    requests failures become OcrTransportError, non-2xx answers OcrUpstreamError.
    """

    def __init__(
        self,
        api_key: str,
        *,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self._api_key = api_key
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"}

    def _request(self, method: str, path: str, *, stage: str, timeout_s: float, **kwargs: Any) -> dict:
        url = f"{self.settings.base_url}/{path.lstrip('/')}"
        # requests applies the read timeout per socket read, so a slowly
        # trickling response can run past timeout_s; cancel_event bounds that.
        timeout = (min(self.settings.connect_timeout_s, timeout_s), timeout_s)
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=timeout, **kwargs)
        except requests.Timeout as e:
            raise OcrTransportError(
                f"{stage} timed out after {timeout_s:.0f}s", is_timeout=True, stage=stage
            ) from e
        except (requests.RequestException, OSError) as e:
            raise OcrTransportError(f"{stage} failed: {e}", stage=stage) from e

        body = _json_or_text(resp)
        if not (200 <= resp.status_code < 300):
            reason = getattr(resp, "reason", "") or f"HTTP {resp.status_code}"
            raise OcrUpstreamError(
                f"{stage} failed: {upstream_message(body, reason)}", status=resp.status_code, body=body
            )
        if not isinstance(body, dict):
            raise OcrUpstreamError(f"{stage} failed: response is not a JSON object", status=502, body=body)
        return body

    def upload_file(self, filename: str, data: bytes, *, timeout_s: Optional[float] = None) -> str:
        body = self._request(
            "POST",
            "files",
            stage="upload",
            timeout_s=timeout_s or self.settings.upload.timeout_s,
            data={"purpose": "ocr"},
            files={"file": (filename, data, "application/pdf")},
        )
        file_id = str(body.get("id") or "").strip()
        if not file_id:
            raise OcrUpstreamError("upload failed: response has no file id", status=502, body=body)
        return file_id

    def get_signed_url(self, file_id: str, *, timeout_s: Optional[float] = None) -> str:
        body = self._request(
            "GET",
            f"files/{file_id}/url",
            stage="signed-url",
            timeout_s=timeout_s or self.settings.signed_url.timeout_s,
        )
        url = str(body.get("url") or "").strip()
        if not url:
            raise OcrUpstreamError("signed-url failed: response has no url", status=502, body=body)
        return url

    def ocr(
        self,
        document_url: str,
        *,
        include_images: bool = True,
        timeout_s: Optional[float] = None,
        stage: str = "ocr",
    ) -> dict:
        payload = {
            "model": self.settings.model,
            "document": {"type": "document_url", "document_url": document_url},
            "include_image_base64": bool(include_images),
        }
        return self._request(
            "POST",
            "ocr",
            stage=stage,
            timeout_s=timeout_s or self.settings.ocr.timeout_s,
            json=payload,
        )

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            pass
