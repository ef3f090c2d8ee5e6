from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _as_float(v: Any) -> Optional[float]:
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


class OcrImage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    page: int = 0
    bbox: Optional[tuple[float, float, float, float]] = None
    image_base64: Optional[str] = Field(default=None, repr=False)

    @classmethod
    def from_payload(cls, data: dict, page: int = 0) -> "OcrImage":
        bbox = data.get("bbox")
        if bbox is None:
            corners = [
                _as_float(data.get(k))
                for k in ("top_left_x", "top_left_y", "bottom_right_x", "bottom_right_y")
            ]
            if all(c is not None for c in corners):
                bbox = tuple(corners)
        return cls(
            id=str(data.get("id") or ""),
            page=int(data.get("page", page) or page),
            bbox=bbox,
            image_base64=data.get("image_base64") or None,
        )


class OcrPage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    index: int = 0
    markdown: str = ""
    content: str = ""
    images: tuple[OcrImage, ...] = ()
    dimensions: Optional[dict] = None

    @property
    def text(self) -> str:
        return self.markdown or self.content or ""

    def with_text(self, text: str) -> "OcrPage":
        # Write back into whichever field the text came from.
        key = "content" if (self.content and not self.markdown) else "markdown"
        return self.model_copy(update={key: text})

    def without_image_payloads(self) -> "OcrPage":
        images = tuple(im.model_copy(update={"image_base64": None}) for im in self.images)
        return self.model_copy(update={"images": images})

    @classmethod
    def from_payload(cls, data: dict, index: int = 0) -> "OcrPage":
        idx = data.get("index")
        idx = index if idx is None else int(idx)
        images = tuple(
            OcrImage.from_payload(im, page=idx) for im in (data.get("images") or []) if isinstance(im, dict)
        )
        dims = data.get("dimensions")
        return cls(
            index=idx,
            markdown=str(data.get("markdown") or ""),
            content=str(data.get("content") or ""),
            images=images,
            dimensions=dims if isinstance(dims, dict) else None,
        )


class OcrDocument(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    pages: tuple[OcrPage, ...] = ()
    model: Optional[str] = None
    usage_info: Optional[dict] = None

    @property
    def image_count(self) -> int:
        return sum(len(p.images) for p in self.pages)

    @property
    def has_image_payloads(self) -> bool:
        return any(im.image_base64 for p in self.pages for im in p.images)

    def without_image_payloads(self) -> "OcrDocument":
        return self.model_copy(update={"pages": tuple(p.without_image_payloads() for p in self.pages)})

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: Any) -> "OcrDocument":
        """
        Build a document from the OCR service JSON.

        Besides the paged shape (`{"pages": [...]}`), older responses carrying
        a single `document.markdown|content` or top-level `markdown|content`
        become a one-page document.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"OCR response is not a JSON object: {type(payload).__name__}")
        usage = payload.get("usage_info")
        model = payload.get("model")
        common = {
            "model": str(model) if model else None,
            "usage_info": usage if isinstance(usage, dict) else None,
        }

        raw_pages = payload.get("pages")
        if isinstance(raw_pages, list) and raw_pages:
            pages = tuple(OcrPage.from_payload(p, index=i) for i, p in enumerate(raw_pages) if isinstance(p, dict))
            return cls(pages=pages, **common)

        doc = payload.get("document")
        text = ""
        if isinstance(doc, dict):
            text = str(doc.get("markdown") or doc.get("content") or "")
        if not text:
            text = str(payload.get("markdown") or payload.get("content") or "")
        if not text:
            return cls(pages=(), **common)
        return cls(pages=(OcrPage(index=0, markdown=text),), **common)


class OcrResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    document: OcrDocument
    warning: Optional[str] = None

    def to_payload(self) -> dict:
        out: dict = {"result": self.document.to_payload()}
        if self.warning:
            out["warning"] = self.warning
        return out
