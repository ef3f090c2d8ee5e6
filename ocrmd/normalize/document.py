from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ocrmd.ocr.models import OcrDocument, OcrImage, OcrPage

LARGE_IMAGE_NOTICE = "large image data omitted, see the original result"
REMOVED_IMAGE_NOTICE = "image removed"
REMOVED_DATA_NOTICE = "(image data removed)"

_MD_DATA_IMAGE_RE = re.compile(r"!\[([^\]\n]*)\]\(data:image/[^;)\s]+;base64,[^)\s]+\)")
_HTML_DATA_IMAGE_RE = re.compile(r"<img([^>]*?)\ssrc=\"data:image/[^;\"]+;base64,[^\"]+\"")
_BARE_DATA_URI_RE = re.compile(r"data:image/[^;\s]+;base64,[A-Za-z0-9+/=]{100,}")


def image_data_uri(image: "OcrImage") -> str:
    data = (image.image_base64 or "").strip()
    if not data or data.startswith("data:image/"):
        return data
    fmt = "jpeg" if data.startswith("/9j/") else "png"
    return f"data:image/{fmt};base64,{data}"


def _reference_forms(image_id: str) -> list[str]:
    return [
        f"![{image_id}]({image_id})",
        f"![图片]({image_id})",
        f"![Image]({image_id})",
        f"![image]({image_id})",
        f"![]({image_id})",
    ]


def inline_page_images(page: "OcrPage") -> str:
    """Page text with its image references replaced by data-URI images."""
    md = page.text
    for image in page.images:
        if not image.id or not image.image_base64:
            continue
        uri = image_data_uri(image)
        for ref in _reference_forms(image.id):
            if ref in md:
                md = md.replace(ref, f"![Image {image.id}]({uri})")
    return md


def render_markdown(doc: "OcrDocument", *, inline_images: bool = True, page_headers: bool = True) -> str:
    parts: list[str] = []
    for n, page in enumerate(doc.pages, start=1):
        body = inline_page_images(page) if inline_images else page.text
        parts.append(f"# Page {n}\n\n{body}" if page_headers else body)
    return "\n\n".join(parts)


def shrink_large_images(md: str, max_chars: int = 100_000, min_payload: int = 10_000) -> str:
    """Swap oversized base64 payloads for a notice once the markdown exceeds max_chars."""
    if not md or len(md) <= max_chars:
        return md or ""
    pat = re.compile(r"(!\[[^\]\n]*\])\(data:image/[^;)\s]+;base64,[A-Za-z0-9+/=]{%d,}\)" % int(min_payload))
    out = pat.sub(lambda m: f"{m.group(1)}({LARGE_IMAGE_NOTICE})", md)
    print(f"[render] large markdown {len(md)} -> {len(out)} chars", flush=True)
    return out


def strip_base64_images(md: str) -> str:
    """Remove every base64 image payload (markdown, HTML <img>, bare data URIs); alt text is kept."""
    if not md or "base64" not in md:
        return md or ""
    md = _MD_DATA_IMAGE_RE.sub(lambda m: f"![{m.group(1) or 'image'}]({REMOVED_IMAGE_NOTICE})", md)
    md = _HTML_DATA_IMAGE_RE.sub(lambda m: f'<img{m.group(1)} src="{REMOVED_IMAGE_NOTICE}"', md)
    return _BARE_DATA_URI_RE.sub(REMOVED_DATA_NOTICE, md)
