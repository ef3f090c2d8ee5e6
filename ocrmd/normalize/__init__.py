from .document import image_data_uri, inline_page_images, render_markdown, shrink_large_images, strip_base64_images
from .pipeline import PipelineState, normalize_document, normalize_markdown
from .vault import PlaceholderVault, Span, SpanKind, parse_spans, protect, restore

__all__ = [
    "PipelineState",
    "normalize_markdown",
    "normalize_document",
    "PlaceholderVault",
    "Span",
    "SpanKind",
    "parse_spans",
    "protect",
    "restore",
    "image_data_uri",
    "inline_page_images",
    "render_markdown",
    "shrink_large_images",
    "strip_base64_images",
]
