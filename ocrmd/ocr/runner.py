import argparse
import json
import sys
from pathlib import Path

from ocrmd.config import load_api_key
from ocrmd.normalize.document import render_markdown, shrink_large_images, strip_base64_images

from .errors import OcrError
from .orchestrator import OcrOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OCR a PDF with Mistral OCR and write cleaned Markdown")

    # Input/Output
    parser.add_argument("pdf_path", help="Path to input PDF file")
    parser.add_argument("--output", "-o", help="Markdown output path (default: <pdf>.md next to the input)")
    parser.add_argument("--json", dest="json_path", help="Also write the normalized OCR result as JSON")

    # Request options
    parser.add_argument("--api-key", help="Mistral API key (or set MISTRAL_API_KEY env)")
    parser.add_argument("--no-images", action="store_true", help="Do not request image payloads")
    parser.add_argument("--raw", action="store_true", help="Skip markdown/LaTeX normalization")

    # Rendering
    parser.add_argument("--no-headers", action="store_true", help="Do not emit '# Page N' headers")
    parser.add_argument("--strip-images", action="store_true", help="Remove base64 image data from the markdown")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    pdf_path = Path(args.pdf_path)
    if not pdf_path.is_file():
        print(f"Error: no such file: {pdf_path}")
        return 2
    api_key = args.api_key or load_api_key()

    orch = OcrOrchestrator(normalize=not args.raw)
    try:
        result = orch.run(api_key, pdf_path.name, pdf_path.read_bytes(), include_images=not args.no_images)
    except OcrError as e:
        print(f"Error ({e.kind}, {e.status}): {e}")
        return 1

    if result.warning:
        print(f"[WARN] {result.warning}")

    md = render_markdown(result.document, inline_images=not args.strip_images, page_headers=not args.no_headers)
    md = strip_base64_images(md) if args.strip_images else shrink_large_images(md, max_chars=500_000)

    out_path = Path(args.output) if args.output else pdf_path.with_suffix(".md")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(md, encoding="utf-8")
    print(f"Saved to {out_path}")

    if args.json_path:
        json_path = Path(args.json_path)
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(json.dumps(result.to_payload(), ensure_ascii=False, indent=2), encoding="utf-8")
        print(f"Saved to {json_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
