import pytest


def test_imports():
    """
    Smoke test to ensure the public modules import without error.
    This catches syntax errors, missing dependencies, or circular imports.
    """
    try:
        from ocrmd.config import load_settings
        from ocrmd.normalize import normalize_markdown, render_markdown
        from ocrmd.ocr import OcrOrchestrator, handle_ocr_request
        from ocrmd.ocr.runner import main
    except ImportError as e:
        pytest.fail(f"Failed to import core modules: {e}")


def test_end_to_end_normalize_smoke():
    """
    A messy OCR page goes through the whole normalizer without raising.
    """
    from ocrmd.normalize import normalize_markdown

    src = "#Results\n|Model|Acc|\n|A|9 0 %|\nScore $8 0 . 7 \\%$\nScore $8 0 . 7 \\%$\n"
    out = normalize_markdown(src)
    assert out.startswith("# Results\n| **Model** | **Acc** |\n| --- | --- |")
    assert out.count("Score $80.7\\%$") == 1
