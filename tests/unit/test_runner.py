import json

import ocrmd.ocr.runner as runner
from ocrmd.ocr.errors import OcrUpstreamError
from ocrmd.ocr.models import OcrDocument, OcrImage, OcrPage, OcrResult


def _result(warning=None):
    page = OcrPage(
        markdown="Hello\n\n![img-0.jpeg](img-0.jpeg)",
        images=(OcrImage(id="img-0.jpeg", image_base64="/9j/AAAA"),),
    )
    return OcrResult(document=OcrDocument(pages=(page,)), warning=warning)


class StubOrchestrator:
    last_call = None
    result = None
    error = None

    def __init__(self, **kwargs):
        StubOrchestrator.init_kwargs = kwargs

    def run(self, api_key, filename, data, include_images=True):
        StubOrchestrator.last_call = (api_key, filename, data, include_images)
        if StubOrchestrator.error is not None:
            raise StubOrchestrator.error
        return StubOrchestrator.result


def _install(monkeypatch, result=None, error=None):
    StubOrchestrator.result = result
    StubOrchestrator.error = error
    monkeypatch.setattr(runner, "OcrOrchestrator", StubOrchestrator)


def test_writes_markdown_with_inlined_images(tmp_path, monkeypatch):
    _install(monkeypatch, result=_result())
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF")
    assert runner.main([str(pdf), "--api-key", "k"]) == 0

    md = (tmp_path / "doc.md").read_text(encoding="utf-8")
    assert md.startswith("# Page 1\n\nHello")
    assert "data:image/jpeg;base64,/9j/AAAA" in md
    assert StubOrchestrator.last_call == ("k", "doc.pdf", b"%PDF", True)


def test_flags_map_to_request_and_rendering(tmp_path, monkeypatch):
    _install(monkeypatch, result=_result(warning="no images"))
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF")
    out = tmp_path / "out" / "x.md"
    js = tmp_path / "out" / "x.json"
    rc = runner.main(
        [str(pdf), "--api-key", "k", "--no-images", "--no-headers", "--strip-images", "--raw", "-o", str(out), "--json", str(js)]
    )
    assert rc == 0
    assert StubOrchestrator.last_call[3] is False
    assert StubOrchestrator.init_kwargs == {"normalize": False}
    md = out.read_text(encoding="utf-8")
    assert md.startswith("Hello")
    assert "base64" not in md
    payload = json.loads(js.read_text(encoding="utf-8"))
    assert payload["warning"] == "no images"


def test_api_key_from_env(tmp_path, monkeypatch):
    _install(monkeypatch, result=_result())
    monkeypatch.setenv("MISTRAL_API_KEY", "env-key")
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF")
    assert runner.main([str(pdf)]) == 0
    assert StubOrchestrator.last_call[0] == "env-key"


def test_missing_input_file(tmp_path, monkeypatch):
    _install(monkeypatch, result=_result())
    assert runner.main([str(tmp_path / "nope.pdf")]) == 2


def test_ocr_error_returns_1(tmp_path, monkeypatch):
    _install(monkeypatch, error=OcrUpstreamError("upload failed: Unauthorized", status=401))
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF")
    assert runner.main([str(pdf), "--api-key", "k"]) == 1
