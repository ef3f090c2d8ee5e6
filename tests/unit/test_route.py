import pytest
import requests

from conftest import FakeResponse
from ocrmd.ocr.orchestrator import OcrOrchestrator
from ocrmd.ocr.route import handle_ocr_request, parse_include_images

PDF = b"%PDF-1.7 small"


def _orch(settings, session):
    return OcrOrchestrator(settings=settings, session=session, wait=lambda _d: None)


def test_success_payload(settings, make_session):
    status, payload = handle_ocr_request("k", "a.pdf", PDF, orchestrator=_orch(settings, make_session()))
    assert status == 200
    assert "warning" not in payload
    assert payload["result"]["pages"][0]["markdown"].startswith("| **A** | **B** |")


def test_missing_key_is_400(settings, make_session):
    session = make_session()
    status, payload = handle_ocr_request("", "a.pdf", PDF, orchestrator=_orch(settings, session))
    assert status == 400
    assert payload == {"error": "Missing API key", "kind": "validation"}
    assert session.calls == []


def test_non_pdf_is_400(settings, make_session):
    status, payload = handle_ocr_request("k", "notes.txt", b"x", orchestrator=_orch(settings, make_session()))
    assert status == 400
    assert payload["error"] == "Only PDF files are supported"


def test_missing_file_is_400(settings, make_session):
    status, payload = handle_ocr_request("k", None, None, orchestrator=_orch(settings, make_session()))
    assert status == 400
    assert payload["error"] == "Missing file"


def test_upstream_status_is_passed_through(settings, make_session):
    session = make_session(ocr=[FakeResponse(status_code=429, payload={"message": "rate limited"})])
    status, payload = handle_ocr_request("k", "a.pdf", PDF, orchestrator=_orch(settings, session))
    assert status == 429
    assert payload["kind"] == "upstream"
    assert "rate limited" in payload["error"]


def test_timeout_is_500_with_timeout_kind(settings, make_session):
    session = make_session(ocr=[requests.ReadTimeout("t")])
    status, payload = handle_ocr_request("k", "a.pdf", PDF, orchestrator=_orch(settings, session))
    assert status == 500
    assert payload["kind"] == "timeout"


def test_connection_error_is_500_with_transport_kind(settings, make_session):
    session = make_session(url=[requests.ConnectionError("reset")])
    status, payload = handle_ocr_request("k", "a.pdf", PDF, orchestrator=_orch(settings, session))
    assert status == 500
    assert payload["kind"] == "transport"


def test_unexpected_error_is_internal():
    class Broken:
        def run(self, *args, **kwargs):
            raise RuntimeError("boom")

    status, payload = handle_ocr_request("k", "a.pdf", PDF, orchestrator=Broken())
    assert status == 500
    assert payload["kind"] == "internal"
    assert "boom" in payload["error"]


def test_images_flag_string_is_forwarded(settings, make_session):
    session = make_session()
    handle_ocr_request("k", "a.pdf", PDF, "false", orchestrator=_orch(settings, session))
    assert session.calls_to("POST", "/ocr")[0]["json"]["include_image_base64"] is False


@pytest.mark.parametrize(
    "value,expected",
    [(None, True), ("true", True), ("false", False), ("FALSE", False), ("", True), (False, False), (True, True)],
)
def test_parse_include_images(value, expected):
    assert parse_include_images(value) is expected
