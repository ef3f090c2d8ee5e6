from dataclasses import replace

import pytest

from ocrmd.config import CallPolicy, load_settings


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", reason="OK"):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.reason = reason

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """
    requests-compatible session. `routes` maps (METHOD, path suffix) to a list
    of outcomes consumed in order; an outcome is a FakeResponse or an exception.
    """

    def __init__(self, routes):
        self.routes = {k: list(v) for k, v in routes.items()}
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers, "timeout": timeout, **kwargs})
        for (m, suffix), outcomes in self.routes.items():
            if m == method and url.endswith(suffix):
                if not outcomes:
                    raise AssertionError(f"unexpected extra call {method} {url}")
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
        raise AssertionError(f"no route for {method} {url}")

    def close(self):
        self.closed = True

    def calls_to(self, method, suffix):
        return [c for c in self.calls if c["method"] == method and c["url"].endswith(suffix)]


OCR_PAGES = {
    "model": "mistral-ocr-latest",
    "pages": [
        {
            "index": 0,
            "markdown": "|A|B|\n|1|2|\n\n![img-0.jpeg](img-0.jpeg)",
            "images": [{"id": "img-0.jpeg", "image_base64": "/9j/AAAA"}],
        }
    ],
}


@pytest.fixture
def settings():
    return replace(
        load_settings(),
        base_url="https://api.test/v1",
        model="mistral-ocr-latest",
        upload=CallPolicy(timeout_s=120.0, retries=1),
        signed_url=CallPolicy(timeout_s=60.0, retries=2),
        ocr=CallPolicy(timeout_s=600.0, retries=2),
        fallback=CallPolicy(timeout_s=600.0, retries=0),
        fallback_min_bytes=1_000,
        backoff_base_s=2.0,
        heartbeat_s=30.0,
        normalize_max_chars=100_000,
        normalize_budget_s=5.0,
    )


@pytest.fixture
def make_session():
    def _make(ocr=None, upload=None, url=None):
        return FakeSession(
            {
                ("POST", "/files"): upload or [FakeResponse(payload={"id": "file-1"})],
                ("GET", "/files/file-1/url"): url or [FakeResponse(payload={"url": "https://signed.example/doc"})],
                ("POST", "/ocr"): ocr or [FakeResponse(payload=OCR_PAGES)],
            }
        )

    return _make


@pytest.fixture
def waits():
    return []
