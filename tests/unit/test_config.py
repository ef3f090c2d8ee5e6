import pytest

from ocrmd.config import clean_api_key, load_api_key, load_settings

ENV_VARS = [
    "MISTRAL_API_KEY",
    "MISTRAL_BASE_URL",
    "MISTRAL_OCR_MODEL",
    "OCRMD_UPLOAD_TIMEOUT_S",
    "OCRMD_UPLOAD_RETRIES",
    "OCRMD_URL_TIMEOUT_S",
    "OCRMD_URL_RETRIES",
    "OCRMD_OCR_TIMEOUT_S",
    "OCRMD_OCR_RETRIES",
    "OCRMD_FALLBACK_MIN_BYTES",
    "OCRMD_BACKOFF_BASE_S",
    "OCRMD_HEARTBEAT_S",
    "OCRMD_CONNECT_TIMEOUT_S",
    "OCRMD_NORMALIZE_MAX_CHARS",
    "OCRMD_NORMALIZE_BUDGET_S",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    s = load_settings()
    assert s.base_url == "https://api.mistral.ai/v1"
    assert s.model == "mistral-ocr-latest"
    assert (s.upload.timeout_s, s.upload.retries) == (120.0, 1)
    assert (s.signed_url.timeout_s, s.signed_url.retries) == (60.0, 2)
    assert (s.ocr.timeout_s, s.ocr.retries) == (600.0, 2)
    assert (s.fallback.timeout_s, s.fallback.retries) == (600.0, 0)
    assert s.fallback_min_bytes == 1_000_000
    assert s.backoff_base_s == 2.0
    assert s.heartbeat_s == 30.0
    assert s.normalize_max_chars == 100_000
    assert s.normalize_budget_s == 1.0


def test_env_overrides_are_clamped(monkeypatch):
    monkeypatch.setenv("OCRMD_OCR_RETRIES", "99")
    monkeypatch.setenv("OCRMD_OCR_TIMEOUT_S", "30")
    monkeypatch.setenv("OCRMD_BACKOFF_BASE_S", "-1")
    s = load_settings()
    assert s.ocr.retries == 10
    assert s.ocr.timeout_s == 30.0
    assert s.fallback.timeout_s == 30.0
    assert s.backoff_base_s == 0.0


def test_malformed_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("OCRMD_UPLOAD_RETRIES", "three")
    monkeypatch.setenv("OCRMD_HEARTBEAT_S", "soon")
    s = load_settings()
    assert s.upload.retries == 1
    assert s.heartbeat_s == 30.0


def test_base_url_without_version_gets_v1(monkeypatch):
    monkeypatch.setenv("MISTRAL_BASE_URL", "https://api.mistral.ai/")
    assert load_settings().base_url == "https://api.mistral.ai/v1"
    monkeypatch.setenv("MISTRAL_BASE_URL", "http://proxy.local/mistral/v1/")
    assert load_settings().base_url == "http://proxy.local/mistral/v1"


def test_api_key_quotes_are_stripped(monkeypatch):
    assert clean_api_key(' "sk-abc" ') == "sk-abc"
    assert clean_api_key("'sk-abc'") == "sk-abc"
    assert clean_api_key(None) == ""
    monkeypatch.setenv("MISTRAL_API_KEY", '"sk-env"')
    assert load_api_key() == "sk-env"
