from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class CallPolicy:
    timeout_s: float
    retries: int


@dataclass(frozen=True)
class Settings:
    base_url: str
    model: str
    upload: CallPolicy
    signed_url: CallPolicy
    ocr: CallPolicy
    fallback: CallPolicy
    fallback_min_bytes: int
    backoff_base_s: float
    heartbeat_s: float
    connect_timeout_s: float
    normalize_max_chars: int
    normalize_budget_s: float


def _env_float(name: str, default: float, lo: float, hi: float) -> float:
    raw = str(os.environ.get(name, "") or "").strip()
    if not raw:
        return default
    try:
        val = float(raw)
    except ValueError:
        return default
    return max(lo, min(hi, val))


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    raw = str(os.environ.get(name, "") or "").strip()
    if not raw:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    return max(lo, min(hi, val))


def clean_api_key(raw: str | None) -> str:
    key = str(raw or "").strip()
    # Users often set env vars with quotes (e.g. cmd.exe: set MISTRAL_API_KEY="...").
    if (key.startswith('"') and key.endswith('"')) or (key.startswith("'") and key.endswith("'")):
        key = key[1:-1].strip()
    return key


def load_api_key() -> str:
    return clean_api_key(os.environ.get("MISTRAL_API_KEY"))


def load_settings() -> Settings:
    base_url = (os.environ.get("MISTRAL_BASE_URL") or "https://api.mistral.ai/v1").strip().rstrip("/")
    # Be forgiving: https://api.mistral.ai is a common setting but the API lives under /v1.
    if base_url.endswith("api.mistral.ai"):
        base_url = base_url + "/v1"
    model = (os.environ.get("MISTRAL_OCR_MODEL") or "mistral-ocr-latest").strip()

    upload = CallPolicy(
        timeout_s=_env_float("OCRMD_UPLOAD_TIMEOUT_S", 120.0, 1.0, 3600.0),
        retries=_env_int("OCRMD_UPLOAD_RETRIES", 1, 0, 10),
    )
    signed_url = CallPolicy(
        timeout_s=_env_float("OCRMD_URL_TIMEOUT_S", 60.0, 1.0, 3600.0),
        retries=_env_int("OCRMD_URL_RETRIES", 2, 0, 10),
    )
    ocr = CallPolicy(
        timeout_s=_env_float("OCRMD_OCR_TIMEOUT_S", 600.0, 1.0, 7200.0),
        retries=_env_int("OCRMD_OCR_RETRIES", 2, 0, 10),
    )
    # The no-image fallback is a single last-chance attempt.
    fallback = CallPolicy(timeout_s=ocr.timeout_s, retries=0)

    return Settings(
        base_url=base_url,
        model=model,
        upload=upload,
        signed_url=signed_url,
        ocr=ocr,
        fallback=fallback,
        fallback_min_bytes=_env_int("OCRMD_FALLBACK_MIN_BYTES", 1_000_000, 0, 1 << 34),
        backoff_base_s=_env_float("OCRMD_BACKOFF_BASE_S", 2.0, 0.0, 60.0),
        heartbeat_s=_env_float("OCRMD_HEARTBEAT_S", 30.0, 1.0, 600.0),
        connect_timeout_s=_env_float("OCRMD_CONNECT_TIMEOUT_S", 30.0, 1.0, 600.0),
        normalize_max_chars=_env_int("OCRMD_NORMALIZE_MAX_CHARS", 100_000, 1_000, 50_000_000),
        normalize_budget_s=_env_float("OCRMD_NORMALIZE_BUDGET_S", 1.0, 0.05, 600.0),
    )
