"""
Runtime configuration. Every value is read from the environment once at import.
Set DATABASE_URL, REDIS_URL, S3_BUCKET, AWS_REGION and the SPREAD_* timings in env or backend/.env.
"""
from __future__ import annotations

import logging
import os

_LOG = logging.getLogger("uvicorn.error")


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        _LOG.warning("CONFIG_INVALID name=%s value=%r default=%s", name, raw, default)
        return default


APP_ENV = (os.environ.get("APP_ENV") or "development").strip().lower()

SPREAD_DEBOUNCE_SECONDS = _env_int("SPREAD_DEBOUNCE_SECONDS", 60)
SPREAD_GENERATING_WARNING_MIN = _env_int("SPREAD_GENERATING_WARNING_MIN", 10)
SPREAD_GENERATING_CRITICAL_MIN = _env_int("SPREAD_GENERATING_CRITICAL_MIN", 60)
SPREAD_ORPHAN_LEASE_MIN = _env_int("SPREAD_ORPHAN_LEASE_MIN", 15)
SPREAD_JOB_LEASE_SECONDS = _env_int("SPREAD_JOB_LEASE_SECONDS", 300)
SPREAD_JOB_MAX_ATTEMPTS = _env_int("SPREAD_JOB_MAX_ATTEMPTS", 3)
EVENT_THROTTLE_SECONDS = _env_int("EVENT_THROTTLE_SECONDS", 300)


def is_production() -> bool:
    return APP_ENV == "production"


def virus_scan_required() -> bool:
    """
    Whether documents without a clean scan are held back from processing.
    In production an unset or garbled VIRUS_SCAN_REQUIRED enforces the gate rather than disabling it.
    """
    raw = (os.environ.get("VIRUS_SCAN_REQUIRED") or "").strip().lower()
    if raw in ("true", "false"):
        return raw == "true"
    if is_production():
        _LOG.error("CONFIG_MISSING name=VIRUS_SCAN_REQUIRED value=%r enforcing=true", raw)
        return True
    return False


def google_docai_enabled() -> bool:
    """Only the literal string 'true' (any case) turns the high-fidelity extractor on."""
    return (os.environ.get("GOOGLE_DOCAI_ENABLED") or "").strip().lower() == "true"
