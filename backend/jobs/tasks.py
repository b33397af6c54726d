"""
Background job tasks: spread worker, spread observer, content hashing of stored uploads.
Run worker from backend dir: celery -A jobs.tasks worker -B -l info
Requires: REDIS_URL, DATABASE_URL; for hashing: S3_BUCKET.
"""
from __future__ import annotations

import logging
import os
import socket
from datetime import datetime

from celery import Celery

import s3_client
from audit import throttle
from db.models import Document
from db.session import SessionLocal
from errors import ConfigurationError
from services.content_hash_gate import check_content_hash
from services.spread_jobs import run_worker_once
from services.spread_observer import run_spread_observer_tick

_LOG = logging.getLogger("uvicorn.error")

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
WORKER_TICK_SECONDS = float(os.environ.get("SPREAD_WORKER_TICK_SECONDS", "5"))
OBSERVER_TICK_SECONDS = float(os.environ.get("SPREAD_OBSERVER_TICK_SECONDS", "60"))

celery_app = Celery("buddy", broker=REDIS_URL, backend=REDIS_URL)
celery_app.conf.task_routes = {"jobs.tasks.*": {"queue": "buddy"}}
celery_app.conf.beat_schedule = {
    "spread-worker-tick": {"task": "jobs.tasks.spread_worker_tick", "schedule": WORKER_TICK_SECONDS},
    "spread-observer-tick": {"task": "jobs.tasks.spread_observer_tick", "schedule": OBSERVER_TICK_SECONDS},
}


def _worker_id(task_id: str | None) -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{task_id or 'local'}"


def _hash_document(document_id: str, bank_id: str) -> dict:
    if not s3_client.storage_enabled():
        raise ConfigurationError("S3_BUCKET is not set; stored documents cannot be hashed")
    db = SessionLocal()
    try:
        doc = db.query(Document).filter(Document.id == document_id, Document.bank_id == bank_id).first()
        if doc is None or not doc.storage_key:
            return {"ok": False, "error": "document_not_found"}
        body = s3_client.download_bytes(doc.storage_key)
        if not body:
            return {"ok": False, "error": "download_failed"}
        result = check_content_hash(db, body, bank_id, doc.deal_id, document_id)
        return {"ok": True, **result.model_dump(exclude={"ocr_text"})}
    finally:
        db.close()


@celery_app.task(bind=True, name="jobs.tasks.spread_worker_tick")
def spread_worker_tick(self):
    db = SessionLocal()
    try:
        outcome = run_worker_once(db, _worker_id(self.request.id), datetime.utcnow)
        if outcome is None:
            return {"ok": True, "job_id": None}
        return {"ok": True, "job_id": outcome.job_id, "status": outcome.status, "rendered": outcome.rendered}
    finally:
        db.close()


@celery_app.task(bind=True, name="jobs.tasks.spread_observer_tick")
def spread_observer_tick(self):
    db = SessionLocal()
    try:
        out = {"ok": True, **run_spread_observer_tick(db).as_dict()}
        out["throttle_evicted"] = throttle.sweep()
        return out
    finally:
        db.close()


@celery_app.task(bind=True, name="jobs.tasks.hash_document_task")
def hash_document_task(self, document_id: str, bank_id: str):
    out = _hash_document(document_id, bank_id)
    _LOG.info("HASH_DOCUMENT_TASK document_id=%s ok=%s", document_id, out.get("ok"))
    return out
