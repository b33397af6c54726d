"""
Content hash gate: fingerprint uploaded bytes and reuse virus-scan and OCR results
already produced for identical content inside the same bank.

Each cache lookup fails independently; a failed lookup reads as a miss.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import virus_scan_required
from db.models import Document, OcrResult, VirusScanCache
from engine.status import DocumentStatus, VirusStatus, can_transition_document
from models.documents import ContentHashResult

_LOG = logging.getLogger("uvicorn.error")

OCR_DEDUP_PROVIDER = "sha256_dedup"
OCR_SUCCEEDED = "SUCCEEDED"


def compute_sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _stamp_virus(doc: Document, entry: VirusScanCache, now: datetime) -> None:
    doc.virus_status = entry.status
    doc.virus_engine = entry.engine
    doc.virus_signature = entry.signature
    doc.virus_scanned_at = entry.scanned_at or now
    if can_transition_document(doc.status, DocumentStatus.scanned.value):
        doc.status = DocumentStatus.scanned.value


def _lookup_virus(db: Session, bank_id: str, digest: str) -> Optional[VirusScanCache]:
    return (
        db.query(VirusScanCache)
        .filter(VirusScanCache.bank_id == bank_id, VirusScanCache.sha256 == digest)
        .first()
    )


def _lookup_ocr_donor(db: Session, bank_id: str, digest: str, document_id: str) -> Optional[OcrResult]:
    return (
        db.query(OcrResult)
        .join(Document, OcrResult.document_id == Document.id)
        .filter(
            Document.bank_id == bank_id,
            Document.sha256 == digest,
            Document.id != document_id,
            OcrResult.status == OCR_SUCCEEDED,
            OcrResult.extracted_text.isnot(None),
            OcrResult.extracted_text != "",
        )
        .order_by(OcrResult.updated_at.desc(), OcrResult.id)
        .first()
    )


def check_content_hash(
    db: Session,
    file_bytes: bytes,
    bank_id: str,
    deal_id: str,
    document_id: str,
    now: Optional[datetime] = None,
) -> ContentHashResult:
    now = now or datetime.utcnow()
    digest = compute_sha256(file_bytes)
    result = ContentHashResult(digest=digest)

    doc: Optional[Document] = None
    try:
        doc = db.query(Document).filter(Document.id == document_id, Document.bank_id == bank_id).first()
        if doc is not None:
            doc.sha256 = digest
            doc.updated_at = now
            db.commit()
        else:
            _LOG.warning("HASH_GATE_DOC_MISSING document_id=%s deal_id=%s", document_id, deal_id)
    except SQLAlchemyError as e:
        db.rollback()
        doc = None
        _LOG.warning("HASH_GATE_STAMP_FAILED document_id=%s err=%s", document_id, str(e)[:200])

    try:
        entry = _lookup_virus(db, bank_id, digest)
        if entry is not None:
            result.virus_cache_hit = True
            result.virus_status = entry.status
            result.virus_signature = entry.signature
            result.virus_engine = entry.engine
            if doc is not None:
                _stamp_virus(doc, entry, now)
                db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        result.virus_cache_hit = False
        result.virus_status = VirusStatus.unknown.value
        result.virus_signature = None
        result.virus_engine = None
        _LOG.warning("HASH_GATE_VIRUS_LOOKUP_FAILED document_id=%s err=%s", document_id, str(e)[:200])

    try:
        donor = _lookup_ocr_donor(db, bank_id, digest, document_id)
        if donor is not None:
            result.ocr_cache_hit = True
            result.ocr_text = donor.extracted_text
            result.ocr_donor_document_id = donor.document_id
            if doc is not None:
                db.add(OcrResult(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    status=OCR_SUCCEEDED,
                    provider=OCR_DEDUP_PROVIDER,
                    extracted_text=donor.extracted_text,
                    raw_json={"dedup": True, "donor_doc_id": donor.document_id, "sha256": digest},
                    created_at=now,
                    updated_at=now,
                ))
                db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        _LOG.warning("HASH_GATE_OCR_LOOKUP_FAILED document_id=%s err=%s", document_id, str(e)[:200])

    _LOG.info(
        "HASH_GATE document_id=%s deal_id=%s sha256=%s virus_hit=%s ocr_hit=%s",
        document_id, deal_id, digest[:12], result.virus_cache_hit, result.ocr_cache_hit,
    )
    return result


def record_virus_scan(
    db: Session,
    bank_id: str,
    sha256: str,
    status: str,
    signature: Optional[str] = None,
    engine: Optional[str] = None,
    document_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Cache a scan result for (bank, sha256). The first recorded result is authoritative; later writes
    for the same content are ignored. Returns True when this call created the entry.
    """
    now = now or datetime.utcnow()
    status = VirusStatus(status).value
    insert = postgresql.insert if db.get_bind().dialect.name == "postgresql" else sqlite.insert
    stmt = (
        insert(VirusScanCache)
        .values(
            id=str(uuid.uuid4()),
            bank_id=bank_id,
            sha256=sha256,
            status=status,
            signature=signature,
            engine=engine,
            scanned_at=now,
        )
        .on_conflict_do_nothing(index_elements=["bank_id", "sha256"])
    )
    inserted = db.execute(stmt).rowcount == 1
    db.commit()

    if document_id:
        doc = db.query(Document).filter(Document.id == document_id, Document.bank_id == bank_id).first()
        entry = _lookup_virus(db, bank_id, sha256)
        if doc is not None and entry is not None:
            _stamp_virus(doc, entry, now)
            db.commit()
    _LOG.info("VIRUS_CACHE_WRITE bank_id=%s sha256=%s status=%s inserted=%s", bank_id, sha256[:12], status, inserted)
    return inserted


def is_processing_blocked(status_or_result: Union[str, ContentHashResult]) -> bool:
    status = status_or_result.virus_status if isinstance(status_or_result, ContentHashResult) else status_or_result
    if status == VirusStatus.infected.value:
        return True
    if status == VirusStatus.clean.value:
        return False
    return virus_scan_required()
