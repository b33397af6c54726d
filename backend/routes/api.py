"""
Underwriting API: content hash gate, classification stamping, routing lookups, spreads, debt service.
Tenant scope comes from the X-Bank-Id header; every query is filtered by it.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

import s3_client
from db.models import Document
from db.session import get_db
from engine.routing import resolve_routing
from models.documents import (
    ClassificationStamp,
    ClassifierOutput,
    ContentHashResult,
    DocTypeRouting,
    VirusScanResult,
    VirusScanWriteResponse,
)
from models.spreads import (
    OrchestrationResult,
    RenderedSpread,
    SpreadJobSummary,
    SpreadRecomputeRequest,
    SpreadStatusResponse,
    SpreadSummary,
)
from services.content_hash_gate import check_content_hash, record_virus_scan
from services.debt_service import recompute_debt_service
from services.document_intake import stamp_classification
from services.orchestration import orchestrate_deal_spreads
from services.spread_jobs import active_job, latest_job, latest_spreads

router = APIRouter(prefix="/api/v1", tags=["api"])

MAX_UPLOAD_BYTES = 50_000_000


def require_bank_id(x_bank_id: Optional[str] = Header(default=None)) -> str:
    bank_id = (x_bank_id or "").strip()
    if not bank_id:
        raise HTTPException(status_code=400, detail="Missing X-Bank-Id header")
    return bank_id


def _document_or_404(db: Session, document_id: str, bank_id: str) -> Document:
    doc = db.query(Document).filter(Document.id == document_id, Document.bank_id == bank_id).first()
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc


def _summary_for(row, include_rendered: bool) -> SpreadSummary:
    rendered = None
    if include_rendered and row.rendered_json:
        rendered = RenderedSpread.model_validate(row.rendered_json)
    return SpreadSummary(
        spread_type=row.spread_type,
        spread_version=row.spread_version,
        owner_type=row.owner_type,
        owner_entity_id=row.owner_entity_id,
        status=row.status,
        error=row.error,
        error_code=row.error_code,
        updated_at=row.updated_at,
        finished_at=row.finished_at,
        rendered=rendered,
    )


def _job_summary(job) -> Optional[SpreadJobSummary]:
    if job is None:
        return None
    return SpreadJobSummary(
        id=job.id,
        status=job.status,
        requested_spread_types=list(job.requested_spread_types or []),
        attempt=job.attempt or 0,
        attempted_count=job.attempted_count or 0,
        rendered_count=job.rendered_count or 0,
        error=job.error,
        error_code=job.error_code,
        created_at=job.created_at,
        finished_at=job.finished_at,
    )


# --- Documents ---

@router.post("/documents/{document_id}/content-hash", response_model=ContentHashResult)
async def content_hash(
    document_id: str,
    file: UploadFile = File(...),
    bank_id: str = Depends(require_bank_id),
    db: Session = Depends(get_db),
):
    doc = _document_or_404(db, document_id, bank_id)
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File exceeds {MAX_UPLOAD_BYTES} bytes")
    result = check_content_hash(db, data, bank_id, doc.deal_id, document_id)
    if not doc.storage_key and s3_client.storage_enabled():
        key = s3_client.document_key(bank_id, doc.deal_id, document_id)
        if s3_client.upload_bytes(key, data, file.content_type):
            doc.storage_key = key
            doc.mime_type = doc.mime_type or file.content_type
            doc.original_filename = doc.original_filename or file.filename
            db.commit()
    return result


@router.post("/documents/{document_id}/virus-scan", response_model=VirusScanWriteResponse)
def virus_scan(
    document_id: str,
    body: VirusScanResult,
    bank_id: str = Depends(require_bank_id),
    db: Session = Depends(get_db),
):
    doc = _document_or_404(db, document_id, bank_id)
    if not doc.sha256:
        raise HTTPException(status_code=409, detail="Document has no content hash yet")
    inserted = record_virus_scan(
        db, bank_id, doc.sha256, body.status, signature=body.signature, engine=body.engine, document_id=document_id,
    )
    db.refresh(doc)
    return VirusScanWriteResponse(
        sha256=doc.sha256,
        inserted=inserted,
        status=doc.virus_status,
        signature=doc.virus_signature,
        engine=doc.virus_engine,
    )


@router.post("/documents/{document_id}/classification", response_model=ClassificationStamp)
def classification(
    document_id: str,
    body: ClassifierOutput,
    bank_id: str = Depends(require_bank_id),
    db: Session = Depends(get_db),
):
    stamp = stamp_classification(db, document_id, bank_id, body)
    if stamp is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return stamp


@router.get("/routing/{raw_type}", response_model=DocTypeRouting)
def routing(raw_type: str):
    return resolve_routing(raw_type)


# --- Spreads ---

@router.post("/deals/{deal_id}/spreads/recompute", response_model=OrchestrationResult)
def recompute_spreads(
    deal_id: str,
    body: SpreadRecomputeRequest,
    bank_id: str = Depends(require_bank_id),
    db: Session = Depends(get_db),
):
    return orchestrate_deal_spreads(
        db, deal_id, bank_id, body.spread_types, trigger=body.trigger, source_document_id=body.source_document_id,
    )


@router.get("/deals/{deal_id}/spreads")
def get_spreads(
    deal_id: str,
    types: Optional[str] = Query(default=None, description="Comma-separated spread types"),
    bank_id: str = Depends(require_bank_id),
    db: Session = Depends(get_db),
):
    wanted = [t for t in (types or "").split(",") if t.strip()]
    rows = latest_spreads(db, deal_id, bank_id, wanted or None)
    return {"deal_id": deal_id, "spreads": [_summary_for(r, True).model_dump(mode="json") for r in rows]}


@router.get("/deals/{deal_id}/spreads/status", response_model=SpreadStatusResponse)
def get_spread_status(
    deal_id: str,
    bank_id: str = Depends(require_bank_id),
    db: Session = Depends(get_db),
):
    job = active_job(db, deal_id, bank_id) or latest_job(db, deal_id, bank_id)
    rows = latest_spreads(db, deal_id, bank_id)
    return SpreadStatusResponse(
        deal_id=deal_id,
        active_job=_job_summary(job),
        spreads=[_summary_for(r, False) for r in rows],
    )


# --- Debt service ---

@router.post("/deals/{deal_id}/debt-service/recompute")
def recompute_debt(
    deal_id: str,
    bank_id: str = Depends(require_bank_id),
    db: Session = Depends(get_db),
):
    summary = recompute_debt_service(db, deal_id, bank_id)
    return {
        "deal_id": deal_id,
        "values": summary.as_dict(),
        "calc": {q.fact_key: q.calc for q in summary.quantities()},
    }
