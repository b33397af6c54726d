"""
Stamp classifier output onto a document: canonical type, routing class, calibrated confidence.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from db.models import Document
from engine.calibration import calibrate_confidence
from engine.routing import extraction_engine_for, resolve_routing
from engine.status import DocumentStatus, assert_document_transition
from models.documents import CalibrationInput, ClassificationStamp, ClassifierOutput

_LOG = logging.getLogger("uvicorn.error")


def classify_document(output: ClassifierOutput):
    """Pure half of stamping: (routing, calibration) for one classifier result."""
    routing = resolve_routing(output.doc_type)
    calibration = calibrate_confidence(CalibrationInput(
        base_confidence=output.confidence,
        tier=output.tier,
        confusion_candidates=output.confusion_candidates,
        form_numbers=output.form_numbers,
        detected_years=output.detected_years,
        tax_year=output.tax_year,
        text_length=output.text_length,
    ))
    return routing, calibration


def stamp_classification(
    db: Session,
    document_id: str,
    bank_id: str,
    output: ClassifierOutput,
    now: Optional[datetime] = None,
) -> Optional[ClassificationStamp]:
    """Returns None when the document does not exist for this bank."""
    doc = db.query(Document).filter(Document.id == document_id, Document.bank_id == bank_id).first()
    if doc is None:
        return None
    routing, calibration = classify_document(output)
    assert_document_transition(doc.status, DocumentStatus.classified.value)

    doc.document_type = output.doc_type
    doc.canonical_type = routing.canonical_type
    doc.routing_class = routing.routing_class
    doc.classification_confidence = calibration.confidence
    doc.confidence_band = calibration.band
    doc.needs_review = calibration.band == "LOW"
    doc.status = DocumentStatus.classified.value
    doc.updated_at = now or datetime.utcnow()
    db.commit()

    _LOG.info(
        "DOC_CLASSIFIED document_id=%s canonical_type=%s routing_class=%s confidence=%.4f band=%s penalties=%s",
        document_id, routing.canonical_type, routing.routing_class,
        calibration.confidence, calibration.band, ",".join(calibration.penalties) or "-",
    )
    return ClassificationStamp(
        document_id=document_id,
        routing=routing,
        calibration=calibration,
        extraction_engine=extraction_engine_for(routing.routing_class).value,
        needs_review=doc.needs_review,
        status=doc.status,
    )
