"""
Schemas for document intake: content hashing, virus scan results, routing and classification.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ContentHashResult(BaseModel):
    digest: str
    virus_cache_hit: bool = False
    virus_status: str = "unknown"
    virus_signature: Optional[str] = None
    virus_engine: Optional[str] = None
    ocr_cache_hit: bool = False
    ocr_text: Optional[str] = None
    ocr_donor_document_id: Optional[str] = None


class VirusScanResult(BaseModel):
    """What the scanning service reports for one artifact."""
    status: str = Field(pattern="^(clean|infected|failed)$")
    signature: Optional[str] = None
    engine: Optional[str] = None


class VirusScanWriteResponse(BaseModel):
    sha256: str
    inserted: bool
    status: str
    signature: Optional[str] = None
    engine: Optional[str] = None


class DocTypeRouting(BaseModel):
    raw_type: Optional[str] = None
    canonical_type: str
    routing_class: str
    processor: Optional[str] = None


class CalibrationInput(BaseModel):
    base_confidence: float
    tier: str = "TIER3_LLM"
    confusion_candidates: List[str] = Field(default_factory=list)
    form_numbers: List[str] = Field(default_factory=list)
    detected_years: List[int] = Field(default_factory=list)
    tax_year: Optional[int] = None
    text_length: int = 0


class CalibrationResult(BaseModel):
    confidence: float
    band: str
    raw_confidence: float
    penalties: List[str] = Field(default_factory=list)


class ClassifierOutput(BaseModel):
    """Noisy output of the external classifier; treated as untrusted."""
    doc_type: Optional[str] = None
    confidence: float = 0.0
    tier: str = "TIER3_LLM"
    form_numbers: List[str] = Field(default_factory=list)
    tax_year: Optional[int] = None
    detected_years: List[int] = Field(default_factory=list)
    confusion_candidates: List[str] = Field(default_factory=list)
    issuer: Optional[str] = None
    text_length: int = 0


class ClassificationStamp(BaseModel):
    document_id: str
    routing: DocTypeRouting
    calibration: CalibrationResult
    extraction_engine: str
    needs_review: bool
    status: str
