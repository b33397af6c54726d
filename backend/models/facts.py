"""
Financial fact schemas: the typed, dated, sourced data points every spread and ratio is computed from.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Source document id for facts the system derives itself, and owner id for deal-scoped rows.
SENTINEL_UUID = "00000000-0000-0000-0000-000000000000"


class OwnerType(str, Enum):
    DEAL = "DEAL"
    PERSONAL = "PERSONAL"
    GLOBAL = "GLOBAL"


class FactSourceType(str, Enum):
    STRUCTURAL = "STRUCTURAL"
    DOC_AI = "DOC_AI"
    MANUAL = "MANUAL"


class FactProvenance(BaseModel):
    source_type: FactSourceType
    source_ref: str
    as_of_date: Optional[date] = None
    extractor: Optional[str] = None
    calc: Optional[str] = None
    citations: List[Dict[str, Any]] = Field(default_factory=list)


class FactInput(BaseModel):
    """What a writer hands to the fact store. Numbers are sanitized on the way in."""
    deal_id: str
    bank_id: str
    source_document_id: str = SENTINEL_UUID
    fact_type: str
    fact_key: str
    fact_value_num: Optional[float] = None
    fact_value_text: Optional[str] = None
    fact_period_start: Optional[date] = None
    fact_period_end: Optional[date] = None
    currency: str = "USD"
    confidence: float = 1.0
    provenance: FactProvenance
    owner_type: OwnerType = OwnerType.DEAL
    owner_entity_id: str = SENTINEL_UUID

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        try:
            f = float(v)
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(f):
            return 0.0
        return min(1.0, max(0.0, f))


class Fact(BaseModel):
    """A stored fact as read back for computation."""
    id: str
    deal_id: str
    bank_id: str
    source_document_id: str = SENTINEL_UUID
    fact_type: str
    fact_key: str
    fact_value_num: Optional[float] = None
    fact_value_text: Optional[str] = None
    fact_period_start: Optional[date] = None
    fact_period_end: Optional[date] = None
    currency: str = "USD"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    provenance: Dict[str, Any] = Field(default_factory=dict)
    owner_type: OwnerType = OwnerType.DEAL
    owner_entity_id: str = SENTINEL_UUID
    created_at: datetime

    @field_validator("fact_value_num", mode="before")
    @classmethod
    def _finite_or_none(cls, v: Any) -> Optional[float]:
        if v is None:
            return None
        f = float(v)
        return f if math.isfinite(f) else None


class FactRef(BaseModel):
    """Pointer from a rendered cell back to one input fact."""
    fact_id: Optional[str] = None
    fact_type: str
    fact_key: str
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    source_document_id: Optional[str] = None


class RentRollRowIn(BaseModel):
    id: str
    unit_id: str
    tenant_name: Optional[str] = None
    occupancy_status: Optional[str] = None
    sqft: Optional[float] = None
    monthly_rent: Optional[float] = None
    annual_rent: Optional[float] = None
    market_rent_monthly: Optional[float] = None
    lease_start: Optional[date] = None
    lease_end: Optional[date] = None
    as_of_date: Optional[date] = None
    notes: Optional[str] = None
    source_document_id: Optional[str] = None


class ExistingDebtRow(BaseModel):
    id: str
    lender: Optional[str] = None
    annual_debt_service: Optional[float] = None
    is_being_refinanced: bool = False
    include_in_global: bool = True
