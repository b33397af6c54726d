"""
Response models for rendered spreads and the spread job API.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .facts import FactRef


class CellProvenance(BaseModel):
    """Where one cell value came from: a fact, a rent roll row, or a formula over other cells."""
    source: str
    inputs: List[FactRef] = Field(default_factory=list)
    formula: Optional[str] = None
    row_id: Optional[str] = None
    source_document_id: Optional[str] = None


class SpreadCell(BaseModel):
    value: Any = None
    display: Optional[str] = None
    as_of_date: Optional[date] = None
    inputs: List[FactRef] = Field(default_factory=list)
    formula: Optional[str] = None
    source: Optional[str] = None
    value_by_col: Dict[str, Any] = Field(default_factory=dict)
    display_by_col: Dict[str, Optional[str]] = Field(default_factory=dict)
    provenance_by_col: Dict[str, CellProvenance] = Field(default_factory=dict)


class SpreadColumn(BaseModel):
    key: str
    label: str
    kind: str = "other"  # month | ytd | prior_ytd | ttm | period | attribute | other
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class SpreadRow(BaseModel):
    key: str
    label: str
    section: Optional[str] = None
    formula: Optional[str] = None
    values: List[SpreadCell] = Field(default_factory=list)
    notes: Optional[str] = None


class RenderedSpread(BaseModel):
    schema_version: int = 1
    spread_type: str
    title: str
    status: str = "ready"
    template_version: Optional[int] = None
    generated_at: datetime
    as_of_date: Optional[date] = None
    columns: List[str] = Field(default_factory=list)
    columns_v2: List[SpreadColumn] = Field(default_factory=list)
    rows: List[SpreadRow] = Field(default_factory=list)
    totals: Dict[str, Optional[float]] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None

    def row(self, key: str) -> Optional[SpreadRow]:
        for r in self.rows:
            if r.key == key:
                return r
        return None

    def cell_value(self, row_key: str, col_key: Optional[str] = None) -> Any:
        """Value of row_key in col_key, or the row's single value when col_key is omitted."""
        r = self.row(row_key)
        if r is None or not r.values:
            return None
        cell = r.values[0]
        if col_key is None:
            return cell.value
        return cell.value_by_col.get(col_key)


class SpreadRecomputeRequest(BaseModel):
    spread_types: List[str] = Field(min_length=1)
    source_document_id: Optional[str] = None
    trigger: str = "api"


class EnqueueResult(BaseModel):
    ok: bool = True
    enqueued: List[str] = Field(default_factory=list)
    skipped_invalid: List[str] = Field(default_factory=list)
    waiting_on_facts: List[str] = Field(default_factory=list)
    merged: bool = False
    job_id: Optional[str] = None
    error: Optional[str] = None


class OrchestrationResult(BaseModel):
    run_id: str
    status: str
    enqueue: Optional[EnqueueResult] = None
    debounced_by: Optional[str] = None


class SpreadSummary(BaseModel):
    spread_type: str
    spread_version: int
    owner_type: str
    owner_entity_id: str
    status: str
    error: Optional[str] = None
    error_code: Optional[str] = None
    updated_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    rendered: Optional[RenderedSpread] = None


class SpreadJobSummary(BaseModel):
    id: str
    status: str
    requested_spread_types: List[str] = Field(default_factory=list)
    attempt: int = 0
    attempted_count: int = 0
    rendered_count: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class SpreadStatusResponse(BaseModel):
    deal_id: str
    active_job: Optional[SpreadJobSummary] = None
    spreads: List[SpreadSummary] = Field(default_factory=list)
