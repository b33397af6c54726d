"""SQLAlchemy models for the underwriting pipeline. Use Alembic for migrations."""
from __future__ import annotations

from datetime import datetime
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from engine.status import DocumentStatus, JobStatus, SpreadStatus, VirusStatus
from models.facts import SENTINEL_UUID

from .session import Base

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")

_ACTIVE_JOB_WHERE = text("status IN ('QUEUED', 'RUNNING')")


class Document(Base):
    __tablename__ = "documents"

    id = Column(String, primary_key=True)
    deal_id = Column("deal_id", String, nullable=False, index=True)
    bank_id = Column("bank_id", String, nullable=False)
    original_filename = Column("original_filename", String, nullable=True)
    storage_key = Column("storage_key", String, nullable=True)
    mime_type = Column("mime_type", String, nullable=True)
    sha256 = Column(String(64), nullable=True)
    document_type = Column("document_type", String, nullable=True)
    canonical_type = Column("canonical_type", String, nullable=True)
    routing_class = Column("routing_class", String, nullable=True)
    classification_confidence = Column("classification_confidence", Float, nullable=True)
    confidence_band = Column("confidence_band", String, nullable=True)
    needs_review = Column("needs_review", Boolean, nullable=False, default=False)
    virus_status = Column("virus_status", String, nullable=False, default=VirusStatus.unknown.value)
    virus_engine = Column("virus_engine", String, nullable=True)
    virus_signature = Column("virus_signature", String, nullable=True)
    virus_scanned_at = Column("virus_scanned_at", DateTime, nullable=True)
    status = Column(String, nullable=False, default=DocumentStatus.pending.value)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)
    updated_at = Column("updated_at", DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ocr_results = relationship("OcrResult", back_populates="document")

    __table_args__ = (Index("ix_documents_bank_sha256", "bank_id", "sha256"),)


class VirusScanCache(Base):
    __tablename__ = "virus_scan_cache"

    id = Column(String, primary_key=True)
    bank_id = Column("bank_id", String, nullable=False)
    sha256 = Column(String(64), nullable=False)
    status = Column(String, nullable=False)
    signature = Column(String, nullable=True)
    engine = Column(String, nullable=True)
    scanned_at = Column("scanned_at", DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("bank_id", "sha256", name="uq_virus_scan_cache_bank_sha256"),)


class OcrResult(Base):
    __tablename__ = "ocr_results"

    id = Column(String, primary_key=True)
    document_id = Column("document_id", String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False)  # SUCCEEDED | FAILED | PENDING
    provider = Column(String, nullable=True)
    extracted_text = Column("extracted_text", Text, nullable=True)
    raw_json = Column("raw_json", JSONType, nullable=True)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)
    updated_at = Column("updated_at", DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    document = relationship("Document", back_populates="ocr_results")


class FinancialFact(Base):
    __tablename__ = "financial_facts"

    id = Column(String, primary_key=True)
    deal_id = Column("deal_id", String, nullable=False)
    bank_id = Column("bank_id", String, nullable=False)
    source_document_id = Column("source_document_id", String, nullable=False, default=SENTINEL_UUID)
    fact_type = Column("fact_type", String, nullable=False)
    fact_key = Column("fact_key", String, nullable=False)
    fact_value_num = Column("fact_value_num", Float, nullable=True)
    fact_value_text = Column("fact_value_text", Text, nullable=True)
    fact_period_start = Column("fact_period_start", Date, nullable=True)
    fact_period_end = Column("fact_period_end", Date, nullable=True)
    currency = Column(String, nullable=False, default="USD")
    confidence = Column(Float, nullable=False, default=1.0)
    provenance = Column(JSONType, nullable=False, default=dict)
    owner_type = Column("owner_type", String, nullable=False, default="DEAL")
    owner_entity_id = Column("owner_entity_id", String, nullable=False, default=SENTINEL_UUID)
    idempotency_key = Column("idempotency_key", String(64), nullable=True, unique=True)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_financial_facts_deal_type", "deal_id", "bank_id", "fact_type"),)


class RentRollRow(Base):
    __tablename__ = "rent_roll_rows"

    id = Column(String, primary_key=True)
    deal_id = Column("deal_id", String, nullable=False)
    bank_id = Column("bank_id", String, nullable=False)
    source_document_id = Column("source_document_id", String, nullable=True)
    as_of_date = Column("as_of_date", Date, nullable=True)
    unit_id = Column("unit_id", String, nullable=False)
    tenant_name = Column("tenant_name", String, nullable=True)
    occupancy_status = Column("occupancy_status", String, nullable=True)
    sqft = Column(Float, nullable=True)
    monthly_rent = Column("monthly_rent", Float, nullable=True)
    annual_rent = Column("annual_rent", Float, nullable=True)
    market_rent_monthly = Column("market_rent_monthly", Float, nullable=True)
    lease_start = Column("lease_start", Date, nullable=True)
    lease_end = Column("lease_end", Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_rent_roll_rows_deal", "deal_id", "bank_id"),)


class ExistingDebt(Base):
    __tablename__ = "existing_debts"

    id = Column(String, primary_key=True)
    deal_id = Column("deal_id", String, nullable=False)
    bank_id = Column("bank_id", String, nullable=False)
    lender = Column(String, nullable=True)
    annual_debt_service = Column("annual_debt_service", Float, nullable=True)
    is_being_refinanced = Column("is_being_refinanced", Boolean, nullable=False, default=False)
    include_in_global = Column("include_in_global", Boolean, nullable=False, default=True)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)


class DealSpread(Base):
    __tablename__ = "deal_spreads"

    id = Column(String, primary_key=True)
    deal_id = Column("deal_id", String, nullable=False)
    bank_id = Column("bank_id", String, nullable=False)
    spread_type = Column("spread_type", String, nullable=False)
    spread_version = Column("spread_version", Integer, nullable=False, default=1)
    owner_type = Column("owner_type", String, nullable=False, default="DEAL")
    owner_entity_id = Column("owner_entity_id", String, nullable=False, default=SENTINEL_UUID)
    status = Column(String, nullable=False, default=SpreadStatus.queued.value)
    rendered_json = Column("rendered_json", JSONType, nullable=True)
    error = Column(Text, nullable=True)
    error_code = Column("error_code", String, nullable=True)
    last_run_id = Column("last_run_id", String, nullable=True)
    started_at = Column("started_at", DateTime, nullable=True)
    finished_at = Column("finished_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)
    updated_at = Column("updated_at", DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "deal_id",
            "bank_id",
            "spread_type",
            "spread_version",
            "owner_type",
            "owner_entity_id",
            name="uq_deal_spreads_key",
        ),
    )


class SpreadJob(Base):
    __tablename__ = "spread_jobs"

    id = Column(String, primary_key=True)
    deal_id = Column("deal_id", String, nullable=False)
    bank_id = Column("bank_id", String, nullable=False)
    status = Column(String, nullable=False, default=JobStatus.QUEUED.value)
    requested_spread_types = Column("requested_spread_types", JSONType, nullable=False, default=list)
    source_document_id = Column("source_document_id", String, nullable=True)
    meta = Column(JSONType, nullable=True)
    attempt = Column(Integer, nullable=False, default=0)
    lease_owner = Column("lease_owner", String, nullable=True)
    leased_until = Column("leased_until", DateTime, nullable=True)
    next_run_at = Column("next_run_at", DateTime, default=datetime.utcnow)
    attempted_count = Column("attempted_count", Integer, nullable=False, default=0)
    rendered_count = Column("rendered_count", Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    error_code = Column("error_code", String, nullable=True)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)
    updated_at = Column("updated_at", DateTime, default=datetime.utcnow)
    started_at = Column("started_at", DateTime, nullable=True)
    finished_at = Column("finished_at", DateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_spread_jobs_active_deal",
            "deal_id",
            "bank_id",
            unique=True,
            postgresql_where=_ACTIVE_JOB_WHERE,
            sqlite_where=_ACTIVE_JOB_WHERE,
        ),
    )


class OrchestrationRun(Base):
    __tablename__ = "spread_orchestration_runs"

    id = Column(String, primary_key=True)
    deal_id = Column("deal_id", String, nullable=False)
    bank_id = Column("bank_id", String, nullable=False)
    status = Column(String, nullable=False)  # running | completed | debounced | failed
    trigger = Column(String, nullable=True)
    spread_types = Column("spread_types", JSONType, nullable=True)
    debounced_by = Column("debounced_by", String, nullable=True)
    error = Column(Text, nullable=True)
    started_at = Column("started_at", DateTime, default=datetime.utcnow)
    finished_at = Column("finished_at", DateTime, nullable=True)

    __table_args__ = (Index("ix_spread_orchestration_runs_deal", "deal_id", "started_at"),)


class SystemEvent(Base):
    __tablename__ = "system_events"

    id = Column(String, primary_key=True)
    event_type = Column("event_type", String, nullable=False)
    severity = Column(String, nullable=False, default="info")
    source_system = Column("source_system", String, nullable=False, default="spreads")
    deal_id = Column("deal_id", String, nullable=True)
    bank_id = Column("bank_id", String, nullable=True)
    error_code = Column("error_code", String, nullable=True)
    payload = Column(JSONType, nullable=True)
    created_at = Column("created_at", DateTime, default=datetime.utcnow)
