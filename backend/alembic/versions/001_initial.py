"""Initial schema: documents, virus/ocr caches, facts, rent roll, existing debt, spreads, spread jobs, events

Revision ID: 001
Revises:
Create Date: 2026-01-01 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SENTINEL_UUID = "00000000-0000-0000-0000-000000000000"


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("original_filename", sa.String(), nullable=True),
        sa.Column("storage_key", sa.String(), nullable=True),
        sa.Column("mime_type", sa.String(), nullable=True),
        sa.Column("sha256", sa.String(64), nullable=True),
        sa.Column("document_type", sa.String(), nullable=True),
        sa.Column("canonical_type", sa.String(), nullable=True),
        sa.Column("routing_class", sa.String(), nullable=True),
        sa.Column("classification_confidence", sa.Float(), nullable=True),
        sa.Column("confidence_band", sa.String(), nullable=True),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("virus_status", sa.String(), nullable=False, server_default="unknown"),
        sa.Column("virus_engine", sa.String(), nullable=True),
        sa.Column("virus_signature", sa.String(), nullable=True),
        sa.Column("virus_scanned_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_deal_id", "documents", ["deal_id"])
    op.create_index("ix_documents_bank_sha256", "documents", ["bank_id", "sha256"])

    op.create_table(
        "virus_scan_cache",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("signature", sa.String(), nullable=True),
        sa.Column("engine", sa.String(), nullable=True),
        sa.Column("scanned_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bank_id", "sha256", name="uq_virus_scan_cache_bank_sha256"),
    )

    op.create_table(
        "ocr_results",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("document_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=True),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column("raw_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ocr_results_document_id", "ocr_results", ["document_id"])

    op.create_table(
        "financial_facts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("source_document_id", sa.String(), nullable=False, server_default=SENTINEL_UUID),
        sa.Column("fact_type", sa.String(), nullable=False),
        sa.Column("fact_key", sa.String(), nullable=False),
        sa.Column("fact_value_num", sa.Float(), nullable=True),
        sa.Column("fact_value_text", sa.Text(), nullable=True),
        sa.Column("fact_period_start", sa.Date(), nullable=True),
        sa.Column("fact_period_end", sa.Date(), nullable=True),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("provenance", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("owner_type", sa.String(), nullable=False, server_default="DEAL"),
        sa.Column("owner_entity_id", sa.String(), nullable=False, server_default=SENTINEL_UUID),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_financial_facts_deal_type", "financial_facts", ["deal_id", "bank_id", "fact_type"])

    op.create_table(
        "rent_roll_rows",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("source_document_id", sa.String(), nullable=True),
        sa.Column("as_of_date", sa.Date(), nullable=True),
        sa.Column("unit_id", sa.String(), nullable=False),
        sa.Column("tenant_name", sa.String(), nullable=True),
        sa.Column("occupancy_status", sa.String(), nullable=True),
        sa.Column("sqft", sa.Float(), nullable=True),
        sa.Column("monthly_rent", sa.Float(), nullable=True),
        sa.Column("annual_rent", sa.Float(), nullable=True),
        sa.Column("market_rent_monthly", sa.Float(), nullable=True),
        sa.Column("lease_start", sa.Date(), nullable=True),
        sa.Column("lease_end", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rent_roll_rows_deal", "rent_roll_rows", ["deal_id", "bank_id"])

    op.create_table(
        "existing_debts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("lender", sa.String(), nullable=True),
        sa.Column("annual_debt_service", sa.Float(), nullable=True),
        sa.Column("is_being_refinanced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("include_in_global", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "deal_spreads",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("spread_type", sa.String(), nullable=False),
        sa.Column("spread_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("owner_type", sa.String(), nullable=False, server_default="DEAL"),
        sa.Column("owner_entity_id", sa.String(), nullable=False, server_default=SENTINEL_UUID),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("rendered_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("last_run_id", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "deal_id", "bank_id", "spread_type", "spread_version", "owner_type", "owner_entity_id",
            name="uq_deal_spreads_key",
        ),
    )
    op.create_index("ix_deal_spreads_status_started", "deal_spreads", ["status", "started_at"])

    op.create_table(
        "spread_jobs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="QUEUED"),
        sa.Column("requested_spread_types", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("source_document_id", sa.String(), nullable=True),
        sa.Column("meta", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lease_owner", sa.String(), nullable=True),
        sa.Column("leased_until", sa.DateTime(), nullable=True),
        sa.Column("next_run_at", sa.DateTime(), nullable=True),
        sa.Column("attempted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rendered_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_spread_jobs_active_deal",
        "spread_jobs",
        ["deal_id", "bank_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('QUEUED', 'RUNNING')"),
    )
    op.create_index("ix_spread_jobs_status_next_run", "spread_jobs", ["status", "next_run_at"])

    op.create_table(
        "spread_orchestration_runs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("deal_id", sa.String(), nullable=False),
        sa.Column("bank_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("trigger", sa.String(), nullable=True),
        sa.Column("spread_types", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("debounced_by", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_spread_orchestration_runs_deal", "spread_orchestration_runs", ["deal_id", "started_at"])

    op.create_table(
        "system_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False, server_default="info"),
        sa.Column("source_system", sa.String(), nullable=False, server_default="spreads"),
        sa.Column("deal_id", sa.String(), nullable=True),
        sa.Column("bank_id", sa.String(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_system_events_deal_type", "system_events", ["deal_id", "event_type"])


def downgrade() -> None:
    op.drop_index("ix_system_events_deal_type", table_name="system_events")
    op.drop_table("system_events")
    op.drop_index("ix_spread_orchestration_runs_deal", table_name="spread_orchestration_runs")
    op.drop_table("spread_orchestration_runs")
    op.drop_index("ix_spread_jobs_status_next_run", table_name="spread_jobs")
    op.drop_index("uq_spread_jobs_active_deal", table_name="spread_jobs")
    op.drop_table("spread_jobs")
    op.drop_index("ix_deal_spreads_status_started", table_name="deal_spreads")
    op.drop_table("deal_spreads")
    op.drop_table("existing_debts")
    op.drop_index("ix_rent_roll_rows_deal", table_name="rent_roll_rows")
    op.drop_table("rent_roll_rows")
    op.drop_index("ix_financial_facts_deal_type", table_name="financial_facts")
    op.drop_table("financial_facts")
    op.drop_index("ix_ocr_results_document_id", table_name="ocr_results")
    op.drop_table("ocr_results")
    op.drop_table("virus_scan_cache")
    op.drop_index("ix_documents_bank_sha256", table_name="documents")
    op.drop_index("ix_documents_deal_id", table_name="documents")
    op.drop_table("documents")
