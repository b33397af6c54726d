"""
Financial fact store: append-only writes, idempotent upserts for derived facts, and typed reads.
"""

from __future__ import annotations

import hashlib
import logging
import math
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from db.models import ExistingDebt, FinancialFact, RentRollRow
from models.facts import ExistingDebtRow, Fact, FactInput, RentRollRowIn

_LOG = logging.getLogger("uvicorn.error")


def idempotency_key_for(fi: FactInput) -> str:
    parts = [
        fi.deal_id,
        fi.bank_id,
        fi.source_document_id,
        fi.fact_type,
        fi.fact_key,
        fi.fact_period_start.isoformat() if fi.fact_period_start else "",
        fi.fact_period_end.isoformat() if fi.fact_period_end else "",
        fi.owner_type.value,
        fi.owner_entity_id,
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def _dialect_insert(db: Session):
    name = db.get_bind().dialect.name
    return postgresql.insert if name == "postgresql" else sqlite.insert


def _sanitized_value(fi: FactInput) -> Optional[float]:
    v = fi.fact_value_num
    if v is None:
        return None
    if not math.isfinite(v):
        _LOG.warning(
            "FACT_NON_FINITE deal_id=%s fact_type=%s fact_key=%s value=%r stored=null",
            fi.deal_id, fi.fact_type, fi.fact_key, v,
        )
        return None
    return float(v)


def write_fact(db: Session, fi: FactInput, idempotent: bool = False, now: Optional[datetime] = None) -> str:
    """
    Persist one fact and return its id. Append-only unless idempotent, in which case a fact with the
    same composite key is updated in place.
    """
    now = now or datetime.utcnow()
    values = dict(
        deal_id=fi.deal_id,
        bank_id=fi.bank_id,
        source_document_id=fi.source_document_id,
        fact_type=fi.fact_type,
        fact_key=fi.fact_key,
        fact_value_num=_sanitized_value(fi),
        fact_value_text=fi.fact_value_text,
        fact_period_start=fi.fact_period_start,
        fact_period_end=fi.fact_period_end,
        currency=fi.currency,
        confidence=fi.confidence,
        provenance=fi.provenance.model_dump(mode="json"),
        owner_type=fi.owner_type.value,
        owner_entity_id=fi.owner_entity_id,
        created_at=now,
    )
    if not idempotent:
        fact_id = str(uuid.uuid4())
        db.add(FinancialFact(id=fact_id, **values))
        db.flush()
        return fact_id

    key = idempotency_key_for(fi)
    insert = _dialect_insert(db)
    stmt = insert(FinancialFact).values(id=str(uuid.uuid4()), idempotency_key=key, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["idempotency_key"],
        set_={
            "fact_value_num": stmt.excluded.fact_value_num,
            "fact_value_text": stmt.excluded.fact_value_text,
            "confidence": stmt.excluded.confidence,
            "provenance": stmt.excluded.provenance,
            "created_at": stmt.excluded.created_at,
        },
    )
    db.execute(stmt)
    row = db.query(FinancialFact.id).filter(FinancialFact.idempotency_key == key).one()
    return row.id


def _to_fact(row: FinancialFact) -> Fact:
    return Fact(
        id=row.id,
        deal_id=row.deal_id,
        bank_id=row.bank_id,
        source_document_id=row.source_document_id,
        fact_type=row.fact_type,
        fact_key=row.fact_key,
        fact_value_num=row.fact_value_num,
        fact_value_text=row.fact_value_text,
        fact_period_start=row.fact_period_start,
        fact_period_end=row.fact_period_end,
        currency=row.currency or "USD",
        confidence=min(1.0, max(0.0, row.confidence if row.confidence is not None else 0.0)),
        provenance=row.provenance or {},
        owner_type=row.owner_type,
        owner_entity_id=row.owner_entity_id,
        created_at=row.created_at,
    )


def load_facts(db: Session, deal_id: str, bank_id: str, fact_types: Optional[Iterable[str]] = None) -> List[Fact]:
    q = db.query(FinancialFact).filter(FinancialFact.deal_id == deal_id, FinancialFact.bank_id == bank_id)
    if fact_types is not None:
        q = q.filter(FinancialFact.fact_type.in_(list(fact_types)))
    return [_to_fact(r) for r in q.all()]


def fact_types_present(db: Session, deal_id: str, bank_id: str) -> set:
    rows = (
        db.query(FinancialFact.fact_type)
        .filter(FinancialFact.deal_id == deal_id, FinancialFact.bank_id == bank_id)
        .distinct()
        .all()
    )
    return {r.fact_type for r in rows}


def load_rent_roll_rows(db: Session, deal_id: str, bank_id: str) -> List[RentRollRowIn]:
    rows = db.query(RentRollRow).filter(RentRollRow.deal_id == deal_id, RentRollRow.bank_id == bank_id).all()
    return [
        RentRollRowIn(
            id=r.id,
            unit_id=r.unit_id,
            tenant_name=r.tenant_name,
            occupancy_status=r.occupancy_status,
            sqft=r.sqft,
            monthly_rent=r.monthly_rent,
            annual_rent=r.annual_rent,
            market_rent_monthly=r.market_rent_monthly,
            lease_start=r.lease_start,
            lease_end=r.lease_end,
            as_of_date=r.as_of_date,
            notes=r.notes,
            source_document_id=r.source_document_id,
        )
        for r in rows
    ]


def has_rent_roll(db: Session, deal_id: str, bank_id: str) -> bool:
    return (
        db.query(RentRollRow.id)
        .filter(RentRollRow.deal_id == deal_id, RentRollRow.bank_id == bank_id)
        .first()
        is not None
    )


def load_existing_debts(db: Session, deal_id: str, bank_id: str) -> List[ExistingDebtRow]:
    rows = db.query(ExistingDebt).filter(ExistingDebt.deal_id == deal_id, ExistingDebt.bank_id == bank_id).all()
    return [
        ExistingDebtRow(
            id=r.id,
            lender=r.lender,
            annual_debt_service=r.annual_debt_service,
            is_being_refinanced=bool(r.is_being_refinanced),
            include_in_global=bool(r.include_in_global),
        )
        for r in rows
    ]
