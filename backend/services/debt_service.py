"""
Recompute a deal's debt-service quantities and persist them as FINANCIAL_ANALYSIS facts.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from engine.debt_service import DebtServiceSummary, aggregate_debt_service, empty_summary
from engine.facts import is_number
from models.facts import FactInput, FactProvenance, FactSourceType
from services.fact_store import load_existing_debts, load_facts, write_fact

_LOG = logging.getLogger("uvicorn.error")

ANALYSIS_FACT_TYPE = "FINANCIAL_ANALYSIS"


def recompute_debt_service(
    db: Session, deal_id: str, bank_id: str, now: Optional[datetime] = None
) -> DebtServiceSummary:
    """Never raises. On a storage error the summary comes back with every quantity None."""
    now = now or datetime.utcnow()
    try:
        facts = load_facts(db, deal_id, bank_id)
        summary = aggregate_debt_service(facts, load_existing_debts(db, deal_id, bank_id))
        for q in summary.quantities():
            if not is_number(q.value):
                continue
            write_fact(
                db,
                FactInput(
                    deal_id=deal_id,
                    bank_id=bank_id,
                    fact_type=ANALYSIS_FACT_TYPE,
                    fact_key=q.fact_key,
                    fact_value_num=q.value,
                    confidence=1.0,
                    provenance=FactProvenance(
                        source_type=FactSourceType.STRUCTURAL,
                        source_ref="debt_service_aggregator",
                        as_of_date=now.date(),
                        calc=q.calc,
                        citations=[ref.model_dump(mode="json") for ref in q.inputs],
                    ),
                ),
                idempotent=True,
                now=now,
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        _LOG.warning("DEBT_SERVICE_FAILED deal_id=%s err=%s", deal_id, str(e)[:200])
        return empty_summary()
    _LOG.info(
        "DEBT_SERVICE deal_id=%s total=%s dscr=%s gcf_dscr=%s",
        deal_id, summary.total.value, summary.dscr.value, summary.gcf_dscr.value,
    )
    return summary
