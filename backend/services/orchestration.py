"""
Debounced entry point for spread recomputes. Bursts of triggers for one deal (a batch upload,
several extractions finishing together) collapse into a single enqueue.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from config import SPREAD_DEBOUNCE_SECONDS
from db.models import OrchestrationRun
from models.spreads import OrchestrationResult
from services.spread_jobs import enqueue_spread_recompute, normalize_spread_types

_LOG = logging.getLogger("uvicorn.error")

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_DEBOUNCED = "debounced"
RUN_FAILED = "failed"


def _recent_run(db: Session, deal_id: str, bank_id: str, now: datetime, window_seconds: int) -> Optional[OrchestrationRun]:
    since = now - timedelta(seconds=window_seconds)
    return (
        db.query(OrchestrationRun)
        .filter(
            OrchestrationRun.deal_id == deal_id,
            OrchestrationRun.bank_id == bank_id,
            OrchestrationRun.started_at >= since,
            or_(OrchestrationRun.status == RUN_RUNNING, OrchestrationRun.status == RUN_COMPLETED),
        )
        .order_by(OrchestrationRun.started_at.desc())
        .first()
    )


def orchestrate_deal_spreads(
    db: Session,
    deal_id: str,
    bank_id: str,
    spread_types: Iterable[str],
    trigger: str = "api",
    source_document_id: Optional[str] = None,
    now: Optional[datetime] = None,
    window_seconds: int = SPREAD_DEBOUNCE_SECONDS,
) -> OrchestrationResult:
    now = now or datetime.utcnow()
    types = normalize_spread_types(spread_types)
    run = OrchestrationRun(
        id=str(uuid.uuid4()),
        deal_id=deal_id,
        bank_id=bank_id,
        trigger=trigger,
        spread_types=types,
        started_at=now,
    )

    recent = _recent_run(db, deal_id, bank_id, now, window_seconds)
    if recent is not None:
        run.status = RUN_DEBOUNCED
        run.debounced_by = recent.id
        run.finished_at = now
        db.add(run)
        db.commit()
        _LOG.info("SPREAD_ORCHESTRATION_DEBOUNCED deal_id=%s run_id=%s by=%s trigger=%s", deal_id, run.id, recent.id, trigger)
        return OrchestrationResult(run_id=run.id, status=RUN_DEBOUNCED, debounced_by=recent.id)

    run.status = RUN_RUNNING
    db.add(run)
    db.commit()
    run_id = run.id

    try:
        enqueue = enqueue_spread_recompute(
            db, deal_id, bank_id, types,
            source_document_id=source_document_id,
            meta={"trigger": trigger, "orchestration_run_id": run_id},
            now=now,
        )
    except Exception as e:
        db.rollback()
        _LOG.exception("SPREAD_ORCHESTRATION_FAILED deal_id=%s run_id=%s", deal_id, run_id)
        db.query(OrchestrationRun).filter(OrchestrationRun.id == run_id).update(
            {OrchestrationRun.status: RUN_FAILED, OrchestrationRun.error: str(e)[:500], OrchestrationRun.finished_at: now},
            synchronize_session=False,
        )
        db.commit()
        raise

    status = RUN_COMPLETED if enqueue.ok else RUN_FAILED
    db.query(OrchestrationRun).filter(OrchestrationRun.id == run_id).update(
        {OrchestrationRun.status: status, OrchestrationRun.error: enqueue.error, OrchestrationRun.finished_at: now},
        synchronize_session=False,
    )
    db.commit()
    _LOG.info("SPREAD_ORCHESTRATION deal_id=%s run_id=%s status=%s job_id=%s", deal_id, run_id, status, enqueue.job_id)
    return OrchestrationResult(run_id=run_id, status=status, enqueue=enqueue)
