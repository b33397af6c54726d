"""
Periodic healing pass for spreads and jobs that a crashed or stalled worker left behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from audit import emit_system_event
from config import SPREAD_GENERATING_CRITICAL_MIN, SPREAD_GENERATING_WARNING_MIN, SPREAD_ORPHAN_LEASE_MIN
from db.models import DealSpread, SpreadJob
from engine.status import JobStatus, SpreadStatus, assert_job_transition, assert_spread_transition

_LOG = logging.getLogger("uvicorn.error")

AUTO_HEALED = "SPREAD_AUTO_HEALED"


@dataclass
class ObserverTickResult:
    slow: List[str] = field(default_factory=list)
    healed: List[str] = field(default_factory=list)
    orphans_reset: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"slow": len(self.slow), "healed": len(self.healed), "orphans_reset": len(self.orphans_reset)}


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def _heal_spread(db: Session, row: DealSpread, now: datetime) -> bool:
    age = _minutes(now - (row.started_at or row.updated_at or now))
    message = f"[observer] stuck in generating for {age} minutes; auto-healed"
    assert_spread_transition(SpreadStatus.generating.value, SpreadStatus.error.value)
    n = (
        db.query(DealSpread)
        .filter(
            DealSpread.id == row.id,
            DealSpread.status == SpreadStatus.generating.value,
            DealSpread.last_run_id == row.last_run_id,
        )
        .update(
            {
                DealSpread.status: SpreadStatus.error.value,
                DealSpread.error: message,
                DealSpread.error_code: AUTO_HEALED,
                DealSpread.finished_at: now,
                DealSpread.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if n != 1:
        return False
    _LOG.warning("SPREAD_AUTO_HEALED deal_id=%s spread_type=%s version=%s minutes=%s", row.deal_id, row.spread_type, row.spread_version, age)
    emit_system_event(
        db, AUTO_HEALED, severity="error", deal_id=row.deal_id, bank_id=row.bank_id, error_code=AUTO_HEALED,
        payload={"spread_id": row.id, "spread_type": row.spread_type, "spread_version": row.spread_version, "minutes": age},
        source_system="observer", subject_id=row.id,
    )
    return True


def _reset_orphan(db: Session, job: SpreadJob, now: datetime) -> bool:
    owner = job.lease_owner
    assert_job_transition(JobStatus.RUNNING.value, JobStatus.QUEUED.value)
    n = (
        db.query(SpreadJob)
        .filter(
            SpreadJob.id == job.id,
            SpreadJob.status == JobStatus.RUNNING.value,
            SpreadJob.lease_owner == owner,
        )
        .update(
            {
                SpreadJob.status: JobStatus.QUEUED.value,
                SpreadJob.lease_owner: None,
                SpreadJob.leased_until: None,
                SpreadJob.next_run_at: now,
                SpreadJob.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if n != 1:
        return False
    _LOG.warning("SPREAD_JOB_ORPHAN_RESET job_id=%s deal_id=%s lease_owner=%s", job.id, job.deal_id, owner)
    emit_system_event(
        db, "SPREAD_JOB_ORPHAN_RESET", severity="warning", deal_id=job.deal_id, bank_id=job.bank_id,
        payload={"job_id": job.id, "lease_owner": owner, "attempt": job.attempt},
        source_system="observer", subject_id=job.id,
    )
    return True


def run_spread_observer_tick(db: Session, now: Optional[datetime] = None) -> ObserverTickResult:
    now = now or datetime.utcnow()
    result = ObserverTickResult()
    warn_before = now - timedelta(minutes=SPREAD_GENERATING_WARNING_MIN)
    critical_before = now - timedelta(minutes=SPREAD_GENERATING_CRITICAL_MIN)

    generating = (
        db.query(DealSpread)
        .filter(DealSpread.status == SpreadStatus.generating.value, DealSpread.started_at < warn_before)
        .all()
    )
    for row in generating:
        if row.started_at < critical_before:
            if _heal_spread(db, row, now):
                result.healed.append(row.id)
            continue
        result.slow.append(row.id)
        emit_system_event(
            db, "SPREAD_GENERATING_SLOW", severity="warning", deal_id=row.deal_id, bank_id=row.bank_id,
            payload={"spread_id": row.id, "spread_type": row.spread_type, "minutes": _minutes(now - row.started_at)},
            source_system="observer", subject_id=row.id,
        )

    orphan_before = now - timedelta(minutes=SPREAD_ORPHAN_LEASE_MIN)
    orphans = (
        db.query(SpreadJob)
        .filter(
            SpreadJob.status == JobStatus.RUNNING.value,
            SpreadJob.leased_until < now,
            SpreadJob.updated_at < orphan_before,
        )
        .all()
    )
    for job in orphans:
        if _reset_orphan(db, job, now):
            result.orphans_reset.append(job.id)

    if result.slow or result.healed or result.orphans_reset:
        _LOG.info("SPREAD_OBSERVER_TICK slow=%s healed=%s orphans_reset=%s", len(result.slow), len(result.healed), len(result.orphans_reset))
    return result
