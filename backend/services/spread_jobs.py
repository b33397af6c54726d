"""
Spread job orchestration: enqueue, claim, render, complete.

Workers coordinate only through conditional UPDATEs on spread_jobs and deal_spreads.
A claim that affects zero rows means another worker won; it is an outcome, not an error.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from audit import emit_system_event
from config import SPREAD_JOB_LEASE_SECONDS, SPREAD_JOB_MAX_ATTEMPTS
from db.models import DealSpread, SpreadJob
from engine.facts import filter_facts
from engine.spreads import SPREAD_TEMPLATES, error_spread, render_spread, templates_by_priority
from engine.spreads.base import SpreadTemplate
from engine.status import (
    ACTIVE_JOB_STATUSES,
    JobStatus,
    SpreadStatus,
    assert_job_transition,
    assert_spread_transition,
)
from models.facts import Fact, FactInput, FactProvenance, FactSourceType, SENTINEL_UUID
from models.spreads import EnqueueResult, RenderedSpread
from services.debt_service import ANALYSIS_FACT_TYPE, recompute_debt_service
from services.fact_store import fact_types_present, has_rent_roll, load_facts, load_rent_roll_rows, write_fact

_LOG = logging.getLogger("uvicorn.error")

Clock = Callable[[], datetime]

ZERO_RENDERED = "SPREADS_ZERO_RENDERED"
JOB_EXCEPTION = "SPREAD_JOB_EXCEPTION"
RETRY_BASE_SECONDS = 30


class ClaimOutcome(str, enum.Enum):
    CLAIMED = "CLAIMED"
    RESUMED = "RESUMED"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"


@dataclass(frozen=True)
class SpreadKey:
    deal_id: str
    bank_id: str
    spread_type: str
    spread_version: int
    owner_type: str = "DEAL"
    owner_entity_id: str = SENTINEL_UUID


@dataclass
class JobOutcome:
    job_id: str
    status: str
    attempted: int = 0
    rendered: int = 0
    skipped: int = 0
    error_code: Optional[str] = None
    error: Optional[str] = None


def normalize_spread_types(spread_types: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for t in spread_types:
        norm = (t or "").strip().upper()
        if norm and norm not in seen:
            seen.append(norm)
    return seen


def _insert_for(db: Session):
    return postgresql.insert if db.get_bind().dialect.name == "postgresql" else sqlite.insert


def _key_filter(q, key: SpreadKey):
    return q.filter(
        DealSpread.deal_id == key.deal_id,
        DealSpread.bank_id == key.bank_id,
        DealSpread.spread_type == key.spread_type,
        DealSpread.spread_version == key.spread_version,
        DealSpread.owner_type == key.owner_type,
        DealSpread.owner_entity_id == key.owner_entity_id,
    )


def owner_targets(template: SpreadTemplate, facts: List[Fact]) -> List[Tuple[str, str]]:
    """(owner_type, owner_entity_id) pairs a template renders for. Personal templates render once per guarantor."""
    if template.owner_type == "DEAL":
        return [("DEAL", SENTINEL_UUID)]
    owners = set()
    for fact_type in template.prerequisite_fact_types:
        for f in filter_facts(facts, fact_type=fact_type, owner_type=template.owner_type):
            owners.add(f.owner_entity_id)
    return [(template.owner_type, o) for o in sorted(owners)]


def _latest_row(db: Session, deal_id: str, bank_id: str, spread_type: str, owner_type: str, owner_entity_id: str):
    return (
        db.query(DealSpread)
        .filter(
            DealSpread.deal_id == deal_id,
            DealSpread.bank_id == bank_id,
            DealSpread.spread_type == spread_type,
            DealSpread.owner_type == owner_type,
            DealSpread.owner_entity_id == owner_entity_id,
        )
        .order_by(DealSpread.spread_version.desc())
        .first()
    )


def next_spread_version(db: Session, deal_id: str, bank_id: str, spread_type: str, owner_type: str, owner_entity_id: str) -> int:
    """A still-queued newest row is reused; anything else (generating, ready, error) is superseded by newest + 1."""
    latest = _latest_row(db, deal_id, bank_id, spread_type, owner_type, owner_entity_id)
    if latest is None:
        return 1
    if latest.status == SpreadStatus.queued.value:
        return latest.spread_version
    return latest.spread_version + 1


def upsert_placeholder(db: Session, key: SpreadKey, now: datetime) -> None:
    """Create the queued row for key. Concurrent callers converge on the same row."""
    insert = _insert_for(db)
    stmt = insert(DealSpread).values(
        id=str(uuid.uuid4()),
        deal_id=key.deal_id,
        bank_id=key.bank_id,
        spread_type=key.spread_type,
        spread_version=key.spread_version,
        owner_type=key.owner_type,
        owner_entity_id=key.owner_entity_id,
        status=SpreadStatus.queued.value,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["deal_id", "bank_id", "spread_type", "spread_version", "owner_type", "owner_entity_id"],
        set_={"updated_at": now},
    )
    db.execute(stmt)


def _queue_placeholder(db: Session, deal_id: str, bank_id: str, spread_type: str, owner_type: str, owner_entity_id: str, now: datetime) -> SpreadKey:
    version = next_spread_version(db, deal_id, bank_id, spread_type, owner_type, owner_entity_id)
    key = SpreadKey(deal_id, bank_id, spread_type, version, owner_type, owner_entity_id)
    upsert_placeholder(db, key, now)
    return key


def _active_job(db: Session, deal_id: str, bank_id: str) -> Optional[SpreadJob]:
    return (
        db.query(SpreadJob)
        .filter(
            SpreadJob.deal_id == deal_id,
            SpreadJob.bank_id == bank_id,
            SpreadJob.status.in_(ACTIVE_JOB_STATUSES),
        )
        .order_by(SpreadJob.created_at)
        .first()
    )


def _merge_types(db: Session, job: SpreadJob, spread_types: List[str], now: datetime) -> SpreadJob:
    current = list(job.requested_spread_types or [])
    added = [t for t in spread_types if t not in current]
    if added:
        job.requested_spread_types = current + added
        job.updated_at = now
    db.commit()
    return job


def enqueue_spread_recompute(
    db: Session,
    deal_id: str,
    bank_id: str,
    spread_types: Iterable[str],
    source_document_id: Optional[str] = None,
    meta: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> EnqueueResult:
    now = now or datetime.utcnow()
    requested = normalize_spread_types(spread_types)
    valid = [t for t in requested if t in SPREAD_TEMPLATES]
    invalid = [t for t in requested if t not in SPREAD_TEMPLATES]
    result = EnqueueResult(skipped_invalid=invalid)

    if invalid:
        _LOG.warning("INVALID_SPREAD_TYPES_SKIPPED deal_id=%s types=%s", deal_id, ",".join(invalid))
        emit_system_event(
            db, "INVALID_SPREAD_TYPES_SKIPPED", severity="warning", deal_id=deal_id, bank_id=bank_id,
            error_code="INVALID_SPREAD_TYPES", payload={"invalid": invalid, "valid": valid},
        )

    present = fact_types_present(db, deal_id, bank_id)
    rent_roll = has_rent_roll(db, deal_id, bank_id)
    facts = load_facts(db, deal_id, bank_id) if any(SPREAD_TEMPLATES[t].owner_type != "DEAL" for t in valid) else []
    ready: List[str] = []
    for template in templates_by_priority(valid):
        targets = owner_targets(template, facts) if template.owner_type != "DEAL" else [("DEAL", SENTINEL_UUID)]
        if not template.is_ready(present, rent_roll) or not targets:
            result.waiting_on_facts.append(template.spread_type)
            continue
        for owner_type, owner_id in targets:
            _queue_placeholder(db, deal_id, bank_id, template.spread_type, owner_type, owner_id, now)
        ready.append(template.spread_type)
    db.commit()

    if result.waiting_on_facts:
        emit_system_event(
            db, "SPREAD_WAITING_ON_FACTS", deal_id=deal_id, bank_id=bank_id,
            payload={"spread_types": result.waiting_on_facts},
        )
    if not ready:
        result.ok = not requested or bool(result.waiting_on_facts)
        if not result.ok:
            result.error = "no_valid_spread_types"
        return result

    result.enqueued = ready
    job = _active_job(db, deal_id, bank_id)
    if job is not None:
        _merge_types(db, job, ready, now)
        result.merged = True
        result.job_id = job.id
    else:
        job = SpreadJob(
            id=str(uuid.uuid4()),
            deal_id=deal_id,
            bank_id=bank_id,
            status=JobStatus.QUEUED.value,
            requested_spread_types=ready,
            source_document_id=source_document_id,
            meta=meta or {},
            attempt=0,
            next_run_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(job)
        try:
            db.commit()
            result.job_id = job.id
        except IntegrityError:
            # lost the race against the one-active-job-per-deal index
            db.rollback()
            existing = _active_job(db, deal_id, bank_id)
            if existing is None:
                raise
            _merge_types(db, existing, ready, now)
            result.merged = True
            result.job_id = existing.id

    _LOG.info(
        "SPREAD_ENQUEUE deal_id=%s job_id=%s types=%s merged=%s waiting=%s",
        deal_id, result.job_id, ",".join(ready), result.merged, ",".join(result.waiting_on_facts) or "-",
    )
    return result


def claim_next_job(db: Session, worker_id: str, now: Optional[datetime] = None, lease_seconds: int = SPREAD_JOB_LEASE_SECONDS) -> Optional[SpreadJob]:
    """Move the oldest runnable QUEUED job to RUNNING for worker_id, or return None."""
    now = now or datetime.utcnow()
    assert_job_transition(JobStatus.QUEUED.value, JobStatus.RUNNING.value)
    candidates = (
        db.query(SpreadJob.id)
        .filter(SpreadJob.status == JobStatus.QUEUED.value, SpreadJob.next_run_at <= now)
        .order_by(SpreadJob.next_run_at, SpreadJob.created_at)
        .limit(10)
        .all()
    )
    for (job_id,) in candidates:
        n = (
            db.query(SpreadJob)
            .filter(SpreadJob.id == job_id, SpreadJob.status == JobStatus.QUEUED.value)
            .update(
                {
                    SpreadJob.status: JobStatus.RUNNING.value,
                    SpreadJob.lease_owner: worker_id,
                    SpreadJob.leased_until: now + timedelta(seconds=lease_seconds),
                    SpreadJob.attempt: SpreadJob.attempt + 1,
                    SpreadJob.started_at: now,
                    SpreadJob.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        if n == 1:
            _LOG.info("SPREAD_JOB_CLAIMED job_id=%s worker_id=%s", job_id, worker_id)
            return db.query(SpreadJob).filter(SpreadJob.id == job_id).one()
        _LOG.info("SPREAD_JOB_CLAIM_LOST job_id=%s worker_id=%s", job_id, worker_id)
    return None


def claim_spread(db: Session, key: SpreadKey, run_id: str, now: Optional[datetime] = None) -> ClaimOutcome:
    now = now or datetime.utcnow()
    assert_spread_transition(SpreadStatus.queued.value, SpreadStatus.generating.value)
    n = (
        _key_filter(db.query(DealSpread), key)
        .filter(DealSpread.status == SpreadStatus.queued.value)
        .update(
            {
                DealSpread.status: SpreadStatus.generating.value,
                DealSpread.last_run_id: run_id,
                DealSpread.started_at: now,
                DealSpread.updated_at: now,
                DealSpread.error: None,
                DealSpread.error_code: None,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if n == 1:
        return ClaimOutcome.CLAIMED

    assert_spread_transition(SpreadStatus.generating.value, SpreadStatus.generating.value)
    n = (
        _key_filter(db.query(DealSpread), key)
        .filter(DealSpread.status == SpreadStatus.generating.value, DealSpread.last_run_id == run_id)
        .update({DealSpread.started_at: now, DealSpread.updated_at: now}, synchronize_session=False)
    )
    db.commit()
    if n == 1:
        _LOG.info("SPREAD_CLAIM_RESUMED deal_id=%s spread_type=%s version=%s run_id=%s", key.deal_id, key.spread_type, key.spread_version, run_id)
        return ClaimOutcome.RESUMED

    _LOG.info("SPREAD_CLAIM_LOST deal_id=%s spread_type=%s version=%s run_id=%s", key.deal_id, key.spread_type, key.spread_version, run_id)
    return ClaimOutcome.ALREADY_CLAIMED


def complete_spread(db: Session, key: SpreadKey, run_id: str, rendered: RenderedSpread, now: Optional[datetime] = None) -> bool:
    """generating -> ready|error, only for the run that holds the row."""
    now = now or datetime.utcnow()
    target = SpreadStatus.ready if rendered.status == "ready" else SpreadStatus.error
    assert_spread_transition(SpreadStatus.generating.value, target.value)
    n = (
        _key_filter(db.query(DealSpread), key)
        .filter(DealSpread.status == SpreadStatus.generating.value, DealSpread.last_run_id == run_id)
        .update(
            {
                DealSpread.status: target.value,
                DealSpread.rendered_json: rendered.model_dump(mode="json"),
                DealSpread.error: rendered.error,
                DealSpread.error_code: rendered.error_code,
                DealSpread.finished_at: now,
                DealSpread.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if n != 1:
        _LOG.warning("SPREAD_COMPLETE_LOST deal_id=%s spread_type=%s version=%s run_id=%s", key.deal_id, key.spread_type, key.spread_version, run_id)
        return False
    return True


def _heartbeat(db: Session, job: SpreadJob, worker_id: str, now: datetime) -> bool:
    n = (
        db.query(SpreadJob)
        .filter(SpreadJob.id == job.id, SpreadJob.status == JobStatus.RUNNING.value, SpreadJob.lease_owner == worker_id)
        .update(
            {SpreadJob.leased_until: now + timedelta(seconds=SPREAD_JOB_LEASE_SECONDS), SpreadJob.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    return n == 1


def _finish_job(db: Session, job_id: str, worker_id: str, values: Dict, target: JobStatus) -> bool:
    assert_job_transition(JobStatus.RUNNING.value, target.value)
    values = dict(values)
    values[SpreadJob.status] = target.value
    n = (
        db.query(SpreadJob)
        .filter(SpreadJob.id == job_id, SpreadJob.status == JobStatus.RUNNING.value, SpreadJob.lease_owner == worker_id)
        .update(values, synchronize_session=False)
    )
    db.commit()
    return n == 1


def _backfill(db: Session, template: SpreadTemplate, rendered: RenderedSpread, key: SpreadKey, now: datetime) -> None:
    for fact_key, value in template.backfill(rendered).items():
        write_fact(
            db,
            FactInput(
                deal_id=key.deal_id,
                bank_id=key.bank_id,
                fact_type=ANALYSIS_FACT_TYPE,
                fact_key=fact_key,
                fact_value_num=value,
                fact_period_end=rendered.as_of_date,
                provenance=FactProvenance(
                    source_type=FactSourceType.STRUCTURAL,
                    source_ref=f"deal_spreads:{key.spread_type}:v{key.spread_version}",
                    as_of_date=rendered.as_of_date,
                    calc=f"{key.spread_type}.{fact_key}",
                ),
                owner_type=key.owner_type,
                owner_entity_id=key.owner_entity_id,
            ),
            idempotent=True,
            now=now,
        )
    db.commit()


def _render_target(db: Session, key: SpreadKey, template: SpreadTemplate, run_id: str, clock: Clock) -> Optional[bool]:
    """Render one (type, owner). True rendered, False errored, None when another run holds it."""
    outcome = claim_spread(db, key, run_id, clock())
    if outcome is ClaimOutcome.ALREADY_CLAIMED:
        return None
    try:
        facts = load_facts(db, key.deal_id, key.bank_id)
        rows = load_rent_roll_rows(db, key.deal_id, key.bank_id) if template.requires_rent_roll else []
        owner = None if key.owner_type == "DEAL" else key.owner_entity_id
        rendered = render_spread(key.spread_type, facts, rows, owner_entity_id=owner, deal_id=key.deal_id, now=clock())
    except Exception as e:
        db.rollback()
        _LOG.exception("SPREAD_RENDER_FAILED deal_id=%s spread_type=%s", key.deal_id, key.spread_type)
        rendered = error_spread(key.spread_type, f"Render failed: {str(e)[:300]}", "RENDER_EXCEPTION", clock())
    if not complete_spread(db, key, run_id, rendered, clock()):
        return None
    if rendered.status != "ready":
        return False
    _backfill(db, template, rendered, key, clock())
    return True


def _requeued_types(db: Session, job: SpreadJob, attempted_keys: set) -> List[str]:
    """Requested types that have a queued row this run has not yet tried."""
    requested = list(job.requested_spread_types or [])
    if not requested:
        return []
    rows = (
        db.query(DealSpread)
        .filter(
            DealSpread.deal_id == job.deal_id,
            DealSpread.bank_id == job.bank_id,
            DealSpread.spread_type.in_(requested),
            DealSpread.status == SpreadStatus.queued.value,
        )
        .all()
    )
    fresh = {
        r.spread_type for r in rows
        if (r.spread_type, r.owner_type, r.owner_entity_id, r.spread_version) not in attempted_keys
    }
    return [t for t in requested if t in fresh]


def process_spread_job(db: Session, job_id: str, worker_id: str, clock: Clock = datetime.utcnow) -> JobOutcome:
    """
    Render every requested type of a RUNNING job held by worker_id. Types merged into the job
    while it runs are picked up before it completes.
    """
    job = db.query(SpreadJob).filter(SpreadJob.id == job_id).first()
    if job is None or job.status != JobStatus.RUNNING.value or job.lease_owner != worker_id:
        return JobOutcome(job_id=job_id, status=job.status if job else "missing", error="not_held_by_worker")

    run_id = job.id
    outcome = JobOutcome(job_id=job_id, status=JobStatus.RUNNING.value)
    done: set = set()
    attempted_keys: set = set()
    try:
        while True:
            db.refresh(job)
            pending = [t for t in (job.requested_spread_types or []) if t not in done]
            if not pending:
                # a recompute enqueued mid-run leaves a newer queued version of a type already done
                pending = _requeued_types(db, job, attempted_keys)
                if not pending:
                    break
                _LOG.info("SPREAD_JOB_RERUN job_id=%s types=%s", job_id, ",".join(pending))
                done.difference_update(pending)
            facts = load_facts(db, job.deal_id, job.bank_id)
            for spread_type in pending:
                done.add(spread_type)
                template = SPREAD_TEMPLATES.get(spread_type)
                if template is None:
                    outcome.attempted += 1
                    _LOG.warning("SPREAD_TEMPLATE_MISSING job_id=%s spread_type=%s", job_id, spread_type)
                    continue
                targets = owner_targets(template, facts)
                if not targets:
                    outcome.attempted += 1
                    _LOG.warning("SPREAD_NO_TARGETS job_id=%s spread_type=%s", job_id, spread_type)
                    continue
                for owner_type, owner_id in targets:
                    latest = _latest_row(db, job.deal_id, job.bank_id, spread_type, owner_type, owner_id)
                    if latest is not None and latest.status == SpreadStatus.generating.value and latest.last_run_id == run_id:
                        key = SpreadKey(job.deal_id, job.bank_id, spread_type, latest.spread_version, owner_type, owner_id)
                    else:
                        key = _queue_placeholder(db, job.deal_id, job.bank_id, spread_type, owner_type, owner_id, clock())
                        db.commit()
                    result = _render_target(db, key, template, run_id, clock)
                    attempted_keys.add((key.spread_type, key.owner_type, key.owner_entity_id, key.spread_version))
                    if result is None:
                        outcome.skipped += 1
                        continue
                    outcome.attempted += 1
                    if result:
                        outcome.rendered += 1
                if not _heartbeat(db, job, worker_id, clock()):
                    _LOG.warning("SPREAD_JOB_LEASE_LOST job_id=%s worker_id=%s", job_id, worker_id)
                    outcome.status = "lease_lost"
                    return outcome

        recompute_debt_service(db, job.deal_id, job.bank_id, clock())
    except Exception as e:
        db.rollback()
        _LOG.exception("SPREAD_JOB_FAILED job_id=%s worker_id=%s", job_id, worker_id)
        return _fail_or_retry(db, job_id, worker_id, outcome, e, clock())

    now = clock()
    values = {
        SpreadJob.attempted_count: outcome.attempted,
        SpreadJob.rendered_count: outcome.rendered,
        SpreadJob.finished_at: now,
        SpreadJob.updated_at: now,
        SpreadJob.lease_owner: None,
        SpreadJob.leased_until: None,
    }
    if outcome.attempted > 0 and outcome.rendered == 0:
        outcome.status = JobStatus.FAILED.value
        outcome.error_code = ZERO_RENDERED
        outcome.error = f"Attempted {outcome.attempted} spread(s), rendered 0"
        values[SpreadJob.error_code] = ZERO_RENDERED
        values[SpreadJob.error] = outcome.error
        _finish_job(db, job_id, worker_id, values, JobStatus.FAILED)
        emit_system_event(
            db, "SPREAD_JOB_ZERO_RENDERED", severity="error", deal_id=job.deal_id, bank_id=job.bank_id,
            error_code=ZERO_RENDERED, payload={"job_id": job_id, "attempted": outcome.attempted}, subject_id=job_id,
        )
    else:
        outcome.status = JobStatus.SUCCEEDED.value
        _finish_job(db, job_id, worker_id, values, JobStatus.SUCCEEDED)

    _LOG.info(
        "SPREAD_JOB_DONE job_id=%s status=%s attempted=%s rendered=%s skipped=%s",
        job_id, outcome.status, outcome.attempted, outcome.rendered, outcome.skipped,
    )
    return outcome


def _fail_or_retry(db: Session, job_id: str, worker_id: str, outcome: JobOutcome, err: Exception, now: datetime) -> JobOutcome:
    job = db.query(SpreadJob).filter(SpreadJob.id == job_id).one()
    message = str(err)[:500]
    common = {
        SpreadJob.attempted_count: outcome.attempted,
        SpreadJob.rendered_count: outcome.rendered,
        SpreadJob.error: message,
        SpreadJob.updated_at: now,
        SpreadJob.lease_owner: None,
        SpreadJob.leased_until: None,
    }
    if (job.attempt or 0) < SPREAD_JOB_MAX_ATTEMPTS:
        backoff = RETRY_BASE_SECONDS * (2 ** max(0, (job.attempt or 1) - 1))
        common[SpreadJob.next_run_at] = now + timedelta(seconds=backoff)
        _finish_job(db, job_id, worker_id, common, JobStatus.QUEUED)
        outcome.status = JobStatus.QUEUED.value
    else:
        common[SpreadJob.error_code] = JOB_EXCEPTION
        common[SpreadJob.finished_at] = now
        _finish_job(db, job_id, worker_id, common, JobStatus.FAILED)
        outcome.status = JobStatus.FAILED.value
        outcome.error_code = JOB_EXCEPTION
    outcome.error = message
    return outcome


def run_worker_once(db: Session, worker_id: str, clock: Clock = datetime.utcnow) -> Optional[JobOutcome]:
    job = claim_next_job(db, worker_id, clock())
    if job is None:
        return None
    return process_spread_job(db, job.id, worker_id, clock)


def latest_spreads(db: Session, deal_id: str, bank_id: str, spread_types: Optional[Iterable[str]] = None) -> List[DealSpread]:
    """Newest ready version per (type, owner); falls back to the newest row of any status."""
    q = db.query(DealSpread).filter(DealSpread.deal_id == deal_id, DealSpread.bank_id == bank_id)
    if spread_types:
        q = q.filter(DealSpread.spread_type.in_(normalize_spread_types(spread_types)))
    best: Dict[Tuple[str, str, str], DealSpread] = {}
    for row in q.order_by(DealSpread.spread_version.desc()).all():
        k = (row.spread_type, row.owner_type, row.owner_entity_id)
        current = best.get(k)
        if current is None:
            best[k] = row
        elif current.status != SpreadStatus.ready.value and row.status == SpreadStatus.ready.value:
            best[k] = row
    return sorted(best.values(), key=lambda r: (r.spread_type, r.owner_type, r.owner_entity_id))


def active_job(db: Session, deal_id: str, bank_id: str) -> Optional[SpreadJob]:
    return _active_job(db, deal_id, bank_id)


def latest_job(db: Session, deal_id: str, bank_id: str) -> Optional[SpreadJob]:
    return (
        db.query(SpreadJob)
        .filter(SpreadJob.deal_id == deal_id, SpreadJob.bank_id == bank_id)
        .order_by(SpreadJob.created_at.desc())
        .first()
    )
