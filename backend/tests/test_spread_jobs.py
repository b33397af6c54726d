from datetime import date, timedelta

from sqlalchemy import func

from conftest import BANK_ID, DEAL_ID, add_fact
from db.models import DealSpread, FinancialFact, SpreadJob, SystemEvent
from engine.spreads import error_spread
from services import spread_jobs
from services.spread_jobs import (
    ClaimOutcome,
    SpreadKey,
    claim_next_job,
    claim_spread,
    complete_spread,
    enqueue_spread_recompute,
    latest_spreads,
    next_spread_version,
    process_spread_job,
    run_worker_once,
    upsert_placeholder,
)
from services.spread_observer import run_spread_observer_tick


def _seed_t12(db):
    add_fact(db, "INCOME_STATEMENT", "GROSS_RENTAL_INCOME", 240000, date(2025, 1, 1), date(2025, 12, 31))
    add_fact(db, "INCOME_STATEMENT", "UTILITIES", 40000, date(2025, 1, 1), date(2025, 12, 31))


def _spreads(db, spread_type="T12"):
    return (
        db.query(DealSpread)
        .filter(DealSpread.deal_id == DEAL_ID, DealSpread.spread_type == spread_type)
        .order_by(DealSpread.spread_version)
        .all()
    )


def _key(version=1, spread_type="T12"):
    return SpreadKey(DEAL_ID, BANK_ID, spread_type, version)


def _events(db, event_type):
    return db.query(SystemEvent).filter(SystemEvent.event_type == event_type).all()


# --- enqueue ---

def test_enqueue_filters_invalid_types_without_poisoning_valid_ones(db, now) -> None:
    _seed_t12(db)
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["t12", "BOGUS", "T12"], now=now)
    assert r.ok is True
    assert r.enqueued == ["T12"]
    assert r.skipped_invalid == ["BOGUS"]
    assert r.job_id is not None

    rows = _spreads(db)
    assert [(s.spread_version, s.status) for s in rows] == [(1, "queued")]
    job = db.query(SpreadJob).get(r.job_id)
    assert job.status == "QUEUED"
    assert job.requested_spread_types == ["T12"]
    assert len(_events(db, "INVALID_SPREAD_TYPES_SKIPPED")) == 1


def test_enqueue_only_invalid_types_is_not_ok(db, now) -> None:
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["NOPE"], now=now)
    assert r.ok is False
    assert r.job_id is None
    assert db.query(SpreadJob).count() == 0


def test_enqueue_defers_types_waiting_on_facts(db, now) -> None:
    _seed_t12(db)
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12", "BALANCE_SHEET", "RENT_ROLL"], now=now)
    assert r.enqueued == ["T12"]
    assert sorted(r.waiting_on_facts) == ["BALANCE_SHEET", "RENT_ROLL"]
    assert _spreads(db, "BALANCE_SHEET") == []
    assert len(_events(db, "SPREAD_WAITING_ON_FACTS")) == 1


def test_enqueue_merges_into_active_job(db, now) -> None:
    _seed_t12(db)
    first = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)
    add_fact(db, "BALANCE_SHEET", "BS_CASH", 50000, period_end=date(2025, 12, 31))
    second = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["BALANCE_SHEET", "T12"], now=now)

    assert second.merged is True
    assert second.job_id == first.job_id
    assert db.query(SpreadJob).count() == 1
    assert db.query(SpreadJob).get(first.job_id).requested_spread_types == ["T12", "BALANCE_SHEET"]
    # the queued T12 placeholder is reused, not versioned again
    assert len(_spreads(db)) == 1


def test_enqueue_merges_after_losing_insert_race(db, now, monkeypatch) -> None:
    _seed_t12(db)
    first = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)

    real = spread_jobs._active_job
    calls = {"n": 0}

    def stale_read(session, deal_id, bank_id):
        calls["n"] += 1
        return None if calls["n"] == 1 else real(session, deal_id, bank_id)

    monkeypatch.setattr(spread_jobs, "_active_job", stale_read)
    add_fact(db, "BALANCE_SHEET", "BS_CASH", 50000, period_end=date(2025, 12, 31))
    second = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["BALANCE_SHEET"], now=now)

    assert second.ok is True
    assert second.merged is True
    assert second.job_id == first.job_id
    assert db.query(SpreadJob).count() == 1


def test_personal_templates_expand_per_owner(db, now) -> None:
    for owner in ("g1", "g2"):
        add_fact(db, "PERSONAL_INCOME", "WAGES_W2", 100000, period_end=date(2024, 12, 31), owner_type="PERSONAL", owner_entity_id=owner)
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["PERSONAL_INCOME"], now=now)
    assert r.enqueued == ["PERSONAL_INCOME"]
    owners = sorted(s.owner_entity_id for s in _spreads(db, "PERSONAL_INCOME"))
    assert owners == ["g1", "g2"]

    outcome = run_worker_once(db, "w1", lambda: now)
    assert outcome.status == "SUCCEEDED"
    assert outcome.rendered == 2
    assert {s.status for s in _spreads(db, "PERSONAL_INCOME")} == {"ready"}


# --- versions and placeholders ---

def test_placeholder_upsert_converges_on_one_row(db, now) -> None:
    upsert_placeholder(db, _key(), now)
    upsert_placeholder(db, _key(), now + timedelta(seconds=5))
    db.commit()
    rows = _spreads(db)
    assert len(rows) == 1
    assert rows[0].status == "queued"


def test_next_version_reuses_queued_and_bumps_past_terminal(db, now) -> None:
    assert next_spread_version(db, DEAL_ID, BANK_ID, "T12", "DEAL", _key().owner_entity_id) == 1
    upsert_placeholder(db, _key(), now)
    db.commit()
    assert next_spread_version(db, DEAL_ID, BANK_ID, "T12", "DEAL", _key().owner_entity_id) == 1

    assert claim_spread(db, _key(), "run-a", now) is ClaimOutcome.CLAIMED
    assert next_spread_version(db, DEAL_ID, BANK_ID, "T12", "DEAL", _key().owner_entity_id) == 2


# --- claiming ---

def test_only_one_claimant_wins(session_factory, now) -> None:
    a, b = session_factory(), session_factory()
    try:
        upsert_placeholder(a, _key(), now)
        a.commit()
        assert claim_spread(a, _key(), "run-a", now) is ClaimOutcome.CLAIMED
        assert claim_spread(b, _key(), "run-b", now) is ClaimOutcome.ALREADY_CLAIMED
        assert claim_spread(a, _key(), "run-a", now) is ClaimOutcome.RESUMED

        ready = error_spread("T12", "x", "X", now).model_copy(update={"status": "ready", "error": None, "error_code": None})
        assert complete_spread(b, _key(), "run-b", ready, now) is False
        assert complete_spread(a, _key(), "run-a", ready, now) is True
        row = b.query(DealSpread).one()
        assert row.status == "ready"
        assert row.last_run_id == "run-a"
    finally:
        a.close()
        b.close()


def test_claim_is_pinned_to_version(db, now) -> None:
    upsert_placeholder(db, _key(1), now)
    db.commit()
    assert claim_spread(db, _key(2), "run-a", now) is ClaimOutcome.ALREADY_CLAIMED
    assert _spreads(db)[0].status == "queued"


def test_job_claim_is_exclusive(session_factory, now) -> None:
    a, b = session_factory(), session_factory()
    try:
        _seed_t12(a)
        enqueue_spread_recompute(a, DEAL_ID, BANK_ID, ["T12"], now=now)
        job = claim_next_job(a, "w1", now)
        assert job is not None
        assert job.status == "RUNNING"
        assert job.lease_owner == "w1"
        assert job.attempt == 1
        assert claim_next_job(b, "w2", now) is None
    finally:
        a.close()
        b.close()


# --- processing ---

def test_worker_renders_backfills_and_recomputes_debt_service(db, now) -> None:
    _seed_t12(db)
    add_fact(db, "STRUCTURAL_PRICING", "ANNUAL_DEBT_SERVICE", 160000)
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)

    outcome = run_worker_once(db, "w1", lambda: now)
    assert outcome.status == "SUCCEEDED"
    assert (outcome.attempted, outcome.rendered) == (1, 1)

    job = db.query(SpreadJob).get(r.job_id)
    assert job.status == "SUCCEEDED"
    assert job.lease_owner is None
    assert (job.attempted_count, job.rendered_count) == (1, 1)

    spread = _spreads(db)[0]
    assert spread.status == "ready"
    assert spread.last_run_id == job.id
    assert spread.rendered_json["totals"]["NOI_TTM"] == 200000

    analysis = {
        f.fact_key: f.fact_value_num
        for f in db.query(FinancialFact).filter(FinancialFact.fact_type == "FINANCIAL_ANALYSIS").all()
    }
    assert analysis["NOI_TTM"] == 200000
    assert analysis["ANNUAL_DEBT_SERVICE"] == 160000
    assert analysis["DSCR"] == 1.25


def test_rerequest_during_render_is_rendered_before_completion(session_factory, db, now, monkeypatch) -> None:
    _seed_t12(db)
    enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)
    real_backfill = spread_jobs._backfill
    calls = []

    def backfill_then_rerequest(*args, **kwargs):
        if not calls:
            other = session_factory()
            try:
                add_fact(other, "INCOME_STATEMENT", "REPAIRS_MAINTENANCE", 10000, date(2025, 1, 1), date(2025, 12, 31))
                enqueue_spread_recompute(other, DEAL_ID, BANK_ID, ["T12"], now=now)
            finally:
                other.close()
        calls.append(1)
        return real_backfill(*args, **kwargs)

    monkeypatch.setattr(spread_jobs, "_backfill", backfill_then_rerequest)
    outcome = run_worker_once(db, "w1", lambda: now)
    assert outcome.status == "SUCCEEDED"
    assert outcome.rendered == 2

    db.expire_all()
    assert [(s.spread_version, s.status) for s in _spreads(db)] == [(1, "ready"), (2, "ready")]
    assert _spreads(db)[1].rendered_json["totals"]["NOI_TTM"] == 190000
    active = db.query(SpreadJob).filter(SpreadJob.status.in_(["QUEUED", "RUNNING"])).count()
    assert active == 0


def test_zero_rendered_job_fails_loudly(db, now, monkeypatch) -> None:
    _seed_t12(db)
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)
    monkeypatch.setattr(
        spread_jobs, "render_spread",
        lambda spread_type, *a, **kw: error_spread(spread_type, "no usable facts", "NO_FACTS", now),
    )
    outcome = run_worker_once(db, "w1", lambda: now)
    assert outcome.status == "FAILED"
    assert outcome.error_code == "SPREADS_ZERO_RENDERED"

    job = db.query(SpreadJob).get(r.job_id)
    assert job.status == "FAILED"
    assert job.error_code == "SPREADS_ZERO_RENDERED"
    assert (job.attempted_count, job.rendered_count) == (1, 0)
    assert _spreads(db)[0].status == "error"
    assert len(_events(db, "SPREAD_JOB_ZERO_RENDERED")) == 1


def test_render_exception_marks_spread_error(db, now, monkeypatch) -> None:
    _seed_t12(db)
    enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)

    def boom(*a, **kw):
        raise ValueError("bad period")

    monkeypatch.setattr(spread_jobs, "render_spread", boom)
    outcome = run_worker_once(db, "w1", lambda: now)
    assert outcome.status == "FAILED"
    spread = _spreads(db)[0]
    assert spread.status == "error"
    assert spread.error_code == "RENDER_EXCEPTION"
    assert "bad period" in spread.error


def test_job_exception_retries_with_backoff_then_fails(db, now, monkeypatch) -> None:
    _seed_t12(db)
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)

    def broken(*a, **kw):
        raise RuntimeError("ledger offline")

    monkeypatch.setattr(spread_jobs, "recompute_debt_service", broken)

    first = run_worker_once(db, "w1", lambda: now)
    assert first.status == "QUEUED"
    job = db.query(SpreadJob).get(r.job_id)
    assert job.next_run_at == now + timedelta(seconds=30)
    assert run_worker_once(db, "w1", lambda: now + timedelta(seconds=10)) is None

    second = run_worker_once(db, "w1", lambda: now + timedelta(seconds=31))
    assert second.status == "QUEUED"
    third = run_worker_once(db, "w1", lambda: now + timedelta(seconds=200))
    assert third.status == "FAILED"
    assert third.error_code == "SPREAD_JOB_EXCEPTION"
    job = db.query(SpreadJob).get(r.job_id)
    assert job.attempt == 3
    assert "ledger offline" in job.error


def test_orphaned_job_resumes_its_own_generating_row(db, now) -> None:
    _seed_t12(db)
    enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)
    job = claim_next_job(db, "w1", now)
    job_id = job.id
    assert claim_spread(db, _key(), job_id, now) is ClaimOutcome.CLAIMED
    # w1 dies here; the observer frees the job once its lease has lapsed

    later = now + timedelta(minutes=20)
    tick = run_spread_observer_tick(db, later)
    assert tick.orphans_reset == [job_id]
    assert db.query(SpreadJob).get(job_id).status == "QUEUED"

    outcome = run_worker_once(db, "w2", lambda: later)
    assert outcome.job_id == job_id
    assert outcome.rendered == 1
    rows = _spreads(db)
    assert [(s.spread_version, s.status) for s in rows] == [(1, "ready")]


def test_process_refuses_job_not_leased_to_worker(db, now) -> None:
    _seed_t12(db)
    r = enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)
    claim_next_job(db, "w1", now)
    outcome = process_spread_job(db, r.job_id, "w2", lambda: now)
    assert outcome.error == "not_held_by_worker"
    assert db.query(SpreadJob).get(r.job_id).status == "RUNNING"


def test_latest_spreads_prefers_ready_over_newer_queued(db, now) -> None:
    _seed_t12(db)
    enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)
    run_worker_once(db, "w1", lambda: now)
    enqueue_spread_recompute(db, DEAL_ID, BANK_ID, ["T12"], now=now)

    assert db.query(func.count(DealSpread.id)).scalar() == 2
    latest = latest_spreads(db, DEAL_ID, BANK_ID, ["T12"])
    assert [(s.spread_version, s.status) for s in latest] == [(1, "ready")]
