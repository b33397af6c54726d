from datetime import timedelta

from sqlalchemy.exc import OperationalError

from audit import EventThrottle, emit_system_event
from conftest import BANK_ID, DEAL_ID
from db.models import SystemEvent


class _Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def _count(db, event_type="SPREAD_AUTO_HEALED"):
    return db.query(SystemEvent).filter(SystemEvent.event_type == event_type).count()


def test_repeats_are_suppressed_inside_window(db, now) -> None:
    clock = _Clock(now)
    gate = EventThrottle(300, clock=clock)
    assert emit_system_event(db, "SPREAD_AUTO_HEALED", deal_id=DEAL_ID, bank_id=BANK_ID, throttler=gate, subject_id="s1")
    assert not emit_system_event(db, "SPREAD_AUTO_HEALED", deal_id=DEAL_ID, bank_id=BANK_ID, throttler=gate, subject_id="s1")
    # a sibling row of the same deal is a different event
    assert emit_system_event(db, "SPREAD_AUTO_HEALED", deal_id=DEAL_ID, bank_id=BANK_ID, throttler=gate, subject_id="s2")

    clock.now = now + timedelta(seconds=301)
    assert emit_system_event(db, "SPREAD_AUTO_HEALED", deal_id=DEAL_ID, bank_id=BANK_ID, throttler=gate, subject_id="s1")
    assert _count(db) == 3
    assert gate.sweep() == 1


def test_failed_write_does_not_throttle_the_retry(db, now, monkeypatch) -> None:
    gate = EventThrottle(300, clock=_Clock(now))
    real_commit = db.commit
    calls = {"n": 0}

    def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("INSERT INTO system_events", {}, Exception("database is locked"))
        real_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)
    assert emit_system_event(db, "SPREAD_AUTO_HEALED", deal_id=DEAL_ID, throttler=gate) is False
    assert len(gate) == 0
    assert emit_system_event(db, "SPREAD_AUTO_HEALED", deal_id=DEAL_ID, throttler=gate) is True
    assert _count(db) == 1
