"""System event log. Fire-and-forget: a failed write is logged and never breaks the caller."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import EVENT_THROTTLE_SECONDS
from db.models import SystemEvent

_LOG = logging.getLogger("uvicorn.error")

Clock = Callable[[], datetime]


class EventThrottle:
    """
    Suppresses repeats of the same event signature inside a time window.
    State is per process; run a single emitter or accept one duplicate per process per window.
    """

    def __init__(self, window_seconds: int, clock: Clock = datetime.utcnow):
        self.window = timedelta(seconds=window_seconds)
        self.clock = clock
        self._last_seen: Dict[Tuple, datetime] = {}

    def is_throttled(self, signature: Tuple) -> bool:
        last = self._last_seen.get(signature)
        return last is not None and self.clock() - last < self.window

    def record(self, signature: Tuple) -> None:
        self._last_seen[signature] = self.clock()

    def sweep(self) -> int:
        """Drop expired signatures. Returns how many were evicted."""
        cutoff = self.clock() - self.window
        expired = [k for k, t in self._last_seen.items() if t <= cutoff]
        for k in expired:
            del self._last_seen[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._last_seen)


throttle = EventThrottle(EVENT_THROTTLE_SECONDS)


def emit_system_event(
    db: Session,
    event_type: str,
    severity: str = "info",
    deal_id: Optional[str] = None,
    bank_id: Optional[str] = None,
    error_code: Optional[str] = None,
    payload: Optional[dict] = None,
    source_system: str = "spreads",
    throttler: Optional[EventThrottle] = None,
    subject_id: Optional[str] = None,
) -> bool:
    """
    Append one event. Returns False when throttled or when the write failed.
    subject_id names the row an event is about (a spread, a job) so events for sibling rows are not merged.
    """
    gate = throttler if throttler is not None else throttle
    signature = (event_type, deal_id, bank_id, error_code, subject_id)
    if gate.is_throttled(signature):
        return False
    entry = SystemEvent(
        id=str(uuid.uuid4()),
        event_type=event_type,
        severity=severity,
        source_system=source_system,
        deal_id=deal_id,
        bank_id=bank_id,
        error_code=error_code,
        payload=payload or {},
        created_at=gate.clock(),
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        _LOG.warning("SYSTEM_EVENT_WRITE_FAILED event_type=%s deal_id=%s err=%s", event_type, deal_id, str(e)[:200])
        return False
    gate.record(signature)
    return True
