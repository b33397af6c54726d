"""
Status vocabularies for spreads, spread jobs and documents, with their legal transitions.
Writers call the assert_* helpers before persisting a new status.
"""
from __future__ import annotations

import enum
from typing import Dict, FrozenSet

from errors import InvalidTransitionError


class SpreadStatus(str, enum.Enum):
    queued = "queued"
    generating = "generating"
    ready = "ready"
    error = "error"


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class DocumentStatus(str, enum.Enum):
    pending = "pending"
    scanned = "scanned"
    classified = "classified"
    extracted = "extracted"


class VirusStatus(str, enum.Enum):
    unknown = "unknown"
    clean = "clean"
    infected = "infected"
    failed = "failed"


SPREAD_TRANSITIONS: Dict[SpreadStatus, FrozenSet[SpreadStatus]] = {
    SpreadStatus.queued: frozenset({SpreadStatus.generating}),
    # generating -> generating is a same-run resume after a crash
    SpreadStatus.generating: frozenset({SpreadStatus.generating, SpreadStatus.ready, SpreadStatus.error}),
    SpreadStatus.ready: frozenset(),
    SpreadStatus.error: frozenset(),
}

JOB_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.QUEUED}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

DOCUMENT_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.pending: frozenset({DocumentStatus.scanned, DocumentStatus.classified}),
    DocumentStatus.scanned: frozenset({DocumentStatus.classified}),
    # re-classification is allowed until extraction finalizes the document
    DocumentStatus.classified: frozenset({DocumentStatus.classified, DocumentStatus.extracted}),
    DocumentStatus.extracted: frozenset(),
}

ACTIVE_JOB_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


def assert_spread_transition(current: str, target: str) -> SpreadStatus:
    cur, nxt = SpreadStatus(current), SpreadStatus(target)
    if nxt not in SPREAD_TRANSITIONS[cur]:
        raise InvalidTransitionError("spread", cur.value, nxt.value)
    return nxt


def assert_job_transition(current: str, target: str) -> JobStatus:
    cur, nxt = JobStatus(current), JobStatus(target)
    if nxt not in JOB_TRANSITIONS[cur]:
        raise InvalidTransitionError("job", cur.value, nxt.value)
    return nxt


def assert_document_transition(current: str, target: str) -> DocumentStatus:
    cur, nxt = DocumentStatus(current), DocumentStatus(target)
    if nxt not in DOCUMENT_TRANSITIONS[cur]:
        raise InvalidTransitionError("document", cur.value, nxt.value)
    return nxt


def can_transition_document(current: str, target: str) -> bool:
    try:
        assert_document_transition(current, target)
    except InvalidTransitionError:
        return False
    return True
