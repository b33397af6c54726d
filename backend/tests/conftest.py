"""Add backend to path so top-level modules (db, engine, services) resolve when run from project root."""
import os
import sys
import uuid
from datetime import date, datetime

import pytest

_backend_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

# db.session builds its engine at import; keep it off the production URL
os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy.orm import sessionmaker  # noqa: E402

import audit  # noqa: E402
from db.models import Document, ExistingDebt, RentRollRow  # noqa: E402
from db.session import Base, make_engine  # noqa: E402
from models.facts import FactInput, FactProvenance, FactSourceType  # noqa: E402
from services.fact_store import write_fact  # noqa: E402

FIXED_NOW = datetime(2026, 3, 15, 12, 0, 0)
DEAL_ID = "deal-1"
BANK_ID = "bank-1"


@pytest.fixture(autouse=True)
def _clear_event_throttle():
    audit.throttle._last_seen.clear()
    yield
    audit.throttle._last_seen.clear()


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'buddy_test.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient

    from db.session import get_db
    from main import app

    def _override():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def add_fact(
    db,
    fact_type,
    fact_key,
    value,
    period_start=None,
    period_end=None,
    deal_id=DEAL_ID,
    bank_id=BANK_ID,
    owner_type="DEAL",
    owner_entity_id=None,
    now=FIXED_NOW,
):
    fi = FactInput(
        deal_id=deal_id,
        bank_id=bank_id,
        fact_type=fact_type,
        fact_key=fact_key,
        fact_value_num=value,
        fact_period_start=period_start,
        fact_period_end=period_end,
        provenance=FactProvenance(source_type=FactSourceType.DOC_AI, source_ref="test"),
        owner_type=owner_type,
        **({"owner_entity_id": owner_entity_id} if owner_entity_id else {}),
    )
    fact_id = write_fact(db, fi, now=now)
    db.commit()
    return fact_id


def add_document(db, document_id=None, deal_id=DEAL_ID, bank_id=BANK_ID, **kw):
    doc = Document(id=document_id or str(uuid.uuid4()), deal_id=deal_id, bank_id=bank_id, **kw)
    db.add(doc)
    db.commit()
    return doc.id


def add_rent_roll_row(db, unit_id, deal_id=DEAL_ID, bank_id=BANK_ID, as_of_date=date(2026, 3, 1), **kw):
    row = RentRollRow(id=str(uuid.uuid4()), deal_id=deal_id, bank_id=bank_id, unit_id=unit_id, as_of_date=as_of_date, **kw)
    db.add(row)
    db.commit()
    return row.id


def add_existing_debt(db, annual_debt_service, deal_id=DEAL_ID, bank_id=BANK_ID, **kw):
    row = ExistingDebt(
        id=str(uuid.uuid4()), deal_id=deal_id, bank_id=bank_id, annual_debt_service=annual_debt_service, **kw
    )
    db.add(row)
    db.commit()
    return row.id
