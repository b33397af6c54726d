import uuid

from sqlalchemy.exc import OperationalError

from conftest import BANK_ID, DEAL_ID, add_document
from db.models import Document, OcrResult
from services import content_hash_gate
from services.content_hash_gate import (
    check_content_hash,
    compute_sha256,
    is_processing_blocked,
    record_virus_scan,
)

PDF_BYTES = b"%PDF-1.7 rent roll as of 2026-03-01"


def _add_ocr(db, document_id, text, status="SUCCEEDED"):
    db.add(OcrResult(id=str(uuid.uuid4()), document_id=document_id, status=status, provider="docai", extracted_text=text))
    db.commit()


def test_digest_is_deterministic_lowercase_hex() -> None:
    a = compute_sha256(PDF_BYTES)
    assert a == compute_sha256(PDF_BYTES)
    assert len(a) == 64
    assert a == a.lower()
    assert a != compute_sha256(PDF_BYTES + b" ")
    assert compute_sha256(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_first_upload_misses_both_caches_and_stamps_digest(db, now) -> None:
    doc_id = add_document(db)
    result = check_content_hash(db, PDF_BYTES, BANK_ID, DEAL_ID, doc_id, now=now)
    assert result.digest == compute_sha256(PDF_BYTES)
    assert result.virus_cache_hit is False
    assert result.virus_status == "unknown"
    assert result.ocr_cache_hit is False
    assert db.query(Document).get(doc_id).sha256 == result.digest


def test_virus_cache_first_result_wins(db, now) -> None:
    digest = compute_sha256(PDF_BYTES)
    assert record_virus_scan(db, BANK_ID, digest, "clean", engine="clamav", now=now) is True
    assert record_virus_scan(db, BANK_ID, digest, "infected", signature="Eicar", now=now) is False

    doc_id = add_document(db)
    result = check_content_hash(db, PDF_BYTES, BANK_ID, DEAL_ID, doc_id, now=now)
    assert result.virus_cache_hit is True
    assert result.virus_status == "clean"
    assert result.virus_engine == "clamav"
    doc = db.query(Document).get(doc_id)
    assert doc.virus_status == "clean"
    assert doc.status == "scanned"


def test_record_virus_scan_stamps_document(db, now) -> None:
    doc_id = add_document(db, sha256=compute_sha256(PDF_BYTES))
    record_virus_scan(db, BANK_ID, compute_sha256(PDF_BYTES), "infected", signature="Eicar-Test", document_id=doc_id, now=now)
    doc = db.query(Document).get(doc_id)
    assert doc.virus_status == "infected"
    assert doc.virus_signature == "Eicar-Test"


def test_ocr_reused_from_donor_in_same_bank(db, now) -> None:
    donor = add_document(db, sha256=compute_sha256(PDF_BYTES))
    _add_ocr(db, donor, "UNIT 101 ACME CORP 2,400 SF")
    doc_id = add_document(db)

    result = check_content_hash(db, PDF_BYTES, BANK_ID, DEAL_ID, doc_id, now=now)
    assert result.ocr_cache_hit is True
    assert result.ocr_text == "UNIT 101 ACME CORP 2,400 SF"
    assert result.ocr_donor_document_id == donor

    copied = db.query(OcrResult).filter(OcrResult.document_id == doc_id).one()
    assert copied.provider == "sha256_dedup"
    assert copied.raw_json == {"dedup": True, "donor_doc_id": donor, "sha256": result.digest}


def test_caches_never_cross_banks(db, now) -> None:
    digest = compute_sha256(PDF_BYTES)
    record_virus_scan(db, "bank-other", digest, "clean", now=now)
    donor = add_document(db, bank_id="bank-other", sha256=digest)
    _add_ocr(db, donor, "other bank text")

    doc_id = add_document(db)
    result = check_content_hash(db, PDF_BYTES, BANK_ID, DEAL_ID, doc_id, now=now)
    assert result.virus_cache_hit is False
    assert result.ocr_cache_hit is False


def test_empty_or_failed_ocr_is_not_a_donor(db, now) -> None:
    digest = compute_sha256(PDF_BYTES)
    _add_ocr(db, add_document(db, sha256=digest), "")
    _add_ocr(db, add_document(db, sha256=digest), "partial", status="FAILED")
    result = check_content_hash(db, PDF_BYTES, BANK_ID, DEAL_ID, add_document(db), now=now)
    assert result.ocr_cache_hit is False


def test_failed_virus_lookup_degrades_to_miss(db, now, monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(content_hash_gate, "_lookup_virus", boom)
    donor = add_document(db, sha256=compute_sha256(PDF_BYTES))
    _add_ocr(db, donor, "still reusable")

    result = check_content_hash(db, PDF_BYTES, BANK_ID, DEAL_ID, add_document(db), now=now)
    assert result.virus_cache_hit is False
    assert result.virus_status == "unknown"
    assert result.ocr_cache_hit is True


def test_processing_gate(monkeypatch) -> None:
    monkeypatch.delenv("VIRUS_SCAN_REQUIRED", raising=False)
    monkeypatch.setattr("config.APP_ENV", "development")
    assert is_processing_blocked("infected") is True
    assert is_processing_blocked("clean") is False
    assert is_processing_blocked("unknown") is False

    monkeypatch.setattr("config.APP_ENV", "production")
    assert is_processing_blocked("unknown") is True

    monkeypatch.setenv("VIRUS_SCAN_REQUIRED", "false")
    assert is_processing_blocked("unknown") is False
