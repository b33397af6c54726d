import pytest

from engine.routing import (
    ALIASES,
    ROUTING_TABLE,
    CanonicalType,
    RoutingClass,
    canonical_type_for,
    extraction_engine_for,
    is_doc_ai_route,
    normalize_doc_type,
    resolve_routing,
    routing_class_for,
)


@pytest.mark.parametrize(
    "raw,canonical",
    [
        ("IRS_1120S", "BUSINESS_TAX_RETURN"),
        ("irs 1065", "BUSINESS_TAX_RETURN"),
        ("IRS-1040", "PERSONAL_TAX_RETURN"),
        ("K1", "PERSONAL_TAX_RETURN"),
        ("Profit and Loss", "INCOME_STATEMENT"),
        ("SBA_413", "PFS"),
        ("t12", "FINANCIAL_STATEMENT"),
        ("Operating Agreement", "ENTITY_DOCS"),
        ("  rent   roll ", "RENT_ROLL"),
    ],
)
def test_aliases_resolve_to_canonical(raw, canonical) -> None:
    assert canonical_type_for(raw).value == canonical


def test_normalization() -> None:
    assert normalize_doc_type(" profit - and  loss ") == "PROFIT_AND_LOSS"
    assert normalize_doc_type(None) == ""
    assert normalize_doc_type("") == ""


def test_unknown_and_empty_inputs_fall_to_other_standard() -> None:
    for raw in (None, "", "   ", "MYSTERY_FORM"):
        r = resolve_routing(raw)
        assert r.canonical_type == "OTHER"
        assert r.routing_class == "GEMINI_STANDARD"
        assert r.processor is None


def test_routing_table_is_total_and_locked() -> None:
    assert set(ROUTING_TABLE) == set(CanonicalType)
    for canonical in CanonicalType:
        assert ALIASES[canonical.value] is canonical
    with pytest.raises(TypeError):
        ROUTING_TABLE[CanonicalType.OTHER] = RoutingClass.DOC_AI_ATOMIC  # type: ignore[index]


def test_routing_classes() -> None:
    assert routing_class_for("BUSINESS_TAX_RETURN") is RoutingClass.DOC_AI_ATOMIC
    assert routing_class_for("FINANCIAL_STATEMENT") is RoutingClass.GEMINI_PACKET
    assert routing_class_for("LEASE") is RoutingClass.GEMINI_STANDARD
    assert routing_class_for("NOT_A_TYPE") is RoutingClass.GEMINI_STANDARD
    assert routing_class_for(None) is RoutingClass.GEMINI_STANDARD


def test_processor_by_family() -> None:
    assert resolve_routing("IRS_1120").processor == "TAX_PROCESSOR"
    assert resolve_routing("BALANCE_SHEET").processor == "FINANCIAL_PROCESSOR"
    assert resolve_routing("LEASE").processor is None


def test_docai_flag_only_changes_engine_not_route(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_DOCAI_ENABLED", "TRUE")
    assert extraction_engine_for("DOC_AI_ATOMIC") is RoutingClass.DOC_AI_ATOMIC

    for off in ("false", "1", "yes", ""):
        monkeypatch.setenv("GOOGLE_DOCAI_ENABLED", off)
        assert extraction_engine_for("DOC_AI_ATOMIC") is RoutingClass.GEMINI_STANDARD
        assert resolve_routing("IRS_1040").routing_class == "DOC_AI_ATOMIC"
    assert extraction_engine_for("GEMINI_PACKET") is RoutingClass.GEMINI_PACKET
    assert is_doc_ai_route("DOC_AI_ATOMIC") is True
    assert is_doc_ai_route("GEMINI_PACKET") is False
