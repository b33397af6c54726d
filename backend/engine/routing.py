"""
Document type routing: raw classifier label -> canonical type -> extraction routing class.

The routing table is locked. Adding a canonical type or moving one between classes
changes extraction cost and fidelity for every deal and needs explicit sign-off.
"""

from __future__ import annotations

import re
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from config import google_docai_enabled
from models.documents import DocTypeRouting


class CanonicalType(str, Enum):
    BUSINESS_TAX_RETURN = "BUSINESS_TAX_RETURN"
    PERSONAL_TAX_RETURN = "PERSONAL_TAX_RETURN"
    INCOME_STATEMENT = "INCOME_STATEMENT"
    BALANCE_SHEET = "BALANCE_SHEET"
    PFS = "PFS"
    FINANCIAL_STATEMENT = "FINANCIAL_STATEMENT"
    RENT_ROLL = "RENT_ROLL"
    BANK_STATEMENT = "BANK_STATEMENT"
    LEASE = "LEASE"
    INSURANCE = "INSURANCE"
    APPRAISAL = "APPRAISAL"
    ENTITY_DOCS = "ENTITY_DOCS"
    OTHER = "OTHER"


class RoutingClass(str, Enum):
    DOC_AI_ATOMIC = "DOC_AI_ATOMIC"
    GEMINI_PACKET = "GEMINI_PACKET"
    GEMINI_STANDARD = "GEMINI_STANDARD"


_ALIAS_GROUPS = {
    CanonicalType.BUSINESS_TAX_RETURN: ("IRS_BUSINESS", "IRS_1120", "IRS_1120S", "IRS_1065"),
    CanonicalType.PERSONAL_TAX_RETURN: ("IRS_PERSONAL", "IRS_1040", "K1"),
    CanonicalType.INCOME_STATEMENT: ("PROFIT_AND_LOSS", "P&L"),
    CanonicalType.PFS: ("PERSONAL_FINANCIAL_STATEMENT", "SBA_413"),
    CanonicalType.FINANCIAL_STATEMENT: ("T12", "INTERIM_FINANCIALS"),
    CanonicalType.ENTITY_DOCS: ("ARTICLES", "OPERATING_AGREEMENT", "BYLAWS", "CERTIFICATE_OF_GOOD_STANDING"),
}

_ALIASES = {}
for _canonical in CanonicalType:
    _ALIASES[_canonical.value] = _canonical
for _canonical, _names in _ALIAS_GROUPS.items():
    for _name in _names:
        _ALIASES[_name] = _canonical
ALIASES: Mapping[str, CanonicalType] = MappingProxyType(_ALIASES)

ROUTING_TABLE: Mapping[CanonicalType, RoutingClass] = MappingProxyType({
    CanonicalType.BUSINESS_TAX_RETURN: RoutingClass.DOC_AI_ATOMIC,
    CanonicalType.PERSONAL_TAX_RETURN: RoutingClass.DOC_AI_ATOMIC,
    CanonicalType.INCOME_STATEMENT: RoutingClass.DOC_AI_ATOMIC,
    CanonicalType.BALANCE_SHEET: RoutingClass.DOC_AI_ATOMIC,
    CanonicalType.PFS: RoutingClass.DOC_AI_ATOMIC,
    CanonicalType.FINANCIAL_STATEMENT: RoutingClass.GEMINI_PACKET,
    CanonicalType.RENT_ROLL: RoutingClass.GEMINI_STANDARD,
    CanonicalType.BANK_STATEMENT: RoutingClass.GEMINI_STANDARD,
    CanonicalType.LEASE: RoutingClass.GEMINI_STANDARD,
    CanonicalType.INSURANCE: RoutingClass.GEMINI_STANDARD,
    CanonicalType.APPRAISAL: RoutingClass.GEMINI_STANDARD,
    CanonicalType.ENTITY_DOCS: RoutingClass.GEMINI_STANDARD,
    CanonicalType.OTHER: RoutingClass.GEMINI_STANDARD,
})

_missing = set(CanonicalType) - set(ROUTING_TABLE)
if _missing:
    raise RuntimeError(f"Routing table incomplete: {sorted(t.value for t in _missing)}")

_TAX_TYPES = frozenset({CanonicalType.BUSINESS_TAX_RETURN, CanonicalType.PERSONAL_TAX_RETURN})

_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_doc_type(raw: Optional[str]) -> str:
    """Upper-case, trim, and collapse whitespace/hyphen runs to underscores."""
    if not raw:
        return ""
    return _SEPARATORS.sub("_", str(raw).strip().upper())


def canonical_type_for(raw: Optional[str]) -> CanonicalType:
    return ALIASES.get(normalize_doc_type(raw), CanonicalType.OTHER)


def routing_class_for(canonical: Optional[str]) -> RoutingClass:
    """Routing class for a canonical type name; anything unrecognized goes to standard extraction."""
    try:
        key = CanonicalType(canonical)
    except ValueError:
        return RoutingClass.GEMINI_STANDARD
    return ROUTING_TABLE[key]


def is_doc_ai_route(routing_class: str) -> bool:
    return routing_class == RoutingClass.DOC_AI_ATOMIC.value


def processor_for(canonical: CanonicalType) -> Optional[str]:
    if ROUTING_TABLE[canonical] is not RoutingClass.DOC_AI_ATOMIC:
        return None
    return "TAX_PROCESSOR" if canonical in _TAX_TYPES else "FINANCIAL_PROCESSOR"


def resolve_routing(raw: Optional[str]) -> DocTypeRouting:
    canonical = canonical_type_for(raw)
    return DocTypeRouting(
        raw_type=raw,
        canonical_type=canonical.value,
        routing_class=ROUTING_TABLE[canonical].value,
        processor=processor_for(canonical),
    )


def extraction_engine_for(routing_class: str) -> RoutingClass:
    """
    Engine that will actually run. With GOOGLE_DOCAI_ENABLED off, high-fidelity
    documents fall back to standard extraction; their routing class is unchanged.
    """
    rc = RoutingClass(routing_class)
    if rc is RoutingClass.DOC_AI_ATOMIC and not google_docai_enabled():
        return RoutingClass.GEMINI_STANDARD
    return rc
