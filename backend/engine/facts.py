"""
Fact selection and the small numeric helpers every spread template shares.
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from models.facts import Fact, FactRef, SENTINEL_UUID

_MIN_DATE = date.min
_MIN_DATETIME = datetime.min


def _latest_sort_key(f: Fact) -> Tuple[date, datetime, str]:
    return (f.fact_period_end or _MIN_DATE, f.created_at or _MIN_DATETIME, f.id)


def filter_facts(
    facts: Iterable[Fact],
    fact_type: Optional[str] = None,
    fact_key: Optional[str] = None,
    owner_type: Optional[str] = None,
    owner_entity_id: Optional[str] = None,
) -> List[Fact]:
    out = []
    for f in facts:
        if fact_type is not None and f.fact_type != fact_type:
            continue
        if fact_key is not None and f.fact_key != fact_key:
            continue
        if owner_type is not None and f.owner_type.value != owner_type:
            continue
        if owner_entity_id is not None and f.owner_entity_id != owner_entity_id:
            continue
        out.append(f)
    return out


def pick_latest_fact(
    facts: Iterable[Fact],
    fact_type: str,
    fact_key: str,
    owner_type: Optional[str] = None,
    owner_entity_id: Optional[str] = None,
) -> Optional[Fact]:
    """
    Most recent fact for (type, key): later period end wins, then later created_at.
    A fact id breaks exact ties so the result never depends on input order.
    """
    candidates = filter_facts(facts, fact_type, fact_key, owner_type, owner_entity_id)
    if not candidates:
        return None
    return max(candidates, key=_latest_sort_key)


def sort_latest_first(facts: Iterable[Fact]) -> List[Fact]:
    return sorted(facts, key=_latest_sort_key, reverse=True)


def fact_ref(f: Fact) -> FactRef:
    return FactRef(
        fact_id=f.id,
        fact_type=f.fact_type,
        fact_key=f.fact_key,
        period_start=f.fact_period_start,
        period_end=f.fact_period_end,
        source_document_id=None if f.source_document_id == SENTINEL_UUID else f.source_document_id,
    )


def merge_refs(*groups: Sequence[FactRef]) -> List[FactRef]:
    """Union of input references, first occurrence kept, order preserved."""
    seen = set()
    out: List[FactRef] = []
    for group in groups:
        for ref in group:
            k = (ref.fact_id, ref.fact_type, ref.fact_key, ref.period_start, ref.period_end)
            if k in seen:
                continue
            seen.add(k)
            out.append(ref)
    return out


def is_number(v: object) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def safe_sum(values: Iterable[Optional[float]]) -> Optional[float]:
    """Sum of the finite numbers present; None when there are none."""
    nums = [float(v) for v in values if is_number(v)]
    if not nums:
        return None
    return sum(nums)


def safe_divide(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if not is_number(numerator) or not is_number(denominator) or denominator == 0:
        return None
    out = numerator / denominator
    return out if math.isfinite(out) else None


def safe_subtract(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if not is_number(a) or not is_number(b):
        return None
    return a - b


def format_money(v: Optional[float]) -> Optional[str]:
    if not is_number(v):
        return None
    if v < 0:
        return f"(${abs(v):,.0f})"
    return f"${v:,.0f}"


def format_pct(v: Optional[float]) -> Optional[str]:
    if not is_number(v):
        return None
    return f"{v * 100:.1f}%"


def format_ratio(v: Optional[float]) -> Optional[str]:
    if not is_number(v):
        return None
    return f"{v:.2f}x"


def format_number(v: Optional[float], decimals: int = 0) -> Optional[str]:
    if not is_number(v):
        return None
    return f"{v:,.{decimals}f}"
