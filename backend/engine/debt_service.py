"""
Debt-service aggregation: proposed + existing annual debt service and the coverage ratios built on it.

Pure and total: a missing or malformed input leaves the affected quantity as None.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from engine.facts import fact_ref, is_number, pick_latest_fact, safe_divide
from models.facts import ExistingDebtRow, Fact, FactRef


@dataclass
class DerivedQuantity:
    fact_key: str
    value: Optional[float] = None
    calc: Optional[str] = None
    inputs: List[FactRef] = field(default_factory=list)


@dataclass
class DebtServiceSummary:
    proposed: DerivedQuantity
    existing: DerivedQuantity
    total: DerivedQuantity
    dscr: DerivedQuantity
    gcf_dscr: DerivedQuantity

    def quantities(self) -> List[DerivedQuantity]:
        return [self.proposed, self.existing, self.total, self.dscr, self.gcf_dscr]

    def as_dict(self) -> dict:
        return {q.fact_key: q.value for q in self.quantities()}


def empty_summary() -> DebtServiceSummary:
    return DebtServiceSummary(
        proposed=DerivedQuantity("ANNUAL_DEBT_SERVICE_PROPOSED"),
        existing=DerivedQuantity("ANNUAL_DEBT_SERVICE_EXISTING"),
        total=DerivedQuantity("ANNUAL_DEBT_SERVICE"),
        dscr=DerivedQuantity("DSCR"),
        gcf_dscr=DerivedQuantity("GCF_DSCR"),
    )


def amortizing_annual_payment(principal: float, annual_rate: float, amort_months: int) -> Optional[float]:
    """Twelve level monthly payments on a fully amortizing loan."""
    if not is_number(principal) or not is_number(annual_rate) or principal <= 0 or amort_months <= 0:
        return None
    r = annual_rate / 12.0
    if r <= -1:
        return None
    if r == 0:
        return principal / amort_months * 12.0
    try:
        payment = principal * r / (1 - (1 + r) ** (-amort_months))
    except (ArithmeticError, ValueError):
        return None
    return payment * 12.0 if is_number(payment) else None


def _proposed(facts: List[Fact]) -> DerivedQuantity:
    q = DerivedQuantity("ANNUAL_DEBT_SERVICE_PROPOSED")
    direct = pick_latest_fact(facts, "STRUCTURAL_PRICING", "ANNUAL_DEBT_SERVICE")
    if direct is not None and is_number(direct.fact_value_num):
        q.value = direct.fact_value_num
        q.calc = "STRUCTURAL_PRICING.ANNUAL_DEBT_SERVICE"
        q.inputs = [fact_ref(direct)]
        return q

    loan = pick_latest_fact(facts, "STRUCTURAL_PRICING", "LOAN_AMOUNT")
    rate = pick_latest_fact(facts, "STRUCTURAL_PRICING", "INTEREST_RATE")
    amort = pick_latest_fact(facts, "STRUCTURAL_PRICING", "AMORT_MONTHS")
    if loan is None or rate is None or amort is None:
        return q
    if not (is_number(loan.fact_value_num) and is_number(rate.fact_value_num) and is_number(amort.fact_value_num)):
        return q
    value = amortizing_annual_payment(loan.fact_value_num, rate.fact_value_num, int(amort.fact_value_num))
    if value is None:
        return q
    q.value = value
    q.calc = (
        f"12 * PMT({rate.fact_value_num:.4f}/12, {int(amort.fact_value_num)}, {loan.fact_value_num:.2f})"
    )
    q.inputs = [fact_ref(loan), fact_ref(rate), fact_ref(amort)]
    return q


def _existing(rows: Optional[List[ExistingDebtRow]]) -> DerivedQuantity:
    q = DerivedQuantity("ANNUAL_DEBT_SERVICE_EXISTING")
    if rows is None or len(rows) == 0:
        return q
    included = [
        r for r in rows
        if r.include_in_global and not r.is_being_refinanced and is_number(r.annual_debt_service)
    ]
    q.value = sum(float(r.annual_debt_service) for r in included)
    q.calc = "SUM(existing_debts.annual_debt_service WHERE include_in_global AND NOT is_being_refinanced)"
    q.inputs = [
        FactRef(fact_id=r.id, fact_type="EXISTING_DEBT", fact_key="ANNUAL_DEBT_SERVICE")
        for r in included
    ]
    return q


def _ratio(fact_key: str, numerator: Optional[Fact], label: str, total: DerivedQuantity) -> DerivedQuantity:
    q = DerivedQuantity(fact_key)
    if numerator is None or not is_number(total.value) or total.value <= 0:
        return q
    value = safe_divide(numerator.fact_value_num, total.value)
    if value is None:
        return q
    q.value = value
    q.calc = f"{label} / ANNUAL_DEBT_SERVICE = {numerator.fact_value_num:.2f} / {total.value:.2f}"
    q.inputs = [fact_ref(numerator)] + list(total.inputs)
    return q


def aggregate_debt_service(facts: List[Fact], existing_debts: Optional[List[ExistingDebtRow]] = None) -> DebtServiceSummary:
    proposed = _proposed(facts)
    existing = _existing(existing_debts)

    total = DerivedQuantity("ANNUAL_DEBT_SERVICE")
    parts = [q for q in (proposed, existing) if is_number(q.value)]
    if parts:
        total.value = sum(q.value for q in parts)
        total.calc = " + ".join(f"{q.fact_key} ({q.value:.2f})" for q in parts)
        total.inputs = [ref for q in parts for ref in q.inputs]

    noi = pick_latest_fact(facts, "FINANCIAL_ANALYSIS", "NOI_TTM")
    noi_label = "NOI_TTM"
    if noi is None or not is_number(noi.fact_value_num):
        noi = pick_latest_fact(facts, "T12", "NOI")
        noi_label = "T12.NOI"
    gcf = pick_latest_fact(facts, "FINANCIAL_ANALYSIS", "GCF_GLOBAL_CASH_FLOW")

    return DebtServiceSummary(
        proposed=proposed,
        existing=existing,
        total=total,
        dscr=_ratio("DSCR", noi, noi_label, total),
        gcf_dscr=_ratio("GCF_DSCR", gcf, "GCF_GLOBAL_CASH_FLOW", total),
    )
