"""
Global cash flow: business cash flow plus every guarantor's personal income, less personal
obligations, measured against the deal's annual debt service, by fiscal year.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional

from engine.facts import (
    fact_ref,
    filter_facts,
    is_number,
    merge_refs,
    pick_latest_fact,
    safe_divide,
    safe_sum,
    sort_latest_first,
)
from engine.spreads.base import Grid, RenderContext, RowDef, SpreadTemplate
from engine.spreads.personal_income import INCOME_LINES as PERSONAL_INCOME_LINES
from engine.spreads.personal_income import year_columns, year_key
from models.facts import Fact
from models.spreads import RenderedSpread

ROWS: List[RowDef] = [
    RowDef("BUSINESS_NET_INCOME", "Business Net Income", "BUSINESS"),
    RowDef("BUSINESS_DEPRECIATION", "Depreciation & Amortization", "BUSINESS"),
    RowDef("BUSINESS_INTEREST", "Interest Expense", "BUSINESS"),
    RowDef(
        "BUSINESS_CASH_FLOW", "Business Cash Flow", "BUSINESS",
        "BUSINESS_NET_INCOME + BUSINESS_DEPRECIATION + BUSINESS_INTEREST",
    ),
    RowDef("PERSONAL_INCOME", "Personal Income (all guarantors)", "PERSONAL"),
    RowDef("PERSONAL_LIVING_EXPENSES", "Personal Living Expenses", "PERSONAL"),
    RowDef("PERSONAL_DEBT_SERVICE", "Personal Debt Service", "PERSONAL"),
    RowDef(
        "GLOBAL_CASH_FLOW", "Global Cash Flow", "GLOBAL",
        "BUSINESS_CASH_FLOW + PERSONAL_INCOME - PERSONAL_LIVING_EXPENSES - PERSONAL_DEBT_SERVICE",
    ),
    RowDef("ANNUAL_DEBT_SERVICE", "Annual Debt Service", "GLOBAL"),
    RowDef("GCF_DSCR", "Global DSCR", "GLOBAL", "GLOBAL_CASH_FLOW / ANNUAL_DEBT_SERVICE", kind="ratio"),
]

_BUSINESS_MAP = {
    "NET_INCOME": "BUSINESS_NET_INCOME",
    "DEPRECIATION": "BUSINESS_DEPRECIATION",
    "INTEREST_EXPENSE": "BUSINESS_INTEREST",
}


def _personal_income_by_year(facts: List[Fact]) -> Dict[str, tuple]:
    """year -> (total, refs), summing each owner's reported total or, failing that, their income lines."""
    by_owner_year: Dict[tuple, List[Fact]] = defaultdict(list)
    for f in filter_facts(facts, fact_type="PERSONAL_INCOME"):
        by_owner_year[(f.owner_entity_id, year_key(f))].append(f)

    out: Dict[str, tuple] = {}
    for (owner, year), group in sorted(by_owner_year.items()):
        reported = pick_latest_fact(group, "PERSONAL_INCOME", "TOTAL_PERSONAL_INCOME")
        if reported is not None and is_number(reported.fact_value_num):
            owner_total, refs = reported.fact_value_num, [fact_ref(reported)]
        else:
            picked = [pick_latest_fact(group, "PERSONAL_INCOME", k) for k in PERSONAL_INCOME_LINES]
            picked = [f for f in picked if f is not None and is_number(f.fact_value_num)]
            owner_total = safe_sum(f.fact_value_num for f in picked)
            refs = [fact_ref(f) for f in picked]
        if owner_total is None:
            continue
        prev_total, prev_refs = out.get(year, (0.0, []))
        out[year] = (prev_total + owner_total, merge_refs(prev_refs, refs))
    return out


def _pfs_obligation(facts: List[Fact], key: str) -> tuple:
    """Latest value of a PFS obligation per owner, summed across owners."""
    owners = {f.owner_entity_id for f in filter_facts(facts, fact_type="PFS", fact_key=key)}
    picked = [pick_latest_fact(facts, "PFS", key, owner_entity_id=o) for o in sorted(owners)]
    picked = [f for f in picked if f is not None and is_number(f.fact_value_num)]
    return safe_sum(f.fact_value_num for f in picked), [fact_ref(f) for f in picked]


class GlobalCashFlowTemplate(SpreadTemplate):
    spread_type = "GLOBAL_CASH_FLOW"
    title = "Global Cash Flow"
    version = 1
    priority = 60
    prerequisite_fact_types = ("TAX_RETURN", "INCOME_STATEMENT", "PERSONAL_INCOME")

    def render(self, ctx: RenderContext) -> RenderedSpread:
        business = filter_facts(ctx.facts, fact_type="TAX_RETURN")
        personal = filter_facts(ctx.facts, fact_type="PERSONAL_INCOME")
        columns = year_columns(business + personal)
        col_keys = [c.key for c in columns]
        grid = Grid([r.key for r in ROWS], col_keys)

        for f in sort_latest_first(business):
            row = _BUSINESS_MAP.get(f.fact_key)
            if row:
                grid.set_fact(row, year_key(f), f, source="TaxReturn")

        for year, (total, refs) in _personal_income_by_year(ctx.facts).items():
            if year in grid.col_keys:
                grid.set_value("PERSONAL_INCOME", year, total, "Computed", refs, "SUM(owner personal income)")

        living, living_refs = _pfs_obligation(ctx.facts, "PFS_LIVING_EXPENSES")
        personal_ds, personal_ds_refs = _pfs_obligation(ctx.facts, "PFS_ANNUAL_DEBT_SERVICE")
        ads = pick_latest_fact(ctx.facts, "FINANCIAL_ANALYSIS", "ANNUAL_DEBT_SERVICE")
        for col in col_keys:
            grid.set_value("PERSONAL_LIVING_EXPENSES", col, living, "Computed", living_refs, "SUM(PFS_LIVING_EXPENSES)")
            grid.set_value("PERSONAL_DEBT_SERVICE", col, personal_ds, "Computed", personal_ds_refs, "SUM(PFS_ANNUAL_DEBT_SERVICE)")
            if ads is not None:
                grid.set_fact("ANNUAL_DEBT_SERVICE", col, ads)
            self._apply_formulas(grid, col, ctx.facts)

        primary = col_keys[-1]
        return self._spread(
            ctx,
            as_of_date=columns[-1].end_date,
            columns=col_keys,
            columns_v2=columns,
            rows=grid.to_rows(ROWS, columns, primary=primary),
            totals={
                "GLOBAL_CASH_FLOW": grid.get("GLOBAL_CASH_FLOW", primary),
                "BUSINESS_CASH_FLOW": grid.get("BUSINESS_CASH_FLOW", primary),
                "GCF_DSCR": grid.get("GCF_DSCR", primary),
            },
            meta={"primary_column": primary},
        )

    def backfill(self, spread: RenderedSpread) -> Dict[str, Optional[float]]:
        out: Dict[str, Optional[float]] = {}
        if is_number(spread.totals.get("GLOBAL_CASH_FLOW")):
            out["GCF_GLOBAL_CASH_FLOW"] = spread.totals["GLOBAL_CASH_FLOW"]
        if is_number(spread.totals.get("BUSINESS_CASH_FLOW")):
            out["CASH_FLOW_AVAILABLE"] = spread.totals["BUSINESS_CASH_FLOW"]
        return out

    def _apply_formulas(self, grid: Grid, col: str, facts: List[Fact]) -> None:
        g = lambda row: grid.get(row, col)  # noqa: E731

        if is_number(g("BUSINESS_NET_INCOME")):
            parts = ["BUSINESS_NET_INCOME", "BUSINESS_DEPRECIATION", "BUSINESS_INTEREST"]
            grid.set_computed("BUSINESS_CASH_FLOW", col, safe_sum(g(k) for k in parts), ROWS[3].formula, parts)
        else:
            noi = pick_latest_fact(facts, "FINANCIAL_ANALYSIS", "NOI_TTM")
            if noi is not None and col == grid.col_keys[-1]:
                grid.set_fact("BUSINESS_CASH_FLOW", col, noi, source="NOI_TTM")

        inflow = safe_sum([g("BUSINESS_CASH_FLOW"), g("PERSONAL_INCOME")])
        if inflow is not None:
            outflow = safe_sum([g("PERSONAL_LIVING_EXPENSES"), g("PERSONAL_DEBT_SERVICE")]) or 0.0
            grid.set_computed(
                "GLOBAL_CASH_FLOW", col, inflow - outflow, ROWS[7].formula,
                ["BUSINESS_CASH_FLOW", "PERSONAL_INCOME", "PERSONAL_LIVING_EXPENSES", "PERSONAL_DEBT_SERVICE"],
            )
        ads = g("ANNUAL_DEBT_SERVICE")
        if is_number(ads) and ads > 0:
            grid.set_computed(
                "GCF_DSCR", col, safe_divide(g("GLOBAL_CASH_FLOW"), ads),
                "GLOBAL_CASH_FLOW / ANNUAL_DEBT_SERVICE", ["GLOBAL_CASH_FLOW", "ANNUAL_DEBT_SERVICE"],
            )
