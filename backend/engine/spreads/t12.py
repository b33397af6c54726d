"""
Trailing-twelve-month operating statement.

Columns are the twelve months ending at the latest income-statement month (oldest first),
followed by YTD, PY_YTD and TTM. Monthly facts land on their period-start month; anything
longer lands on the aggregate column it describes. Aggregates and formulas only fill
empty cells, so a reported total is never replaced by a recomputed one.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from engine.facts import (
    filter_facts,
    is_number,
    pick_latest_fact,
    safe_divide,
    safe_subtract,
    safe_sum,
    sort_latest_first,
)
from engine.spreads.base import Grid, RenderContext, RowDef, SpreadTemplate, add_months, month_start
from models.facts import Fact
from models.spreads import RenderedSpread, SpreadColumn

INCOME_LINES = ["GROSS_RENTAL_INCOME", "VACANCY_CONCESSIONS", "OTHER_INCOME"]
OPEX_LINES = [
    "REPAIRS_MAINTENANCE",
    "UTILITIES",
    "PROPERTY_MANAGEMENT",
    "REAL_ESTATE_TAXES",
    "INSURANCE",
    "PAYROLL",
    "MARKETING",
    "PROFESSIONAL_FEES",
    "OTHER_OPEX",
]
CAPEX_LINES = ["REPLACEMENT_RESERVES", "CAPEX"]

ROWS: List[RowDef] = [
    RowDef("GROSS_RENTAL_INCOME", "Gross Rental Income", "INCOME"),
    RowDef("VACANCY_CONCESSIONS", "Vacancy & Concessions", "INCOME"),
    RowDef("OTHER_INCOME", "Other Income", "INCOME"),
    RowDef("TOTAL_INCOME", "Total Income", "INCOME", "GROSS_RENTAL_INCOME - VACANCY_CONCESSIONS + OTHER_INCOME"),
    RowDef("REPAIRS_MAINTENANCE", "Repairs & Maintenance", "OPERATING_EXPENSES"),
    RowDef("UTILITIES", "Utilities", "OPERATING_EXPENSES"),
    RowDef("PROPERTY_MANAGEMENT", "Property Management", "OPERATING_EXPENSES"),
    RowDef("REAL_ESTATE_TAXES", "Real Estate Taxes", "OPERATING_EXPENSES"),
    RowDef("INSURANCE", "Insurance", "OPERATING_EXPENSES"),
    RowDef("PAYROLL", "Payroll", "OPERATING_EXPENSES"),
    RowDef("MARKETING", "Marketing", "OPERATING_EXPENSES"),
    RowDef("PROFESSIONAL_FEES", "Professional Fees", "OPERATING_EXPENSES"),
    RowDef("OTHER_OPEX", "Other Operating Expenses", "OPERATING_EXPENSES"),
    RowDef("TOTAL_OPEX", "Total Operating Expenses", "OPERATING_EXPENSES", "SUM(OPERATING_EXPENSES)"),
    RowDef("NOI", "Net Operating Income", "NOI", "TOTAL_INCOME - TOTAL_OPEX"),
    RowDef("REPLACEMENT_RESERVES", "Replacement Reserves", "CAPEX_RESERVES"),
    RowDef("CAPEX", "Capital Expenditures", "CAPEX_RESERVES"),
    RowDef("TOTAL_CAPEX", "Total CapEx & Reserves", "CAPEX_RESERVES", "REPLACEMENT_RESERVES + CAPEX"),
    RowDef("NET_CASH_FLOW_BEFORE_DEBT", "Net Cash Flow Before Debt", "CASH_FLOW", "NOI - TOTAL_CAPEX"),
    RowDef("DEBT_SERVICE", "Debt Service", "CASH_FLOW"),
    RowDef("CASH_FLOW_AFTER_DEBT", "Cash Flow After Debt", "CASH_FLOW", "NET_CASH_FLOW_BEFORE_DEBT - DEBT_SERVICE"),
    RowDef("OPEX_RATIO", "OpEx Ratio", "RATIOS", "TOTAL_OPEX / TOTAL_INCOME", kind="pct"),
    RowDef("NOI_MARGIN", "NOI Margin", "RATIOS", "NOI / TOTAL_INCOME", kind="pct"),
]

TAX_RETURN_MAP = {
    "GROSS_RECEIPTS": "GROSS_RENTAL_INCOME",
    "TOTAL_DEDUCTIONS": "TOTAL_OPEX",
    "NET_INCOME": "NOI",
}
LEGACY_T12_MAP = {
    "EFFECTIVE_GROSS_INCOME": "TOTAL_INCOME",
    "OPERATING_EXPENSES": "TOTAL_OPEX",
    "NOI": "NOI",
}
_AGGREGATED_LINES = INCOME_LINES + OPEX_LINES + CAPEX_LINES

_MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _is_monthly(f: Fact) -> bool:
    if f.fact_period_start is None or f.fact_period_end is None:
        return False
    return 0 <= (f.fact_period_end - f.fact_period_start).days <= 31


def _month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def _anchor_month(income_facts: List[Fact], fallback: date) -> date:
    monthly = [f.fact_period_start for f in income_facts if _is_monthly(f)]
    if monthly:
        return month_start(max(monthly))
    ends = [f.fact_period_end for f in income_facts if f.fact_period_end]
    if ends:
        return month_start(max(ends))
    return month_start(fallback)


def _aggregate_column(f: Fact, anchor: date) -> str:
    """Which aggregate column a multi-month fact describes."""
    start, end = f.fact_period_start, f.fact_period_end
    if start is None or end is None or start.month != 1:
        return "TTM"
    if end.year == anchor.year and end.month <= anchor.month and start.year == anchor.year:
        return "YTD" if end.month < 12 else "TTM"
    if end.year == anchor.year - 1 and start.year == anchor.year - 1 and end.month == anchor.month and end.month < 12:
        return "PY_YTD"
    return "TTM"


class T12Template(SpreadTemplate):
    spread_type = "T12"
    title = "T12 Operating Statement"
    version = 3
    priority = 10
    prerequisite_fact_types = ("INCOME_STATEMENT", "TAX_RETURN")
    backfill_map = {
        "NOI_TTM": ("NOI", "TTM"),
        "TOTAL_INCOME_TTM": ("TOTAL_INCOME", "TTM"),
        "TOTAL_OPEX_TTM": ("TOTAL_OPEX", "TTM"),
    }

    def columns(self, anchor: date) -> List[SpreadColumn]:
        cols = []
        for i in range(11, -1, -1):
            m = add_months(anchor, -i)
            end = add_months(m, 1)
            cols.append(SpreadColumn(
                key=_month_key(m),
                label=f"{_MONTH_NAMES[m.month - 1]} {m.year}",
                kind="month",
                start_date=m,
                end_date=date.fromordinal(end.toordinal() - 1),
            ))
        anchor_end = date.fromordinal(add_months(anchor, 1).toordinal() - 1)
        cols.append(SpreadColumn(key="YTD", label="YTD", kind="ytd", start_date=date(anchor.year, 1, 1), end_date=anchor_end))
        cols.append(SpreadColumn(
            key="PY_YTD",
            label="PY YTD",
            kind="prior_ytd",
            start_date=date(anchor.year - 1, 1, 1),
            end_date=date.fromordinal(add_months(date(anchor.year - 1, anchor.month, 1), 1).toordinal() - 1),
        ))
        cols.append(SpreadColumn(key="TTM", label="TTM", kind="ttm", start_date=add_months(anchor, -11), end_date=anchor_end))
        return cols

    def render(self, ctx: RenderContext) -> RenderedSpread:
        income = filter_facts(ctx.facts, fact_type="INCOME_STATEMENT")
        fallback_facts = filter_facts(ctx.facts, fact_type="TAX_RETURN") + filter_facts(ctx.facts, fact_type="T12")
        anchor = _anchor_month(income or fallback_facts, ctx.now.date())
        columns = self.columns(anchor)
        month_keys = [c.key for c in columns if c.kind == "month"]
        grid = Grid([r.key for r in ROWS], [c.key for c in columns])
        row_keys = set(grid.row_keys)

        # latest first, so the first write into a cell is the most recent fact
        for f in sort_latest_first(income):
            if f.fact_key not in row_keys:
                continue
            if _is_monthly(f):
                grid.set_fact(f.fact_key, _month_key(f.fact_period_start), f)
            else:
                grid.set_fact(f.fact_key, _aggregate_column(f, anchor), f)

        self._aggregate(grid, month_keys, anchor)
        self._apply_fallbacks(grid, ctx.facts)
        for col in grid.col_keys:
            self._apply_formulas(grid, col)

        noi = grid.get("NOI", "TTM")
        return self._spread(
            ctx,
            as_of_date=columns[-1].end_date,
            columns=[c.key for c in columns],
            columns_v2=columns,
            rows=grid.to_rows(ROWS, columns, primary="TTM"),
            totals={
                "TOTAL_INCOME_TTM": grid.get("TOTAL_INCOME", "TTM"),
                "TOTAL_OPEX_TTM": grid.get("TOTAL_OPEX", "TTM"),
                "NOI_TTM": noi,
            },
            meta={"anchor_month": _month_key(anchor), "fact_count": len(income)},
        )

    def _apply_fallbacks(self, grid: Grid, facts: List[Fact]) -> None:
        for src_key, row in TAX_RETURN_MAP.items():
            f = pick_latest_fact(facts, "TAX_RETURN", src_key)
            if f is not None:
                grid.set_fact(row, "TTM", f, source="TaxReturn")
        for src_key, row in LEGACY_T12_MAP.items():
            f = pick_latest_fact(facts, "T12", src_key)
            if f is not None:
                grid.set_fact(row, "TTM", f, source="LegacyT12")
        ds = pick_latest_fact(facts, "FINANCIAL_ANALYSIS", "ANNUAL_DEBT_SERVICE")
        if ds is not None:
            grid.set_fact("DEBT_SERVICE", "TTM", ds)

    def _aggregate(self, grid: Grid, month_keys: List[str], anchor: date) -> None:
        ytd_keys = [k for k in month_keys if k.startswith(f"{anchor.year:04d}-")]
        for line in _AGGREGATED_LINES:
            present = [k for k in month_keys if grid.has(line, k)]
            if not present:
                continue
            grid.set_computed(
                line, "TTM", safe_sum(grid.get(line, k) for k in month_keys),
                "SUM(months)", operands=[line], operand_cols=month_keys,
            )
            ytd_present = [k for k in ytd_keys if grid.has(line, k)]
            if ytd_present:
                grid.set_computed(
                    line, "YTD", safe_sum(grid.get(line, k) for k in ytd_keys),
                    "SUM(YTD months)", operands=[line], operand_cols=ytd_keys,
                )

    def _apply_formulas(self, grid: Grid, col: str) -> None:
        g = lambda row: grid.get(row, col)  # noqa: E731

        gri, vac, other = g("GROSS_RENTAL_INCOME"), g("VACANCY_CONCESSIONS"), g("OTHER_INCOME")
        if is_number(gri) or is_number(other):
            total_income = (gri or 0.0) - abs(vac or 0.0) + (other or 0.0)
            grid.set_computed("TOTAL_INCOME", col, total_income, ROWS[3].formula, INCOME_LINES)

        grid.set_computed("TOTAL_OPEX", col, safe_sum(g(k) for k in OPEX_LINES), "SUM(OPERATING_EXPENSES)", OPEX_LINES)
        grid.set_computed(
            "NOI", col, safe_subtract(g("TOTAL_INCOME"), g("TOTAL_OPEX")),
            "TOTAL_INCOME - TOTAL_OPEX", ["TOTAL_INCOME", "TOTAL_OPEX"],
        )
        grid.set_computed("TOTAL_CAPEX", col, safe_sum(g(k) for k in CAPEX_LINES), "REPLACEMENT_RESERVES + CAPEX", CAPEX_LINES)
        if is_number(g("NOI")):
            grid.set_computed(
                "NET_CASH_FLOW_BEFORE_DEBT", col, g("NOI") - (g("TOTAL_CAPEX") or 0.0),
                "NOI - TOTAL_CAPEX", ["NOI", "TOTAL_CAPEX"],
            )
        grid.set_computed(
            "CASH_FLOW_AFTER_DEBT", col, safe_subtract(g("NET_CASH_FLOW_BEFORE_DEBT"), g("DEBT_SERVICE")),
            "NET_CASH_FLOW_BEFORE_DEBT - DEBT_SERVICE", ["NET_CASH_FLOW_BEFORE_DEBT", "DEBT_SERVICE"],
        )
        grid.set_computed(
            "OPEX_RATIO", col, safe_divide(g("TOTAL_OPEX"), g("TOTAL_INCOME")),
            "TOTAL_OPEX / TOTAL_INCOME", ["TOTAL_OPEX", "TOTAL_INCOME"],
        )
        grid.set_computed(
            "NOI_MARGIN", col, safe_divide(g("NOI"), g("TOTAL_INCOME")),
            "NOI / TOTAL_INCOME", ["NOI", "TOTAL_INCOME"],
        )
