"""
Balance sheet with one column per reporting date, newest first.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from engine.facts import filter_facts, safe_divide, safe_subtract, safe_sum, sort_latest_first
from engine.spreads.base import Grid, RenderContext, RowDef, SpreadTemplate
from models.facts import Fact
from models.spreads import RenderedSpread, SpreadColumn

CURRENT_ASSETS = ["BS_CASH", "BS_ACCOUNTS_RECEIVABLE", "BS_INVENTORY", "BS_OTHER_CURRENT_ASSETS"]
CURRENT_LIABILITIES = [
    "BS_ACCOUNTS_PAYABLE",
    "BS_ACCRUED_LIABILITIES",
    "BS_CURRENT_PORTION_LTD",
    "BS_OTHER_CURRENT_LIABILITIES",
]

ROWS: List[RowDef] = [
    RowDef("BS_CASH", "Cash & Equivalents", "CURRENT_ASSETS"),
    RowDef("BS_ACCOUNTS_RECEIVABLE", "Accounts Receivable", "CURRENT_ASSETS"),
    RowDef("BS_INVENTORY", "Inventory", "CURRENT_ASSETS"),
    RowDef("BS_OTHER_CURRENT_ASSETS", "Other Current Assets", "CURRENT_ASSETS"),
    RowDef("BS_TOTAL_CURRENT_ASSETS", "Total Current Assets", "CURRENT_ASSETS", "SUM(CURRENT_ASSETS)"),
    RowDef("BS_PPE_GROSS", "Property, Plant & Equipment", "FIXED_ASSETS"),
    RowDef("BS_ACCUMULATED_DEPRECIATION", "Accumulated Depreciation", "FIXED_ASSETS"),
    RowDef("BS_NET_FIXED_ASSETS", "Net Fixed Assets", "FIXED_ASSETS", "BS_PPE_GROSS - BS_ACCUMULATED_DEPRECIATION"),
    RowDef("BS_OTHER_NON_CURRENT_ASSETS", "Other Non-Current Assets", "FIXED_ASSETS"),
    RowDef(
        "BS_TOTAL_ASSETS", "Total Assets", "ASSETS",
        "BS_TOTAL_CURRENT_ASSETS + BS_NET_FIXED_ASSETS + BS_OTHER_NON_CURRENT_ASSETS",
    ),
    RowDef("BS_ACCOUNTS_PAYABLE", "Accounts Payable", "CURRENT_LIABILITIES"),
    RowDef("BS_ACCRUED_LIABILITIES", "Accrued Liabilities", "CURRENT_LIABILITIES"),
    RowDef("BS_CURRENT_PORTION_LTD", "Current Portion of LTD", "CURRENT_LIABILITIES"),
    RowDef("BS_OTHER_CURRENT_LIABILITIES", "Other Current Liabilities", "CURRENT_LIABILITIES"),
    RowDef("BS_TOTAL_CURRENT_LIABILITIES", "Total Current Liabilities", "CURRENT_LIABILITIES", "SUM(CURRENT_LIABILITIES)"),
    RowDef("BS_LONG_TERM_DEBT", "Long-Term Debt", "LONG_TERM_LIABILITIES"),
    RowDef("BS_OTHER_NON_CURRENT_LIABILITIES", "Other Non-Current Liabilities", "LONG_TERM_LIABILITIES"),
    RowDef(
        "BS_TOTAL_LIABILITIES", "Total Liabilities", "LIABILITIES",
        "BS_TOTAL_CURRENT_LIABILITIES + BS_LONG_TERM_DEBT + BS_OTHER_NON_CURRENT_LIABILITIES",
    ),
    RowDef("BS_TOTAL_EQUITY", "Reported Equity", "EQUITY"),
    RowDef("BS_NET_WORTH", "Net Worth", "EQUITY", "BS_TOTAL_ASSETS - BS_TOTAL_LIABILITIES"),
    RowDef("BS_CURRENT_RATIO", "Current Ratio", "RATIOS", "BS_TOTAL_CURRENT_ASSETS / BS_TOTAL_CURRENT_LIABILITIES", kind="ratio"),
    RowDef("BS_DEBT_TO_EQUITY", "Debt to Equity", "RATIOS", "BS_TOTAL_LIABILITIES / BS_NET_WORTH", kind="ratio"),
]

VALUE_COLUMN = "VALUE"


def _columns(facts: List[Fact]) -> List[SpreadColumn]:
    dates = sorted({f.fact_period_end for f in facts if f.fact_period_end}, reverse=True)
    cols = [SpreadColumn(key=d.isoformat(), label=d.strftime("%m/%d/%Y"), kind="period", end_date=d) for d in dates]
    if any(f.fact_period_end is None for f in facts) or not cols:
        cols.append(SpreadColumn(key=VALUE_COLUMN, label="Value", kind="other"))
    return cols


def _col_for(f: Fact) -> str:
    return f.fact_period_end.isoformat() if f.fact_period_end else VALUE_COLUMN


class BalanceSheetTemplate(SpreadTemplate):
    spread_type = "BALANCE_SHEET"
    title = "Balance Sheet"
    version = 1
    priority = 30
    prerequisite_fact_types = ("BALANCE_SHEET",)

    def render(self, ctx: RenderContext) -> RenderedSpread:
        facts = filter_facts(ctx.facts, fact_type="BALANCE_SHEET")
        columns = _columns(facts)
        grid = Grid([r.key for r in ROWS], [c.key for c in columns])
        for f in sort_latest_first(facts):
            grid.set_fact(f.fact_key, _col_for(f), f, source="BALANCE_SHEET")
        for c in columns:
            self._apply_formulas(grid, c.key)

        newest = columns[0]
        return self._spread(
            ctx,
            as_of_date=newest.end_date,
            columns=[c.key for c in columns],
            columns_v2=columns,
            rows=grid.to_rows(ROWS, columns, primary=newest.key),
            totals={
                "TOTAL_ASSETS": grid.get("BS_TOTAL_ASSETS", newest.key),
                "TOTAL_LIABILITIES": grid.get("BS_TOTAL_LIABILITIES", newest.key),
                "NET_WORTH": grid.get("BS_NET_WORTH", newest.key),
            },
            meta={"period_count": len([c for c in columns if c.kind == "period"])},
        )

    def backfill(self, spread: RenderedSpread) -> Dict[str, Optional[float]]:
        return {k: v for k, v in spread.totals.items() if v is not None}

    def _apply_formulas(self, grid: Grid, col: str) -> None:
        g = lambda row: grid.get(row, col)  # noqa: E731

        grid.set_computed("BS_TOTAL_CURRENT_ASSETS", col, safe_sum(g(k) for k in CURRENT_ASSETS), "SUM(CURRENT_ASSETS)", CURRENT_ASSETS)
        ppe, dep = g("BS_PPE_GROSS"), g("BS_ACCUMULATED_DEPRECIATION")
        net_fixed = safe_subtract(ppe, abs(dep)) if dep is not None else ppe
        grid.set_computed(
            "BS_NET_FIXED_ASSETS", col, net_fixed,
            "BS_PPE_GROSS - BS_ACCUMULATED_DEPRECIATION", ["BS_PPE_GROSS", "BS_ACCUMULATED_DEPRECIATION"],
        )
        asset_parts = ["BS_TOTAL_CURRENT_ASSETS", "BS_NET_FIXED_ASSETS", "BS_OTHER_NON_CURRENT_ASSETS"]
        grid.set_computed("BS_TOTAL_ASSETS", col, safe_sum(g(k) for k in asset_parts), ROWS[9].formula, asset_parts)
        grid.set_computed(
            "BS_TOTAL_CURRENT_LIABILITIES", col, safe_sum(g(k) for k in CURRENT_LIABILITIES),
            "SUM(CURRENT_LIABILITIES)", CURRENT_LIABILITIES,
        )
        liab_parts = ["BS_TOTAL_CURRENT_LIABILITIES", "BS_LONG_TERM_DEBT", "BS_OTHER_NON_CURRENT_LIABILITIES"]
        grid.set_computed("BS_TOTAL_LIABILITIES", col, safe_sum(g(k) for k in liab_parts), ROWS[17].formula, liab_parts)
        grid.set_computed(
            "BS_NET_WORTH", col, safe_subtract(g("BS_TOTAL_ASSETS"), g("BS_TOTAL_LIABILITIES")),
            "BS_TOTAL_ASSETS - BS_TOTAL_LIABILITIES", ["BS_TOTAL_ASSETS", "BS_TOTAL_LIABILITIES"],
        )
        grid.set_computed(
            "BS_CURRENT_RATIO", col, safe_divide(g("BS_TOTAL_CURRENT_ASSETS"), g("BS_TOTAL_CURRENT_LIABILITIES")),
            "BS_TOTAL_CURRENT_ASSETS / BS_TOTAL_CURRENT_LIABILITIES",
            ["BS_TOTAL_CURRENT_ASSETS", "BS_TOTAL_CURRENT_LIABILITIES"],
        )
        grid.set_computed(
            "BS_DEBT_TO_EQUITY", col, safe_divide(g("BS_TOTAL_LIABILITIES"), g("BS_NET_WORTH")),
            "BS_TOTAL_LIABILITIES / BS_NET_WORTH", ["BS_TOTAL_LIABILITIES", "BS_NET_WORTH"],
        )
