"""
Personal financial statement for one guarantor. Reported totals win over computed ones.
"""

from __future__ import annotations

from typing import List

from engine.facts import filter_facts, safe_subtract, safe_sum, sort_latest_first
from engine.spreads.base import Grid, RenderContext, RowDef, SpreadTemplate
from models.facts import Fact
from models.spreads import RenderedSpread, SpreadColumn

ASSET_KEYS = [
    "PFS_CASH",
    "PFS_SECURITIES",
    "PFS_REAL_ESTATE",
    "PFS_BUSINESS_INTERESTS",
    "PFS_RETIREMENT",
    "PFS_OTHER_ASSETS",
]
LIABILITY_KEYS = [
    "PFS_MORTGAGES",
    "PFS_INSTALLMENT_DEBT",
    "PFS_CREDIT_CARDS",
    "PFS_CONTINGENT",
    "PFS_OTHER_LIABILITIES",
]

ROWS: List[RowDef] = [
    RowDef("PFS_CASH", "Cash", "ASSETS"),
    RowDef("PFS_SECURITIES", "Marketable Securities", "ASSETS"),
    RowDef("PFS_REAL_ESTATE", "Real Estate", "ASSETS"),
    RowDef("PFS_BUSINESS_INTERESTS", "Business Interests", "ASSETS"),
    RowDef("PFS_RETIREMENT", "Retirement Accounts", "ASSETS"),
    RowDef("PFS_OTHER_ASSETS", "Other Assets", "ASSETS"),
    RowDef("PFS_TOTAL_ASSETS", "Total Assets", "ASSETS", "SUM(ASSETS)"),
    RowDef("PFS_MORTGAGES", "Mortgages", "LIABILITIES"),
    RowDef("PFS_INSTALLMENT_DEBT", "Installment Debt", "LIABILITIES"),
    RowDef("PFS_CREDIT_CARDS", "Credit Cards", "LIABILITIES"),
    RowDef("PFS_CONTINGENT", "Contingent Liabilities", "LIABILITIES"),
    RowDef("PFS_OTHER_LIABILITIES", "Other Liabilities", "LIABILITIES"),
    RowDef("PFS_TOTAL_LIABILITIES", "Total Liabilities", "LIABILITIES", "SUM(LIABILITIES)"),
    RowDef("PFS_NET_WORTH", "Net Worth", "NET_WORTH", "PFS_TOTAL_ASSETS - PFS_TOTAL_LIABILITIES"),
    RowDef("PFS_ANNUAL_DEBT_SERVICE", "Annual Debt Service", "OBLIGATIONS"),
    RowDef("PFS_LIVING_EXPENSES", "Annual Living Expenses", "OBLIGATIONS"),
]

VALUE_COLUMN = "VALUE"


class PersonalFinancialStatementTemplate(SpreadTemplate):
    spread_type = "PERSONAL_FINANCIAL_STATEMENT"
    title = "Personal Financial Statement"
    version = 1
    priority = 50
    owner_type = "PERSONAL"
    prerequisite_fact_types = ("PFS",)

    def render(self, ctx: RenderContext) -> RenderedSpread:
        facts: List[Fact] = filter_facts(
            ctx.facts, fact_type="PFS", owner_type="PERSONAL", owner_entity_id=ctx.owner_entity_id,
        )
        as_of = max((f.fact_period_end for f in facts if f.fact_period_end), default=None)
        columns = [SpreadColumn(key=VALUE_COLUMN, label="Value", kind="other", end_date=as_of)]
        grid = Grid([r.key for r in ROWS], [VALUE_COLUMN])
        for f in sort_latest_first(facts):
            grid.set_fact(f.fact_key, VALUE_COLUMN, f)

        g = lambda row: grid.get(row, VALUE_COLUMN)  # noqa: E731
        grid.set_computed("PFS_TOTAL_ASSETS", VALUE_COLUMN, safe_sum(g(k) for k in ASSET_KEYS), "SUM(ASSETS)", ASSET_KEYS)
        grid.set_computed(
            "PFS_TOTAL_LIABILITIES", VALUE_COLUMN, safe_sum(g(k) for k in LIABILITY_KEYS),
            "SUM(LIABILITIES)", LIABILITY_KEYS,
        )
        grid.set_computed(
            "PFS_NET_WORTH", VALUE_COLUMN, safe_subtract(g("PFS_TOTAL_ASSETS"), g("PFS_TOTAL_LIABILITIES")),
            "PFS_TOTAL_ASSETS - PFS_TOTAL_LIABILITIES", ["PFS_TOTAL_ASSETS", "PFS_TOTAL_LIABILITIES"],
        )
        return self._spread(
            ctx,
            as_of_date=as_of,
            columns=[VALUE_COLUMN],
            columns_v2=columns,
            rows=grid.to_rows(ROWS, columns, primary=VALUE_COLUMN),
            totals={
                "PFS_TOTAL_ASSETS": g("PFS_TOTAL_ASSETS"),
                "PFS_TOTAL_LIABILITIES": g("PFS_TOTAL_LIABILITIES"),
                "PFS_NET_WORTH": g("PFS_NET_WORTH"),
                "PFS_ANNUAL_DEBT_SERVICE": g("PFS_ANNUAL_DEBT_SERVICE"),
                "PFS_LIVING_EXPENSES": g("PFS_LIVING_EXPENSES"),
            },
            meta={"owner_entity_id": ctx.owner_entity_id},
        )
